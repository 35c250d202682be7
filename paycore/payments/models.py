"""
Modèles de la feature 'payments'.

- TransactionStatus + table des transitions autorisées (machine d'états).
- PaymentTransaction: enregistrement durable d'une tentative de paiement.
- TransactionPatch: mise à jour partielle conditionnée sur le statut courant.
- CheckoutRequest / PayerDetails / BillingAddress: schémas validés à la frontière HTTP.
"""
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

GUEST_PAYER_ID = "guest"

# PostgREST tronque les zéros finaux des microsecondes (".12345")
_FRACTION_RE = re.compile(r"\.(\d+)")


class TransactionStatus(str, Enum):
    CREATED = "created"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class PaymentOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    TransactionStatus.SUCCEEDED,
    TransactionStatus.FAILED,
    TransactionStatus.CANCELLED,
})

_VALID_TRANSITIONS = {
    TransactionStatus.CREATED: {TransactionStatus.PROCESSING, TransactionStatus.FAILED, TransactionStatus.CANCELLED},
    TransactionStatus.PROCESSING: {TransactionStatus.SUCCEEDED, TransactionStatus.FAILED, TransactionStatus.CANCELLED},
    TransactionStatus.SUCCEEDED: set(),
    TransactionStatus.FAILED: set(),
    TransactionStatus.CANCELLED: set(),
}


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    return target in _VALID_TRANSITIONS.get(current, set())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if not value:
        return utcnow()
    text = str(value).replace("Z", "+00:00")
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    return datetime.fromisoformat(text)


@dataclass(frozen=True)
class PaymentTransaction:
    id: str
    order_id: str
    payer_id: str
    amount_minor_units: int
    currency: str
    method: str
    status: TransactionStatus = TransactionStatus.CREATED
    gateway_reference: Optional[str] = None
    gateway_response_snapshot: Dict[str, Any] = field(default_factory=dict)
    failure_reason: Optional[str] = None
    attempt_count: int = 0
    outcome_notified: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_row(self) -> Dict[str, Any]:
        """Sérialise pour la table 'payment_transactions' (timestamps ISO 8601)."""
        return {
            "id": self.id,
            "order_id": self.order_id,
            "payer_id": self.payer_id,
            "amount_minor_units": self.amount_minor_units,
            "currency": self.currency,
            "method": self.method,
            "status": self.status.value,
            "gateway_reference": self.gateway_reference,
            "gateway_response_snapshot": self.gateway_response_snapshot,
            "failure_reason": self.failure_reason,
            "attempt_count": self.attempt_count,
            "outcome_notified": self.outcome_notified,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PaymentTransaction":
        return cls(
            id=str(row["id"]),
            order_id=str(row["order_id"]),
            payer_id=str(row.get("payer_id") or GUEST_PAYER_ID),
            amount_minor_units=int(row["amount_minor_units"]),
            currency=str(row["currency"]),
            method=str(row["method"]),
            status=TransactionStatus(row.get("status") or TransactionStatus.CREATED.value),
            gateway_reference=row.get("gateway_reference") or None,
            gateway_response_snapshot=row.get("gateway_response_snapshot") or {},
            failure_reason=row.get("failure_reason"),
            attempt_count=int(row.get("attempt_count") or 0),
            outcome_notified=bool(row.get("outcome_notified")),
            created_at=_parse_ts(row.get("created_at")),
            updated_at=_parse_ts(row.get("updated_at")),
        )

    def to_public(self) -> Dict[str, Any]:
        """Vue exposée par l'API (sans le snapshot brut de la passerelle)."""
        return {
            "transaction_id": self.id,
            "order_id": self.order_id,
            "status": self.status.value,
            "amount_minor_units": self.amount_minor_units,
            "currency": self.currency,
            "method": self.method,
            "gateway_reference": self.gateway_reference,
            "failure_reason": self.failure_reason,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class TransactionPatch:
    """
    Mise à jour partielle conditionnelle.
    - expected_status: précondition du compare-and-swap (statut stocké attendu).
    - expected_outcome_notified: précondition optionnelle sur le drapeau de notification.
    - Les champs à None ne sont pas modifiés. amount_minor_units n'est volontairement pas patchable.
    """
    expected_status: TransactionStatus
    status: Optional[TransactionStatus] = None
    gateway_reference: Optional[str] = None
    gateway_response_snapshot: Optional[Dict[str, Any]] = None
    failure_reason: Optional[str] = None
    attempt_count: Optional[int] = None
    outcome_notified: Optional[bool] = None
    expected_outcome_notified: Optional[bool] = None

    def changes(self) -> Dict[str, Any]:
        values = {
            "status": self.status.value if self.status else None,
            "gateway_reference": self.gateway_reference,
            "gateway_response_snapshot": self.gateway_response_snapshot,
            "failure_reason": self.failure_reason,
            "attempt_count": self.attempt_count,
            "outcome_notified": self.outcome_notified,
        }
        return {k: v for k, v in values.items() if v is not None}

    def apply_to(self, tx: PaymentTransaction, now: datetime) -> PaymentTransaction:
        return replace(
            tx,
            status=self.status or tx.status,
            gateway_reference=self.gateway_reference if self.gateway_reference is not None else tx.gateway_reference,
            gateway_response_snapshot=(
                self.gateway_response_snapshot if self.gateway_response_snapshot is not None
                else tx.gateway_response_snapshot
            ),
            failure_reason=self.failure_reason if self.failure_reason is not None else tx.failure_reason,
            attempt_count=self.attempt_count if self.attempt_count is not None else tx.attempt_count,
            outcome_notified=self.outcome_notified if self.outcome_notified is not None else tx.outcome_notified,
            updated_at=now,
        )


# ---------------------------------------------------------------------------
# Schémas d'entrée (checkout)
# ---------------------------------------------------------------------------
class PayerDetails(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    phone: str = Field(min_length=5, max_length=30)


class BillingAddress(BaseModel):
    line1: str = Field(min_length=1, max_length=300)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(default="", max_length=100)
    postcode: str = Field(min_length=1, max_length=20)
    country: str = Field(default="MY", min_length=2, max_length=2)

    @field_validator("country")
    @classmethod
    def _upper_country(cls, v: str) -> str:
        return v.upper()


class CheckoutRequest(BaseModel):
    order_id: str = Field(min_length=1, max_length=100)
    payer_id: str = Field(default=GUEST_PAYER_ID, min_length=1, max_length=100)
    amount_minor_units: int = Field(gt=0, strict=True)
    currency: str = Field(default="MYR", min_length=3, max_length=3)
    method: str = Field(default="curlec", min_length=1, max_length=30)
    payer: PayerDetails
    billing_address: BillingAddress
    description: Optional[str] = Field(default=None, max_length=500)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        if not v.isalpha():
            raise ValueError("Code devise ISO 4217 attendu")
        return v.upper()

    @field_validator("method")
    @classmethod
    def _lower_method(cls, v: str) -> str:
        return v.strip().lower()


class CancelRequest(BaseModel):
    reason: str = Field(default="cancelled_by_request", min_length=1, max_length=200)


@dataclass(frozen=True)
class CheckoutResult:
    transaction_id: str
    redirect_url: Optional[str]
    client_secret: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "transaction_id": self.transaction_id,
            "redirect_url": self.redirect_url or self.client_secret,
        }
