"""
Port passerelle de paiement (interface abstraite).

Contrat commun à tous les adaptateurs: créer un paiement, normaliser un callback
brut en GatewayEvent et vérifier sa signature. L'orchestrateur et le handler de
webhook ne voient que cette interface; l'adaptateur est choisi par `method`.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from paycore.payments.signing import Payload, verify_signature_header


@dataclass(frozen=True)
class PayerContact:
    name: str
    email: str
    phone: str


@dataclass(frozen=True)
class Address:
    line1: str
    city: str
    state: str
    postcode: str
    country: str


@dataclass(frozen=True)
class GatewayCreateRequest:
    """Requête interne; transaction_id sert aussi de clé d'idempotence."""

    transaction_id: str
    order_id: str
    amount_minor_units: int
    currency: str
    payer: PayerContact
    billing_address: Address
    redirect_url: str
    callback_url: str
    description: str = ""
    cancel_url: Optional[str] = None


@dataclass(frozen=True)
class GatewayCreateResult:
    """Résultat normalisé d'une création réussie."""

    reference: str
    redirect_url: Optional[str] = None
    client_secret: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayEvent:
    """Callback normalisé. outcome vaut None pour les événements informatifs."""

    event_id: str
    event_type: str
    gateway_reference: str
    outcome: Optional[str] = None  # succeeded | failed | cancelled
    amount_minor_units: Optional[int] = None
    currency: Optional[str] = None
    failure_reason: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class GatewayClient(ABC):
    """Interface abstraite d'une passerelle de paiement."""

    name: str = ""
    signature_header: str = ""

    @property
    @abstractmethod
    def webhook_secret(self) -> str:
        """Secret partagé de signature des callbacks."""
        ...

    @abstractmethod
    def create_payment(self, request: GatewayCreateRequest) -> GatewayCreateResult:
        """
        Crée le paiement côté passerelle.
        - GatewayUnavailable: échec transport (in-doubt).
        - GatewayRejected: refus déterministe.
        """
        ...

    @abstractmethod
    def parse_event(self, payload: Dict[str, Any]) -> GatewayEvent:
        """Valide la structure du callback et la normalise."""
        ...

    def verify_signature(self, payload: Payload, signature_header: str, secret: str, tolerance: int) -> None:
        verify_signature_header(payload, signature_header, secret, tolerance)
