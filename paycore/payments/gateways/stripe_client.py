"""
Adaptateur Stripe: centralise les appels et la configuration Stripe (Checkout Session).
- create_payment: stripe.checkout.Session.create avec idempotency_key = transaction_id.
- verify_signature: stripe.WebhookSignature (même schéma t=...,v1=...).
- parse_event: normalise checkout.session.* en GatewayEvent.
"""
import logging
from typing import Any, Dict, Optional

import stripe
from pydantic import BaseModel, ConfigDict, ValidationError as PydanticValidationError

from paycore.payments.currency import to_gateway_minor_units
from paycore.payments.errors import GatewayRejected, GatewayUnavailable, VerificationFailure
from paycore.payments.signing import Payload

from .port import GatewayClient, GatewayCreateRequest, GatewayCreateResult, GatewayEvent

logger = logging.getLogger(__name__)


class StripeSessionObject(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    payment_status: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None


class StripeEventData(BaseModel):
    model_config = ConfigDict(extra="ignore")
    object: StripeSessionObject


class StripeWebhookEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    type: str
    data: StripeEventData


def _outcome(event: StripeWebhookEvent) -> Optional[str]:
    if event.type in ("checkout.session.completed", "checkout.session.async_payment_succeeded"):
        # completed sans paiement encaissé (ex: moyen asynchrone en attente) n'est pas un succès
        return "succeeded" if event.data.object.payment_status == "paid" else None
    if event.type == "checkout.session.async_payment_failed":
        return "failed"
    if event.type == "checkout.session.expired":
        return "cancelled"
    return None


class StripeGateway(GatewayClient):
    name = "stripe"
    signature_header = "stripe-signature"

    def __init__(self, api_key: str, *, webhook_secret: str = "", timeout: float = 10.0) -> None:
        self.api_key = api_key
        self._webhook_secret = webhook_secret
        self.timeout = timeout

    @property
    def webhook_secret(self) -> str:
        return self._webhook_secret

    def require_stripe(self):
        """
        Prépare et retourne le module stripe prêt à l'emploi.
        - Client HTTP borné par self.timeout; pas de retry réseau implicite (géré par l'orchestrateur).
        """
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout)
        return stripe

    def create_payment(self, request: GatewayCreateRequest) -> GatewayCreateResult:
        self.require_stripe()
        unit_amount = to_gateway_minor_units(request.amount_minor_units, request.currency)
        metadata = {"order_id": request.order_id, "transaction_id": request.transaction_id}
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                idempotency_key=request.transaction_id,
                mode="payment",
                line_items=[{
                    "quantity": 1,
                    "price_data": {
                        "currency": request.currency.lower(),
                        "unit_amount": unit_amount,
                        "product_data": {"name": request.description or f"Order {request.order_id}"},
                    },
                }],
                success_url=request.redirect_url,
                cancel_url=request.cancel_url or request.redirect_url,
                customer_email=request.payer.email,
                client_reference_id=request.transaction_id,
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
            )
        except stripe.APIConnectionError as e:
            logger.warning("stripe.create_payment transport error txn=%s: %s", request.transaction_id, e)
            raise GatewayUnavailable("Stripe injoignable", transaction_id=request.transaction_id) from e
        except stripe.StripeError as e:
            status = getattr(e, "http_status", None)
            if status is not None and status >= 500:
                raise GatewayUnavailable(f"Stripe HTTP {status}", transaction_id=request.transaction_id) from e
            reason = getattr(e, "user_message", None) or str(e) or "Stripe a refusé le paiement"
            logger.info("stripe.create_payment rejected txn=%s status=%s reason=%s",
                        request.transaction_id, status, reason)
            raise GatewayRejected(reason, status_code=status, transaction_id=request.transaction_id) from e

        # StripeObject (to_dict) ou dict simple (tests)
        raw = session.to_dict() if hasattr(session, "to_dict") else dict(session)
        return GatewayCreateResult(
            reference=str(raw.get("id") or ""),
            redirect_url=raw.get("url"),
            raw=raw,
        )

    def verify_signature(self, payload: Payload, signature_header: str, secret: str, tolerance: int) -> None:
        if not secret:
            raise VerificationFailure("Secret de signature non configuré")
        try:
            body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError as e:
            raise VerificationFailure("Corps de webhook Stripe non UTF-8") from e
        try:
            stripe.WebhookSignature.verify_header(body, signature_header or "", secret, tolerance=tolerance)
        except stripe.SignatureVerificationError as e:
            raise VerificationFailure("Signature Stripe invalide") from e

    def parse_event(self, payload: Dict[str, Any]) -> GatewayEvent:
        try:
            event = StripeWebhookEvent.model_validate(payload)
        except PydanticValidationError as e:
            raise VerificationFailure("Webhook Stripe malformé") from e
        obj = event.data.object
        return GatewayEvent(
            event_id=event.id,
            event_type=event.type,
            gateway_reference=obj.id,
            outcome=_outcome(event),
            amount_minor_units=obj.amount_total,
            currency=obj.currency.upper() if obj.currency else None,
            raw=payload,
        )
