"""
Adaptateur Curlec: traduit la requête interne vers POST /v1/payment_intents et normalise
réponses et webhooks via des structures explicites (pydantic) validées à la frontière.
"""
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError as PydanticValidationError

from paycore.payments.currency import to_gateway_minor_units
from paycore.payments.errors import GatewayRejected, GatewayUnavailable, VerificationFailure

from .port import GatewayClient, GatewayCreateRequest, GatewayCreateResult, GatewayEvent

logger = logging.getLogger(__name__)

_EVENT_OUTCOMES = {
    "payment_intent.succeeded": "succeeded",
    "payment_intent.payment_failed": "failed",
    "payment_intent.canceled": "cancelled",
}


# --- Format filaire (sortant) ---
class CurlecCustomer(BaseModel):
    name: str
    email: str
    phone: str


class CurlecBillingAddress(BaseModel):
    line1: str
    city: str
    state: str
    postcode: str
    country: str


class CurlecPaymentIntentCreate(BaseModel):
    amount: int
    currency: str
    description: str
    customer: CurlecCustomer
    billing_address: CurlecBillingAddress
    metadata: Dict[str, str]
    redirect_url: str
    callback_url: str


# --- Format filaire (entrant) ---
class _RedirectToUrl(BaseModel):
    model_config = ConfigDict(extra="ignore")
    url: Optional[str] = None


class _NextAction(BaseModel):
    model_config = ConfigDict(extra="ignore")
    redirect_to_url: Optional[_RedirectToUrl] = None


class CurlecPaymentIntent(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    status: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    client_secret: Optional[str] = None
    next_action: Optional[_NextAction] = None


class _PaymentError(BaseModel):
    model_config = ConfigDict(extra="ignore")
    message: Optional[str] = None


class CurlecEventObject(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    status: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    last_payment_error: Optional[_PaymentError] = None


class CurlecWebhookEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    type: str
    data: CurlecEventObject


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    err = (body or {}).get("error") if isinstance(body, dict) else None
    if isinstance(err, dict) and err.get("message"):
        return str(err["message"])
    return f"HTTP {response.status_code}"


class CurlecGateway(GatewayClient):
    name = "curlec"
    signature_header = "curlec-signature"

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        *,
        base_url: str = "https://api.curlec.com",
        webhook_secret: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self._webhook_secret = webhook_secret
        self.timeout = timeout
        self._transport = transport

    @property
    def webhook_secret(self) -> str:
        return self._webhook_secret

    def build_payload(self, request: GatewayCreateRequest) -> CurlecPaymentIntentCreate:
        return CurlecPaymentIntentCreate(
            amount=to_gateway_minor_units(request.amount_minor_units, request.currency),
            currency=request.currency,
            description=request.description or f"Order {request.order_id}",
            customer=CurlecCustomer(
                name=request.payer.name,
                email=request.payer.email,
                phone=request.payer.phone,
            ),
            billing_address=CurlecBillingAddress(
                line1=request.billing_address.line1,
                city=request.billing_address.city,
                state=request.billing_address.state,
                postcode=request.billing_address.postcode,
                country=request.billing_address.country,
            ),
            metadata={"order_id": request.order_id, "transaction_id": request.transaction_id},
            redirect_url=request.redirect_url,
            callback_url=request.callback_url,
        )

    def create_payment(self, request: GatewayCreateRequest) -> GatewayCreateResult:
        payload = self.build_payload(request)
        try:
            with httpx.Client(
                base_url=self.base_url,
                auth=(self.api_key, self.api_secret),
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = client.post(
                    "/v1/payment_intents",
                    json=payload.model_dump(),
                    headers={"Idempotency-Key": request.transaction_id},
                )
        except httpx.TransportError as e:
            logger.warning("curlec.create_payment transport error txn=%s: %s", request.transaction_id, e)
            raise GatewayUnavailable(f"Curlec injoignable: {e.__class__.__name__}",
                                     transaction_id=request.transaction_id) from e

        # 5xx: la passerelle a pu traiter la requête -> in-doubt, comme un échec transport
        if response.status_code >= 500:
            logger.warning("curlec.create_payment server error txn=%s status=%s",
                           request.transaction_id, response.status_code)
            raise GatewayUnavailable(f"Curlec HTTP {response.status_code}", transaction_id=request.transaction_id)
        if not response.is_success:
            reason = _error_message(response)
            logger.info("curlec.create_payment rejected txn=%s status=%s reason=%s",
                        request.transaction_id, response.status_code, reason)
            raise GatewayRejected(reason, status_code=response.status_code,
                                  payload=_safe_json(response), transaction_id=request.transaction_id)

        raw = _safe_json(response)
        try:
            intent = CurlecPaymentIntent.model_validate(raw)
        except PydanticValidationError as e:
            # Réponse 2xx illisible: impossible de savoir ce qui a été créé
            raise GatewayUnavailable("Réponse Curlec illisible", transaction_id=request.transaction_id) from e

        redirect = None
        if intent.next_action and intent.next_action.redirect_to_url:
            redirect = intent.next_action.redirect_to_url.url
        return GatewayCreateResult(
            reference=intent.id,
            redirect_url=redirect,
            client_secret=intent.client_secret,
            raw=raw,
        )

    def parse_event(self, payload: Dict[str, Any]) -> GatewayEvent:
        try:
            event = CurlecWebhookEvent.model_validate(payload)
        except PydanticValidationError as e:
            raise VerificationFailure("Webhook Curlec malformé") from e
        reason = None
        if event.data.last_payment_error and event.data.last_payment_error.message:
            reason = event.data.last_payment_error.message
        return GatewayEvent(
            event_id=event.id,
            event_type=event.type,
            gateway_reference=event.data.id,
            outcome=_EVENT_OUTCOMES.get(event.type),
            amount_minor_units=event.data.amount,
            currency=event.data.currency.upper() if event.data.currency else None,
            failure_reason=reason,
            raw=payload,
        )


def _safe_json(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {"body": body}
