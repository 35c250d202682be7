import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from paycore.utils.rate_limit import optional_rate_limit

# Services Payments (modules importés pour bénéficier des monkeypatchs de tests)
from paycore.payments import gateways as payments_gateways
from paycore.payments import service as payments_service
from paycore.payments import webhook as payments_webhook
from paycore.payments.models import CancelRequest, CheckoutRequest

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])


# module paycore.payments.views
@router.post("/checkout", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def create_checkout(payload: CheckoutRequest):
    """
    Démarre un paiement pour une commande.
    - Entrée JSON: CheckoutRequest (montant en unités mineures, devise ISO 4217, méthode, payeur, adresse)
    - Étapes: transaction 'created' -> appel passerelle (retry borné) -> 'processing'
    - Réponse: { success, transaction_id, redirect_url }
    - Erreurs: 422 validation, 400 méthode inconnue, 502 rejet passerelle, 503 passerelle/store injoignable
    """
    result = payments_service.get_orchestrator().checkout(payload)
    return JSONResponse(result.to_response())


@router.post("/webhook/{method}", include_in_schema=False)
async def gateway_webhook(method: str, request: Request):
    """
    Webhook passerelle (Curlec, Stripe): corps brut + en-tête de signature propre à la passerelle.
    - 200 après commit durable (traité, doublon ou événement ignoré)
    - 400 signature/horodatage/référence invalides (la passerelle réessaie)
    - 503 store ou notification commande indisponible (la passerelle réessaie)
    """
    gateway = payments_gateways.get_gateway(method)
    body = await request.body()
    signature = request.headers.get(gateway.signature_header)
    remote = request.client.host if request.client else None
    handler = payments_webhook.WebhookHandler()
    ack = await run_in_threadpool(handler.handle, gateway.name, body, signature, remote)
    logger.info("payments.webhook method=%s status=%s txn=%s", gateway.name, ack.status, ack.transaction_id)
    return JSONResponse(ack.to_response())


@router.post("/transactions/{transaction_id}/cancel")
def cancel_transaction(transaction_id: str, payload: Optional[CancelRequest] = Body(default=None)):
    """
    Annule une transaction non terminale (abandon du payeur, annulation de commande).
    - 409 si la transaction est déjà terminale ou si un webhook l'a finalisée entre-temps
    """
    reason = payload.reason if payload else CancelRequest().reason
    tx = payments_service.get_orchestrator().cancel(transaction_id, reason)
    return JSONResponse({"success": True, "transaction": tx.to_public()})


@router.get("/transactions/{transaction_id}")
def get_transaction(transaction_id: str):
    tx = payments_service.get_orchestrator().get_transaction(transaction_id)
    return JSONResponse(tx.to_public())


@router.get("/orders/{order_id}/transactions")
def list_order_transactions(order_id: str):
    txs = payments_service.get_orchestrator().list_order_transactions(order_id)
    return JSONResponse({"order_id": order_id, "transactions": [t.to_public() for t in txs]})
