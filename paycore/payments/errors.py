"""
Taxonomie d'erreurs de la feature 'payments'.

Chaque erreur porte un error_code stable (renvoyé aux clients) et le statut HTTP
utilisé par les gestionnaires d'exceptions FastAPI.
"""
from typing import Optional


class PaymentError(Exception):
    error_code = "payment_error"
    http_status = 500

    def __init__(self, detail: str = "", *, transaction_id: Optional[str] = None):
        super().__init__(detail or self.error_code)
        self.detail = detail or self.error_code
        self.transaction_id = transaction_id


class ValidationError(PaymentError):
    """Entrée de checkout invalide: rejetée avant toute création de transaction."""
    error_code = "validation_error"
    http_status = 422


class PersistenceError(PaymentError):
    """Store injoignable: erreur réessayable, aucun enregistrement partiel."""
    error_code = "persistence_error"
    http_status = 503


class TransactionNotFound(PaymentError):
    error_code = "transaction_not_found"
    http_status = 404


class GatewayNotConfigured(PaymentError):
    error_code = "gateway_not_configured"
    http_status = 400


class GatewayUnavailable(PaymentError):
    """
    Échec transport (timeout, DNS, reset): cas « in-doubt ».
    On ne suppose jamais que la passerelle a (ou n'a pas) créé le paiement.
    """
    error_code = "gateway_unavailable"
    http_status = 503


class GatewayRejected(PaymentError):
    """Rejet déterministe de la passerelle (réponse HTTP non-2xx): pas de retry."""
    error_code = "gateway_rejected"
    http_status = 502

    def __init__(self, reason: str, *, status_code: Optional[int] = None, payload: Optional[dict] = None,
                 transaction_id: Optional[str] = None):
        super().__init__(reason, transaction_id=transaction_id)
        self.reason = reason
        self.status_code = status_code
        self.payload = payload or {}


class VerificationFailure(PaymentError):
    """Webhook forgé, rejoué ou malformé: jamais de transition d'état."""
    error_code = "verification_failed"
    http_status = 400


class UnmappedReference(VerificationFailure):
    """La référence passerelle du webhook ne correspond à aucune transaction connue."""
    error_code = "unmapped_reference"


class OrderNotificationFailed(PaymentError):
    """État durable commité mais OrderService n'a pas pu être notifié: la passerelle doit réessayer."""
    error_code = "order_notification_failed"
    http_status = 503


class InvalidTransition(PaymentError):
    """Précondition du compare-and-swap perdue (course, doublon ou transition illégale)."""
    error_code = "invalid_transition"
    http_status = 409

    def __init__(self, detail: str = "", *, transaction_id: Optional[str] = None,
                 current_status: Optional[str] = None):
        super().__init__(detail, transaction_id=transaction_id)
        self.current_status = current_status
