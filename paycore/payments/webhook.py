"""
Traitement des webhooks passerelle.

- vérification (signature, fenêtre anti-rejeu, référence) via WebhookVerifier;
- application de l'issue par compare-and-swap depuis 'processing';
- idempotence: un doublon ou un rejeu sur une transaction terminale est acquitté sans effet;
- l'acquittement n'a lieu qu'après le commit durable (et la notification de la commande).
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import paycore.orders.service as orders_service
from paycore.config import PaymentSettings, payments_settings

from .errors import InvalidTransition, VerificationFailure
from .gateways import get_gateway
from .gateways.port import GatewayClient, GatewayEvent
from .models import PaymentOutcome, PaymentTransaction, TransactionStatus
from .repository import TransactionStore, get_store
from .service import finalize_transaction, resume_notification
from .signing import Payload
from .verifier import VerificationMonitor, WebhookVerifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookAck:
    status: str
    transaction_id: Optional[str] = None

    def to_response(self) -> dict:
        body = {"received": True, "status": self.status}
        if self.transaction_id:
            body["transaction_id"] = self.transaction_id
        return body


def resolve_outcome(event: GatewayEvent, tx: PaymentTransaction) -> Tuple[TransactionStatus, Optional[str]]:
    """
    Statut cible et raison d'échec pour un événement porteur d'issue.
    Un succès n'est accepté que si montant ET devise correspondent à la transaction.
    """
    if event.outcome == PaymentOutcome.SUCCEEDED:
        if event.amount_minor_units != tx.amount_minor_units or (
            (event.currency or "").upper() != tx.currency
        ):
            logger.warning(
                "payments.webhook amount mismatch txn=%s expected=%s %s got=%s %s",
                tx.id, tx.amount_minor_units, tx.currency, event.amount_minor_units, event.currency,
            )
            return TransactionStatus.FAILED, "amount_mismatch"
        return TransactionStatus.SUCCEEDED, None
    if event.outcome == PaymentOutcome.CANCELLED:
        return TransactionStatus.FAILED, "cancelled_at_gateway"
    return TransactionStatus.FAILED, event.failure_reason or "gateway_failed"


class WebhookHandler:

    def __init__(
        self,
        store: Optional[TransactionStore] = None,
        order_service=None,
        settings: Optional[PaymentSettings] = None,
        monitor: Optional[VerificationMonitor] = None,
        gateway_resolver: Callable[[str], GatewayClient] = get_gateway,
    ) -> None:
        self._store = store
        self._order_service = order_service
        self.settings = settings or payments_settings()
        self.monitor = monitor or get_monitor()
        self._resolve_gateway = gateway_resolver

    @property
    def store(self) -> TransactionStore:
        return self._store or get_store()

    @property
    def order_service(self):
        return self._order_service or orders_service.get_order_service()

    def handle(self, method: str, raw_payload: Payload, signature_header: Optional[str],
               remote: Optional[str] = None) -> WebhookAck:
        gateway = self._resolve_gateway(method)
        verifier = WebhookVerifier(self.store, gateway, tolerance=self.settings.webhook_tolerance)
        try:
            verified = verifier.verify(raw_payload, signature_header, gateway.webhook_secret)
        except VerificationFailure as e:
            self.monitor.record_failure(method, e, remote)
            raise

        event, tx = verified.event, verified.transaction
        if event.outcome is None:
            logger.info("payments.webhook ignored event=%s type=%s txn=%s", event.event_id, event.event_type, tx.id)
            return WebhookAck("ignored", tx.id)

        if tx.is_terminal:
            if resume_notification(self.store, self.order_service, tx):
                logger.info("payments.webhook resumed order notification txn=%s", tx.id)
                return WebhookAck("processed", tx.id)
            logger.info("payments.webhook duplicate event=%s txn=%s status=%s", event.event_id, tx.id, tx.status.value)
            return WebhookAck("duplicate", tx.id)

        target, reason = resolve_outcome(event, tx)
        try:
            finalize_transaction(
                self.store,
                self.order_service,
                tx.id,
                TransactionStatus.PROCESSING,
                target,
                failure_reason=reason,
                snapshot=event.raw,
            )
        except InvalidTransition as e:
            # Course perdue (livraison concurrente ou annulation): rien à appliquer
            logger.info("payments.webhook stale event=%s txn=%s current=%s", event.event_id, tx.id, e.current_status)
            return WebhookAck("duplicate", tx.id)
        return WebhookAck("processed", tx.id)


_monitor: Optional[VerificationMonitor] = None


def get_monitor() -> VerificationMonitor:
    global _monitor
    if _monitor is None:
        settings = payments_settings()
        _monitor = VerificationMonitor(settings.alert_threshold, settings.alert_window)
    return _monitor


def reset_monitor() -> None:
    global _monitor
    _monitor = None
