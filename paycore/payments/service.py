"""
Cas d'usage 'payments': l'orchestrateur du cycle de vie d'une transaction.

checkout:
  1) valide la devise et résout la passerelle (aucune transaction créée si invalide);
  2) TransactionStore.create -> statut 'created' (l'id existe avant tout appel passerelle);
  3) GatewayClient.create_payment, retry borné + backoff exponentiel sur GatewayUnavailable,
     avec le MÊME transaction_id (clé d'idempotence côté passerelle);
  4) created -> processing (référence + snapshot) puis URL de redirection,
     ou created -> failed (rejet / retries épuisés) et notification de la commande.

Notification de la commande: le drapeau outcome_notified est posé dans le même compare-and-swap
que le statut terminal (claim); en cas d'échec de notification le claim est relâché.
"""
import logging
import time
from typing import Callable, List, Optional

import paycore.orders.service as orders_service
from paycore.config import PaymentSettings, payments_settings

from .currency import minor_unit_exponent
from .errors import (
    GatewayRejected,
    GatewayUnavailable,
    InvalidTransition,
    OrderNotificationFailed,
    PaymentError,
)
from .gateways import get_gateway
from .gateways.port import Address, GatewayClient, GatewayCreateRequest, GatewayCreateResult, PayerContact
from .models import (
    CheckoutRequest,
    CheckoutResult,
    PaymentOutcome,
    PaymentTransaction,
    TransactionPatch,
    TransactionStatus,
)
from .repository import TransactionStore, get_store

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    """Délai avant la tentative attempt+1: base * 2**(attempt-1), plafonné."""
    return min(base * (2 ** max(attempt - 1, 0)), maximum)


def notify_outcome(store: TransactionStore, order_service, tx: PaymentTransaction) -> None:
    """Notifie OrderService d'une issue terminale déjà commitée (claim détenu par l'appelant)."""
    try:
        order_service.apply_payment_outcome(tx.id, PaymentOutcome(tx.status.value))
    except Exception as e:
        logger.exception("payments.notify_outcome failed txn=%s status=%s", tx.id, tx.status.value)
        try:
            store.update(tx.id, TransactionPatch(
                expected_status=tx.status,
                outcome_notified=False,
                expected_outcome_notified=True,
            ))
        except PaymentError:
            logger.exception("payments.notify_outcome claim release failed txn=%s", tx.id)
        raise OrderNotificationFailed("Notification de la commande impossible", transaction_id=tx.id) from e


def finalize_transaction(
    store: TransactionStore,
    order_service,
    transaction_id: str,
    expected: TransactionStatus,
    target: TransactionStatus,
    *,
    failure_reason: Optional[str] = None,
    snapshot: Optional[dict] = None,
    attempt_count: Optional[int] = None,
) -> PaymentTransaction:
    """
    Transition vers un statut terminal (compare-and-swap) puis notification de la commande.
    - InvalidTransition si la précondition est perdue: aucune notification.
    """
    tx = store.update(transaction_id, TransactionPatch(
        expected_status=expected,
        status=target,
        failure_reason=failure_reason,
        gateway_response_snapshot=snapshot,
        attempt_count=attempt_count,
        outcome_notified=True,
        expected_outcome_notified=False,
    ))
    logger.info("payments.transition txn=%s %s -> %s reason=%s", transaction_id, expected.value, target.value, failure_reason)
    notify_outcome(store, order_service, tx)
    return tx


def resume_notification(store: TransactionStore, order_service, tx: PaymentTransaction) -> bool:
    """Transaction terminale non notifiée (échec précédent): reprend le claim et renotifie."""
    if not tx.is_terminal or tx.outcome_notified:
        return False
    try:
        claimed = store.update(tx.id, TransactionPatch(
            expected_status=tx.status,
            outcome_notified=True,
            expected_outcome_notified=False,
        ))
    except InvalidTransition:
        return False
    notify_outcome(store, order_service, claimed)
    return True


class PaymentOrchestrator:

    def __init__(
        self,
        store: Optional[TransactionStore] = None,
        order_service=None,
        settings: Optional[PaymentSettings] = None,
        gateway_resolver: Callable[[str], GatewayClient] = get_gateway,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._order_service = order_service
        self.settings = settings or payments_settings()
        self._resolve_gateway = gateway_resolver
        self._sleep = sleep

    @property
    def store(self) -> TransactionStore:
        return self._store or get_store()

    @property
    def order_service(self):
        return self._order_service or orders_service.get_order_service()

    # -------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------
    def checkout(self, request: CheckoutRequest) -> CheckoutResult:
        minor_unit_exponent(request.currency)
        gateway = self._resolve_gateway(request.method)

        transaction_id = self.store.create(
            request.order_id,
            request.payer_id,
            request.amount_minor_units,
            request.currency,
            request.method,
        )
        logger.info("payments.checkout created txn=%s order_id=%s amount=%s %s method=%s",
                    transaction_id, request.order_id, request.amount_minor_units, request.currency, request.method)

        gateway_request = GatewayCreateRequest(
            transaction_id=transaction_id,
            order_id=request.order_id,
            amount_minor_units=request.amount_minor_units,
            currency=request.currency,
            payer=PayerContact(
                name=request.payer.name,
                email=str(request.payer.email),
                phone=request.payer.phone,
            ),
            billing_address=Address(
                line1=request.billing_address.line1,
                city=request.billing_address.city,
                state=request.billing_address.state,
                postcode=request.billing_address.postcode,
                country=request.billing_address.country,
            ),
            redirect_url=self.settings.redirect_url(transaction_id),
            callback_url=self.settings.callback_url(gateway.name),
            description=request.description or "",
        )
        return self._create_with_retry(gateway, gateway_request)

    def _create_with_retry(self, gateway: GatewayClient, request: GatewayCreateRequest) -> CheckoutResult:
        transaction_id = request.transaction_id
        max_attempts = max(1, self.settings.max_create_retries)
        last_error: Optional[GatewayUnavailable] = None

        for attempt in range(1, max_attempts + 1):
            try:
                result = gateway.create_payment(request)
            except GatewayRejected as e:
                self._fail(transaction_id, e.reason, snapshot=e.payload, attempt_count=attempt)
                e.transaction_id = transaction_id
                raise
            except GatewayUnavailable as e:
                last_error = e
                logger.warning("payments.checkout gateway unavailable txn=%s attempt=%s/%s: %s",
                               transaction_id, attempt, max_attempts, e.detail)
                # Trace l'essai; échoue si la transaction a été annulée entre-temps
                self.store.update(transaction_id, TransactionPatch(
                    expected_status=TransactionStatus.CREATED,
                    attempt_count=attempt,
                ))
                if attempt < max_attempts:
                    self._sleep(backoff_delay(attempt, self.settings.backoff_base, self.settings.backoff_max))
                continue

            try:
                tx = self.store.update(transaction_id, TransactionPatch(
                    expected_status=TransactionStatus.CREATED,
                    status=TransactionStatus.PROCESSING,
                    gateway_reference=result.reference,
                    gateway_response_snapshot=result.raw,
                    attempt_count=attempt,
                ))
            except InvalidTransition as e:
                logger.warning("payments.checkout txn=%s changed during gateway call (ref=%s)",
                               transaction_id, result.reference)
                self._keep_gateway_reference(transaction_id, e.current_status, result, attempt)
                raise
            logger.info("payments.checkout processing txn=%s ref=%s", tx.id, tx.gateway_reference)
            return CheckoutResult(
                transaction_id=transaction_id,
                redirect_url=result.redirect_url,
                client_secret=result.client_secret,
            )

        self._fail(transaction_id, "gateway_unavailable", attempt_count=max_attempts)
        raise GatewayUnavailable(
            f"Passerelle injoignable après {max_attempts} tentative(s)",
            transaction_id=transaction_id,
        ) from last_error

    def _keep_gateway_reference(self, transaction_id: str, current_status: Optional[str],
                                result: GatewayCreateResult, attempt: int) -> None:
        """
        Annulation gagnante pendant l'appel passerelle: le paiement existe quand même côté passerelle.
        La référence et le snapshot sont conservés sans toucher au statut, un webhook tardif est
        alors reconnu et acquitté comme doublon.
        """
        try:
            status = TransactionStatus(current_status) if current_status else self.store.get(transaction_id).status
            self.store.update(transaction_id, TransactionPatch(
                expected_status=status,
                gateway_reference=result.reference,
                gateway_response_snapshot=result.raw,
                attempt_count=attempt,
            ))
        except PaymentError:
            logger.exception("payments.checkout could not keep late reference txn=%s ref=%s",
                             transaction_id, result.reference)

    def _fail(self, transaction_id: str, reason: str, *, snapshot: Optional[dict] = None,
              attempt_count: Optional[int] = None) -> None:
        try:
            finalize_transaction(
                self.store,
                self.order_service,
                transaction_id,
                TransactionStatus.CREATED,
                TransactionStatus.FAILED,
                failure_reason=reason,
                snapshot=snapshot,
                attempt_count=attempt_count,
            )
        except OrderNotificationFailed:
            # Statut 'failed' commité; outcome_notified=False reste visible pour une reprise
            logger.error("payments.checkout order notification pending txn=%s", transaction_id)

    # -------------------------------------------------------------------
    # Annulation explicite et lectures
    # -------------------------------------------------------------------
    def cancel(self, transaction_id: str, reason: str = "cancelled_by_request") -> PaymentTransaction:
        """
        Annule une transaction non terminale. Course avec un webhook: le premier compare-and-swap
        gagne, le perdant reçoit InvalidTransition (journalisé, pas de retry).
        """
        tx = self.store.get(transaction_id)
        if tx.is_terminal:
            self._resume_pending_notification(tx)
            raise InvalidTransition(
                f"Transaction déjà terminale ({tx.status.value})",
                transaction_id=transaction_id,
                current_status=tx.status.value,
            )
        try:
            return finalize_transaction(
                self.store,
                self.order_service,
                transaction_id,
                tx.status,
                TransactionStatus.CANCELLED,
                failure_reason=reason,
            )
        except InvalidTransition as e:
            logger.warning("payments.cancel lost race txn=%s current=%s", transaction_id, e.current_status)
            raise

    def create_pending_payment(self, order_id: str, payer_id: str, amount: int, method: str,
                               currency: str = "MYR") -> str:
        minor_unit_exponent(currency)
        return self.store.create(order_id, payer_id, amount, currency.upper(), method)

    def get_transaction(self, transaction_id: str) -> PaymentTransaction:
        tx = self.store.get(transaction_id)
        if self._resume_pending_notification(tx):
            return self.store.get(transaction_id)
        return tx

    def _resume_pending_notification(self, tx: PaymentTransaction) -> bool:
        """
        Un échec au checkout (created -> failed) n'a pas de référence passerelle: aucun webhook ne viendra
        relancer la notification. Lectures et annulations reprennent donc le claim relâché.
        """
        if not tx.is_terminal or tx.outcome_notified:
            return False
        try:
            resumed = resume_notification(self.store, self.order_service, tx)
        except OrderNotificationFailed:
            logger.error("payments.resume order notification still pending txn=%s", tx.id)
            return False
        if resumed:
            logger.info("payments.resume order notified txn=%s status=%s", tx.id, tx.status.value)
        return resumed

    def list_order_transactions(self, order_id: str) -> List[PaymentTransaction]:
        return self.store.list_for_order(order_id)


def get_orchestrator() -> PaymentOrchestrator:
    return PaymentOrchestrator()
