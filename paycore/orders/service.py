"""
Collaborateur OrderService (hors cœur paiement).

Le cœur ne possède pas les commandes: il appelle
- create_pending_payment(order_id, payer_id, amount, method) -> transaction_id
- apply_payment_outcome(transaction_id, outcome)   outcome ∈ {succeeded, failed, cancelled}
SupabaseOrderService met à jour 'customer_orders' et journalise 'order_status_updates'.
"""
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

import paycore.infra.supabase_client as supabase_client
from paycore.config import DEFAULT_CURRENCY, PAYMENT_STORE_BACKEND
from paycore.payments.errors import PersistenceError
from paycore.payments.models import PaymentOutcome, utcnow
from paycore.payments.repository import TransactionStore, get_store

logger = logging.getLogger(__name__)

ORDERS_TABLE = "customer_orders"
ORDER_STATUS_TABLE = "order_status_updates"

# outcome -> (payment_status, status de commande, message d'historique)
_ORDER_UPDATES = {
    PaymentOutcome.SUCCEEDED: ("paid", "confirmed", "Payment received and order confirmed"),
    PaymentOutcome.FAILED: ("failed", "payment_failed", "Payment failed"),
    PaymentOutcome.CANCELLED: ("cancelled", "cancelled", "Payment cancelled"),
}


class OrderService(ABC):

    def __init__(self, store: Optional[TransactionStore] = None) -> None:
        self._store = store

    @property
    def store(self) -> TransactionStore:
        return self._store or get_store()

    def create_pending_payment(self, order_id: str, payer_id: str, amount: int, method: str,
                               currency: str = DEFAULT_CURRENCY) -> str:
        """Enregistre une tentative de paiement 'created' pour la commande et retourne son id."""
        return self.store.create(order_id, payer_id, amount, currency, method)

    @abstractmethod
    def apply_payment_outcome(self, transaction_id: str, outcome: PaymentOutcome) -> None:
        ...


class SupabaseOrderService(OrderService):

    def apply_payment_outcome(self, transaction_id: str, outcome: PaymentOutcome) -> None:
        tx = self.store.get(transaction_id)
        payment_status, order_status, message = _ORDER_UPDATES[PaymentOutcome(outcome)]
        now = utcnow().isoformat()
        try:
            client = supabase_client.get_service_supabase()
            (
                client.table(ORDERS_TABLE)
                .update({
                    "payment_status": payment_status,
                    "payment_id": transaction_id,
                    "status": order_status,
                    "updated_at": now,
                })
                .eq("id", tx.order_id)
                .execute()
            )
            (
                client.table(ORDER_STATUS_TABLE)
                .insert({
                    "order_id": tx.order_id,
                    "status": order_status,
                    "message": message,
                    "updated_by": "System",
                    "timestamp": now,
                    "notification_sent": False,
                })
                .execute()
            )
        except Exception as e:
            logger.exception("orders.apply_payment_outcome failed order_id=%s txn=%s", tx.order_id, transaction_id)
            raise PersistenceError("Mise à jour de la commande impossible", transaction_id=transaction_id) from e
        logger.info("orders.apply_payment_outcome order_id=%s txn=%s outcome=%s",
                    tx.order_id, transaction_id, PaymentOutcome(outcome).value)


class InMemoryOrderService(OrderService):
    """Dev/tests: conserve les notifications reçues dans l'ordre."""

    def __init__(self, store: Optional[TransactionStore] = None) -> None:
        super().__init__(store)
        self.outcomes: List[Tuple[str, PaymentOutcome]] = []
        self.order_status: Dict[str, str] = {}
        self._lock = threading.Lock()

    def apply_payment_outcome(self, transaction_id: str, outcome: PaymentOutcome) -> None:
        tx = self.store.get(transaction_id)
        _, order_status, _ = _ORDER_UPDATES[PaymentOutcome(outcome)]
        with self._lock:
            self.outcomes.append((transaction_id, PaymentOutcome(outcome)))
            self.order_status[tx.order_id] = order_status


_current_order_service: Optional[OrderService] = None


def get_order_service() -> OrderService:
    global _current_order_service
    if _current_order_service is None:
        if PAYMENT_STORE_BACKEND == "memory":
            _current_order_service = InMemoryOrderService()
        else:
            _current_order_service = SupabaseOrderService()
    return _current_order_service


def set_order_service(service: OrderService) -> None:
    global _current_order_service
    _current_order_service = service


def reset_order_service() -> None:
    global _current_order_service
    _current_order_service = None
