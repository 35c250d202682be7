"""
Accès aux données pour la feature 'payments': le TransactionStore.

Source de vérité unique du statut de paiement. Deux implémentations:
- SupabaseTransactionStore: table 'payment_transactions' (PostgREST). Le compare-and-swap est un
  UPDATE ... WHERE id = :id AND status = :expected évalué atomiquement par Postgres, donc sûr
  entre plusieurs process/instances.
- InMemoryTransactionStore: dev/tests, même contrat protégé par un verrou.
"""
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional
from uuid import uuid4

import paycore.infra.supabase_client as supabase_client
from paycore.config import PAYMENT_STORE_BACKEND

from .errors import InvalidTransition, PersistenceError, TransactionNotFound
from .models import PaymentTransaction, TransactionPatch, TransactionStatus, can_transition, utcnow

logger = logging.getLogger(__name__)

TABLE = "payment_transactions"


def new_transaction_id() -> str:
    return f"txn_{uuid4().hex}"


# module paycore.payments.repository
class TransactionStore(ABC):
    """Contrat du store: create / get / update conditionnel (+ lookups d'audit)."""

    @abstractmethod
    def create(self, order_id: str, payer_id: str, amount_minor_units: int, currency: str, method: str) -> str:
        """Alloue un enregistrement en statut 'created' et retourne son identifiant."""

    @abstractmethod
    def get(self, transaction_id: str) -> PaymentTransaction:
        """Retourne la transaction ou lève TransactionNotFound."""

    @abstractmethod
    def find_by_gateway_reference(self, gateway_reference: str) -> Optional[PaymentTransaction]:
        ...

    @abstractmethod
    def list_for_order(self, order_id: str) -> List[PaymentTransaction]:
        ...

    @abstractmethod
    def _conditional_update(self, transaction_id: str, patch: TransactionPatch) -> PaymentTransaction:
        ...

    def ping(self) -> bool:
        return True

    def update(self, transaction_id: str, patch: TransactionPatch) -> PaymentTransaction:
        """
        Applique un patch partiel de façon atomique (compare-and-swap sur le statut stocké).
        - Transition hors machine d'états: InvalidTransition, rien n'est écrit.
        - Statut stocké différent de patch.expected_status: InvalidTransition (course perdue / doublon).
        """
        if patch.status is not None and not can_transition(patch.expected_status, patch.status):
            raise InvalidTransition(
                f"Transition interdite {patch.expected_status.value} -> {patch.status.value}",
                transaction_id=transaction_id,
                current_status=patch.expected_status.value,
            )
        return self._conditional_update(transaction_id, patch)


class SupabaseTransactionStore(TransactionStore):

    def _table(self):
        return supabase_client.get_service_supabase().table(TABLE)

    def create(self, order_id: str, payer_id: str, amount_minor_units: int, currency: str, method: str) -> str:
        tx = PaymentTransaction(
            id=new_transaction_id(),
            order_id=order_id,
            payer_id=payer_id,
            amount_minor_units=amount_minor_units,
            currency=currency,
            method=method,
        )
        try:
            self._table().insert(tx.to_row()).execute()
        except Exception as e:
            logger.exception("payments.repository.create failed order_id=%s", order_id)
            raise PersistenceError("Store des transactions injoignable") from e
        return tx.id

    def get(self, transaction_id: str) -> PaymentTransaction:
        try:
            res = self._table().select("*").eq("id", transaction_id).limit(1).execute()
        except Exception as e:
            logger.exception("payments.repository.get failed id=%s", transaction_id)
            raise PersistenceError("Store des transactions injoignable") from e
        rows = res.data or []
        if not rows:
            raise TransactionNotFound(f"Transaction {transaction_id} introuvable", transaction_id=transaction_id)
        return PaymentTransaction.from_row(rows[0])

    def find_by_gateway_reference(self, gateway_reference: str) -> Optional[PaymentTransaction]:
        if not gateway_reference:
            return None
        try:
            res = self._table().select("*").eq("gateway_reference", gateway_reference).limit(1).execute()
        except Exception as e:
            logger.exception("payments.repository.find_by_gateway_reference failed ref=%s", gateway_reference)
            raise PersistenceError("Store des transactions injoignable") from e
        rows = res.data or []
        return PaymentTransaction.from_row(rows[0]) if rows else None

    def list_for_order(self, order_id: str) -> List[PaymentTransaction]:
        try:
            res = self._table().select("*").eq("order_id", order_id).order("created_at").execute()
        except Exception as e:
            logger.exception("payments.repository.list_for_order failed order_id=%s", order_id)
            raise PersistenceError("Store des transactions injoignable") from e
        return [PaymentTransaction.from_row(r) for r in (res.data or [])]

    def _conditional_update(self, transaction_id: str, patch: TransactionPatch) -> PaymentTransaction:
        values = dict(patch.changes(), updated_at=utcnow().isoformat())
        try:
            query = (
                self._table()
                .update(values)
                .eq("id", transaction_id)
                .eq("status", patch.expected_status.value)
            )
            if patch.expected_outcome_notified is not None:
                query = query.eq("outcome_notified", patch.expected_outcome_notified)
            res = query.execute()
        except Exception as e:
            logger.exception("payments.repository.update failed id=%s", transaction_id)
            raise PersistenceError("Store des transactions injoignable") from e
        rows = res.data or []
        if rows:
            return PaymentTransaction.from_row(rows[0])
        # Aucune ligne: soit l'id n'existe pas, soit la précondition a été perdue
        current = self.get(transaction_id)
        raise InvalidTransition(
            f"Précondition perdue (attendu={patch.expected_status.value}, actuel={current.status.value})",
            transaction_id=transaction_id,
            current_status=current.status.value,
        )

    def ping(self) -> bool:
        try:
            self._table().select("id").limit(1).execute()
            return True
        except Exception:
            logger.exception("payments.repository.ping failed")
            return False


class InMemoryTransactionStore(TransactionStore):

    def __init__(self) -> None:
        self._rows: Dict[str, PaymentTransaction] = {}
        self._lock = threading.Lock()

    def create(self, order_id: str, payer_id: str, amount_minor_units: int, currency: str, method: str) -> str:
        tx = PaymentTransaction(
            id=new_transaction_id(),
            order_id=order_id,
            payer_id=payer_id,
            amount_minor_units=amount_minor_units,
            currency=currency,
            method=method,
        )
        with self._lock:
            self._rows[tx.id] = tx
        return tx.id

    def get(self, transaction_id: str) -> PaymentTransaction:
        with self._lock:
            tx = self._rows.get(transaction_id)
        if tx is None:
            raise TransactionNotFound(f"Transaction {transaction_id} introuvable", transaction_id=transaction_id)
        return tx

    def find_by_gateway_reference(self, gateway_reference: str) -> Optional[PaymentTransaction]:
        if not gateway_reference:
            return None
        with self._lock:
            return next((t for t in self._rows.values() if t.gateway_reference == gateway_reference), None)

    def list_for_order(self, order_id: str) -> List[PaymentTransaction]:
        with self._lock:
            rows = [t for t in self._rows.values() if t.order_id == order_id]
        return sorted(rows, key=lambda t: t.created_at)

    def _conditional_update(self, transaction_id: str, patch: TransactionPatch) -> PaymentTransaction:
        with self._lock:
            current = self._rows.get(transaction_id)
            if current is None:
                raise TransactionNotFound(f"Transaction {transaction_id} introuvable", transaction_id=transaction_id)
            lost = current.status != patch.expected_status or (
                patch.expected_outcome_notified is not None
                and current.outcome_notified != patch.expected_outcome_notified
            )
            if lost:
                raise InvalidTransition(
                    f"Précondition perdue (attendu={patch.expected_status.value}, actuel={current.status.value})",
                    transaction_id=transaction_id,
                    current_status=current.status.value,
                )
            updated = patch.apply_to(current, utcnow())
            self._rows[transaction_id] = updated
            return updated


_current_store: Optional[TransactionStore] = None


def get_store() -> TransactionStore:
    """Retourne le store courant (PAYMENT_STORE_BACKEND: 'supabase' par défaut, 'memory' en dev)."""
    global _current_store
    if _current_store is None:
        if PAYMENT_STORE_BACKEND == "memory":
            _current_store = InMemoryTransactionStore()
        else:
            _current_store = SupabaseTransactionStore()
    return _current_store


def set_store(store: TransactionStore) -> None:
    """Remplace le store actif (utile pour les tests)."""
    global _current_store
    _current_store = store


def reset_store() -> None:
    global _current_store
    _current_store = None
