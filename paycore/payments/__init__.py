"""
Module 'payments' (feature-first): point d'entrée public.
Réunit modèle de transaction, store, adaptateurs passerelle, vérification webhook et orchestrateur.
"""

from .errors import (
    PaymentError,
    ValidationError,
    PersistenceError,
    TransactionNotFound,
    GatewayNotConfigured,
    GatewayUnavailable,
    GatewayRejected,
    VerificationFailure,
    UnmappedReference,
    OrderNotificationFailed,
    InvalidTransition,
)
from .models import (
    TransactionStatus,
    PaymentOutcome,
    PaymentTransaction,
    TransactionPatch,
    CheckoutRequest,
    CheckoutResult,
    can_transition,
)
from .repository import (
    TransactionStore,
    SupabaseTransactionStore,
    InMemoryTransactionStore,
    get_store,
    set_store,
    reset_store,
)
from .service import PaymentOrchestrator, get_orchestrator
from .webhook import WebhookHandler, WebhookAck, get_monitor, reset_monitor

__all__ = [
    # errors
    "PaymentError",
    "ValidationError",
    "PersistenceError",
    "TransactionNotFound",
    "GatewayNotConfigured",
    "GatewayUnavailable",
    "GatewayRejected",
    "VerificationFailure",
    "UnmappedReference",
    "OrderNotificationFailed",
    "InvalidTransition",
    # models
    "TransactionStatus",
    "PaymentOutcome",
    "PaymentTransaction",
    "TransactionPatch",
    "CheckoutRequest",
    "CheckoutResult",
    "can_transition",
    # store
    "TransactionStore",
    "SupabaseTransactionStore",
    "InMemoryTransactionStore",
    "get_store",
    "set_store",
    "reset_store",
    # services
    "PaymentOrchestrator",
    "get_orchestrator",
    "WebhookHandler",
    "WebhookAck",
    "get_monitor",
    "reset_monitor",
]
