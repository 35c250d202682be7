"""
Vérification des webhooks entrants (frontière de confiance).

Ordre strict:
  1) signature + fenêtre anti-rejeu sur le corps BRUT (aucune lecture du store avant);
  2) parsing JSON + validation de la structure propre à la passerelle;
  3) résolution de la référence passerelle vers une transaction connue.
Tout échec lève VerificationFailure et aucun état n'est modifié.
"""
import json
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

from .errors import UnmappedReference, VerificationFailure
from .gateways.port import GatewayClient, GatewayEvent
from .models import PaymentTransaction
from .repository import TransactionStore
from .signing import Payload

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("paycore.security")


@dataclass(frozen=True)
class VerifiedEvent:
    event: GatewayEvent
    transaction: PaymentTransaction

    @property
    def transaction_id(self) -> str:
        return self.transaction.id


class WebhookVerifier:

    def __init__(self, store: TransactionStore, gateway: GatewayClient, *, tolerance: int = 300) -> None:
        self.store = store
        self.gateway = gateway
        self.tolerance = tolerance

    def verify(self, raw_payload: Payload, signature_header: Optional[str], shared_secret: str) -> VerifiedEvent:
        self.gateway.verify_signature(raw_payload, signature_header or "", shared_secret, self.tolerance)
        try:
            payload = json.loads(raw_payload)
        except (TypeError, ValueError, UnicodeDecodeError) as e:
            raise VerificationFailure("Corps de webhook non JSON") from e
        if not isinstance(payload, dict):
            raise VerificationFailure("Corps de webhook inattendu")
        event = self.gateway.parse_event(payload)
        transaction = self.store.find_by_gateway_reference(event.gateway_reference)
        if transaction is None or transaction.method != self.gateway.name:
            raise UnmappedReference(f"Référence {event.gateway_reference!r} inconnue")
        return VerifiedEvent(event=event, transaction=transaction)


class VerificationMonitor:
    """
    Compte les échecs de vérification sur une fenêtre glissante.
    Au-delà du seuil: log CRITICAL (alerte monitoring), jamais d'erreur visible côté passerelle.
    """

    def __init__(self, threshold: int = 5, window_seconds: int = 300, clock=time.monotonic) -> None:
        self.threshold = threshold
        self.window_seconds = window_seconds
        self._clock = clock
        self._failures: Deque[float] = deque()
        self._lock = threading.Lock()

    def record_failure(self, method: str, error: VerificationFailure, remote: Optional[str] = None) -> bool:
        if isinstance(error, UnmappedReference):
            # Signature valide: callback arrivé avant le commit de la référence, hors du compteur d'alerte
            security_logger.warning(
                "webhook reference not mapped method=%s detail=%s remote=%s", method, error.detail, remote,
            )
            return False
        now = self._clock()
        with self._lock:
            self._failures.append(now)
            while self._failures and now - self._failures[0] > self.window_seconds:
                self._failures.popleft()
            count = len(self._failures)
        security_logger.warning(
            "webhook verification failed method=%s code=%s detail=%s remote=%s",
            method, error.error_code, error.detail, remote,
        )
        if count >= self.threshold:
            security_logger.critical(
                "webhook verification failures above threshold count=%s window=%ss method=%s",
                count, self.window_seconds, method,
            )
            return True
        return False

    def failures_in_window(self) -> int:
        now = self._clock()
        with self._lock:
            return sum(1 for t in self._failures if now - t <= self.window_seconds)
