"""
Schéma de signature des webhooks (HMAC-SHA256 horodaté).

En-tête: "t=<unix>,v1=<hex>" avec v1 = HMAC-SHA256(secret, "<t>.<corps brut>").
- Comparaison en temps constant (hmac.compare_digest).
- Fenêtre anti-rejeu: |maintenant - t| <= tolerance.
- Plusieurs v1 acceptés (rotation de secret).
"""
import hashlib
import hmac
import time
from typing import List, Optional, Tuple, Union

from .errors import VerificationFailure

Payload = Union[bytes, str]


def _as_bytes(payload: Payload) -> bytes:
    return payload if isinstance(payload, bytes) else payload.encode("utf-8")


def compute_signature(payload: Payload, timestamp: int, secret: str) -> str:
    signed = str(timestamp).encode("ascii") + b"." + _as_bytes(payload)
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def sign_payload(payload: Payload, secret: str, timestamp: Optional[int] = None) -> str:
    """Construit l'en-tête de signature (côté émetteur / tests)."""
    ts = int(time.time()) if timestamp is None else int(timestamp)
    return f"t={ts},v1={compute_signature(payload, ts, secret)}"


def parse_signature_header(header: str) -> Tuple[int, List[str]]:
    timestamp: Optional[int] = None
    signatures: List[str] = []
    for part in (header or "").split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise VerificationFailure("Horodatage de signature invalide")
        elif key == "v1" and value:
            signatures.append(value)
    if timestamp is None or not signatures:
        raise VerificationFailure("En-tête de signature incomplet")
    return timestamp, signatures


def verify_signature_header(payload: Payload, header: str, secret: str, tolerance: int,
                            now: Optional[float] = None) -> int:
    """Valide l'en-tête pour ce corps brut; retourne l'horodatage signé ou lève VerificationFailure."""
    if not secret:
        raise VerificationFailure("Secret de signature non configuré")
    if not header:
        raise VerificationFailure("En-tête de signature manquant")
    timestamp, candidates = parse_signature_header(header)
    expected = compute_signature(payload, timestamp, secret)
    if not any(hmac.compare_digest(expected, c) for c in candidates):
        raise VerificationFailure("Signature invalide")
    current = time.time() if now is None else now
    if tolerance > 0 and abs(current - timestamp) > tolerance:
        raise VerificationFailure("Signature hors fenêtre de tolérance (rejeu possible)")
    return timestamp
