"""
Registre des passerelles de paiement, sélectionnées par `method`.

- get_gateway(method): retourne l'adaptateur (construit à la demande depuis la config).
- register_gateway(gateway): ajoute/remplace un adaptateur (tests, nouvelle passerelle).
- reset_gateways(): revient aux adaptateurs par défaut.
"""
from typing import Dict, Optional

from paycore import config
from paycore.payments.errors import GatewayNotConfigured

from .curlec_client import CurlecGateway
from .port import (
    Address,
    GatewayClient,
    GatewayCreateRequest,
    GatewayCreateResult,
    GatewayEvent,
    PayerContact,
)
from .stripe_client import StripeGateway

_gateways: Dict[str, GatewayClient] = {}


def _build_default(method: str) -> Optional[GatewayClient]:
    if method == "curlec":
        if not config.CURLEC_API_KEY or not config.CURLEC_API_SECRET:
            return None
        return CurlecGateway(
            config.CURLEC_API_KEY,
            config.CURLEC_API_SECRET,
            base_url=config.CURLEC_API_BASE_URL,
            webhook_secret=config.CURLEC_WEBHOOK_SECRET,
            timeout=config.GATEWAY_TIMEOUT_SECONDS,
        )
    if method == "stripe":
        if not config.STRIPE_SECRET_KEY:
            return None
        return StripeGateway(
            config.STRIPE_SECRET_KEY,
            webhook_secret=config.STRIPE_WEBHOOK_SECRET,
            timeout=config.GATEWAY_TIMEOUT_SECONDS,
        )
    return None


def get_gateway(method: str) -> GatewayClient:
    key = (method or "").strip().lower()
    gateway = _gateways.get(key)
    if gateway is None:
        gateway = _build_default(key)
        if gateway is None:
            raise GatewayNotConfigured(f"Passerelle '{method}' inconnue ou non configurée")
        _gateways[key] = gateway
    return gateway


def register_gateway(gateway: GatewayClient, method: Optional[str] = None) -> None:
    _gateways[(method or gateway.name).lower()] = gateway


def reset_gateways() -> None:
    _gateways.clear()


__all__ = [
    "Address",
    "CurlecGateway",
    "GatewayClient",
    "GatewayCreateRequest",
    "GatewayCreateResult",
    "GatewayEvent",
    "PayerContact",
    "StripeGateway",
    "get_gateway",
    "register_gateway",
    "reset_gateways",
]
