from urllib.parse import urlparse
from typing import Any, Dict

from paycore import config
from paycore.payments import gateways as payments_gateways
from paycore.payments.errors import GatewayNotConfigured
from paycore.payments.repository import get_store


def health_store_info() -> Dict[str, Any]:
    """
    État du store des transactions et des passerelles configurées.
    - store.ok: résultat de TransactionStore.ping()
    - gateways: méthode -> configurée (credentials présents) ou non
    """
    parsed = urlparse(config.SUPABASE_URL) if config.SUPABASE_URL else None
    info: Dict[str, Any] = {
        "backend": config.PAYMENT_STORE_BACKEND,
        "hostname": parsed.hostname if parsed else None,
        "ok": False,
        "error": None,
        "gateways": {},
    }
    try:
        info["ok"] = get_store().ping()
    except Exception as e:
        info["error"] = str(e)
    for method in ("curlec", "stripe"):
        try:
            payments_gateways.get_gateway(method)
            info["gateways"][method] = True
        except GatewayNotConfigured:
            info["gateways"][method] = False
    return info
