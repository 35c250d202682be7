# paycore.config
from dataclasses import dataclass
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

"""
Configuration centrale du service de paiement.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Curlec, Stripe), CORS/hosts
- Expose les bornes d'exécution (timeouts, retries, fenêtre anti-rejeu)
- payments_settings() regroupe ces valeurs pour l'injection dans les services
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _float_env(name: str, default: float) -> float:
    try:
        return float(_clean_env(os.getenv(name)) or default)
    except ValueError:
        return default

def _int_env(name: str, default: int) -> int:
    try:
        return int(_clean_env(os.getenv(name)) or default)
    except ValueError:
        return default

# Supabase: URL et clé service (écritures côté serveur, table payment_transactions)
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Backend de stockage des transactions: "supabase" (prod) ou "memory" (dev/tests)
PAYMENT_STORE_BACKEND = _clean_env(os.getenv("PAYMENT_STORE_BACKEND") or "supabase").lower()
DEFAULT_CURRENCY = _clean_env(os.getenv("DEFAULT_CURRENCY") or "MYR").upper()

# Sécurité / réseau
COOKIE_SECURE = (os.getenv("COOKIE_SECURE", "false").lower() == "true")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]

# Curlec: endpoint, paire d'identifiants (Basic auth) et secret de signature webhook
CURLEC_API_BASE_URL = _clean_env(os.getenv("CURLEC_API_BASE_URL") or "https://api.curlec.com").rstrip("/")
CURLEC_API_KEY = _clean_env(os.getenv("CURLEC_API_KEY") or "")
CURLEC_API_SECRET = _clean_env(os.getenv("CURLEC_API_SECRET") or "")
CURLEC_WEBHOOK_SECRET = _clean_env(os.getenv("CURLEC_WEBHOOK_SECRET") or "")

# Stripe: clé privée et secret webhook
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET") or "")

# URLs de redirection (navigateur) et de callback (serveur)
BASE_URL = _clean_env(os.getenv("BASE_URL") or "http://localhost:8000").rstrip("/")
PAYMENT_REDIRECT_PATH = os.getenv("PAYMENT_REDIRECT_PATH", "/payment/success")
PAYMENT_CALLBACK_PATH = os.getenv("PAYMENT_CALLBACK_PATH", "/api/v1/payments/webhook")

# Bornes d'exécution
GATEWAY_TIMEOUT_SECONDS = _float_env("GATEWAY_TIMEOUT_SECONDS", 10.0)
STORE_TIMEOUT_SECONDS = _float_env("STORE_TIMEOUT_SECONDS", 5.0)
MAX_CREATE_RETRIES = _int_env("MAX_CREATE_RETRIES", 3)
RETRY_BACKOFF_BASE_SECONDS = _float_env("RETRY_BACKOFF_BASE_SECONDS", 0.5)
RETRY_BACKOFF_MAX_SECONDS = _float_env("RETRY_BACKOFF_MAX_SECONDS", 8.0)

# Webhooks: fenêtre anti-rejeu et seuil d'alerte sécurité
WEBHOOK_TOLERANCE_SECONDS = _int_env("WEBHOOK_TOLERANCE_SECONDS", 300)
WEBHOOK_ALERT_THRESHOLD = _int_env("WEBHOOK_ALERT_THRESHOLD", 5)
WEBHOOK_ALERT_WINDOW_SECONDS = _int_env("WEBHOOK_ALERT_WINDOW_SECONDS", 300)

LOG_LEVEL = _clean_env(os.getenv("LOG_LEVEL") or "info").upper()


@dataclass(frozen=True)
class PaymentSettings:
    base_url: str = BASE_URL
    redirect_path: str = PAYMENT_REDIRECT_PATH
    callback_path: str = PAYMENT_CALLBACK_PATH
    gateway_timeout: float = GATEWAY_TIMEOUT_SECONDS
    store_timeout: float = STORE_TIMEOUT_SECONDS
    max_create_retries: int = MAX_CREATE_RETRIES
    backoff_base: float = RETRY_BACKOFF_BASE_SECONDS
    backoff_max: float = RETRY_BACKOFF_MAX_SECONDS
    webhook_tolerance: int = WEBHOOK_TOLERANCE_SECONDS
    alert_threshold: int = WEBHOOK_ALERT_THRESHOLD
    alert_window: int = WEBHOOK_ALERT_WINDOW_SECONDS

    def redirect_url(self, transaction_id: str) -> str:
        return f"{self.base_url}{self.redirect_path}?transaction_id={transaction_id}"

    def callback_url(self, method: str) -> str:
        return f"{self.base_url}{self.callback_path}/{method}"


def payments_settings() -> PaymentSettings:
    """Retourne les réglages paiement courants (valeurs issues de l'environnement)."""
    return PaymentSettings()
