from typing import Optional
from supabase import create_client, Client, ClientOptions
from paycore.config import SUPABASE_URL, SUPABASE_SERVICE_KEY, STORE_TIMEOUT_SECONDS

_service_supabase: Optional[Client] = None

def get_service_supabase() -> Client:
    """
    Client Supabase 'service-role' (bypass RLS) partagé par le store des transactions.
    - Les appels PostgREST sont bornés par STORE_TIMEOUT_SECONDS.
    """
    global _service_supabase
    if not SUPABASE_URL or not SUPABASE_SERVICE_KEY:
        raise RuntimeError("SUPABASE_URL / SUPABASE_SERVICE_KEY manquants pour get_service_supabase()")
    if _service_supabase is None:
        options = ClientOptions(postgrest_client_timeout=STORE_TIMEOUT_SECONDS)
        _service_supabase = create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY, options=options)
    return _service_supabase

def reset_service_supabase() -> None:
    global _service_supabase
    _service_supabase = None
