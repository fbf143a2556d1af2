from typing import Any, Optional
from supabase import create_client, Client
from postgrest.exceptions import APIError
from storefront import config

_supabase: Optional[Client] = None
_service_supabase: Optional[Client] = None

UNIQUE_VIOLATION = "23505"

def get_supabase() -> Client:
    """Client 'anon' (auth utilisateur, lecture publique)."""
    global _supabase
    if _supabase is None:
        if not config.SUPABASE_URL or not config.SUPABASE_ANON:
            raise RuntimeError("SUPABASE_URL/SUPABASE_ANON_KEY manquants")
        _supabase = create_client(config.SUPABASE_URL, config.SUPABASE_ANON)
    return _supabase

def get_service_supabase() -> Client:
    """
    Client service-role (bypass RLS).
    Utilisé par le webhook Stripe et les repositories panier/commandes: aucune session utilisateur n'y est disponible.
    """
    global _service_supabase
    if not config.SUPABASE_SERVICE_KEY:
        raise RuntimeError("SUPABASE_SERVICE_KEY manquant pour get_service_supabase()")
    if _service_supabase is None:
        _service_supabase = create_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_KEY)
    return _service_supabase

def api_error_code(exc: APIError) -> Optional[str]:
    """Code Postgres d'une APIError PostgREST (ex: '23505'), quelle que soit la version de postgrest."""
    code: Any = getattr(exc, "code", None)
    if not code and exc.args and isinstance(exc.args[0], dict):
        code = exc.args[0].get("code")
    return str(code) if code else None

def is_unique_violation(exc: APIError) -> bool:
    return api_error_code(exc) == UNIQUE_VIOLATION

def first_row(data: Any) -> Optional[dict]:
    """Normalise res.data: certaines versions de supabase-py renvoient une liste, d'autres un dict."""
    if isinstance(data, list):
        return data[0] if data else None
    if isinstance(data, dict):
        return data or None
    return None
