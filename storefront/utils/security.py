import logging
from typing import Optional

from fastapi import Request

from storefront import config
from storefront.carts.models import Identity
from storefront.infra import supabase_client

logger = logging.getLogger(__name__)

COOKIE_NAME = config.COOKIE_NAME

def _access_token(request: Request) -> Optional[str]:
    # Hybride: priorité au Bearer, fallback cookie
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(COOKIE_NAME) or None

def get_user_id_from_token(access_token: str) -> Optional[str]:
    """
    Résout l'utilisateur Supabase d'un access token.
    Token invalide/expiré => None (la requête retombe sur l'identité invité).
    """
    try:
        res = supabase_client.get_supabase().auth.get_user(access_token)
    except Exception as e:
        logger.info("security.get_user_from_token rejected: %s", e)
        return None
    user = getattr(res, "user", None)
    uid = getattr(user, "id", None)
    return str(uid) if uid else None

def get_optional_identity(request: Request) -> Optional[Identity]:
    """
    Dépendance FastAPI: identité facultative du checkout.
    - Utilisateur authentifié (Bearer ou cookie de session) prioritaire
    - Sinon en-tête invité (x-guest-token)
    - Aucun des deux => None
    """
    token = _access_token(request)
    user_id = get_user_id_from_token(token) if token else None
    guest_token = request.headers.get(config.GUEST_TOKEN_HEADER)
    return Identity.from_values(user_id, guest_token)
