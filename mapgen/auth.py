"""
Caller identity from Supabase access tokens.
"""

import logging

from .errors import AuthorizationError

logger = logging.getLogger("mapgen")


def extract_bearer_token(authorization: str):
    """Token from an 'Authorization: Bearer <token>' header, or None."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def resolve_user(auth_client, profile_store, token: str):
    """
    Look up the user owning an access token.

    Args:
        auth_client: supabase client .auth (GoTrue) API
        profile_store: ProfileStore used for the admin flag
        token: access token

    Returns:
        {"id", "email", "is_admin"} or None when the token is invalid
    """
    if not token:
        return None
    try:
        response = auth_client.get_user(token)
    except Exception as e:
        logger.warning(f"Token rejected: {e}")
        return None

    user = getattr(response, "user", None)
    if user is None:
        return None

    return {
        "id": user.id,
        "email": getattr(user, "email", None),
        "is_admin": profile_store.is_admin(user.id),
    }


def require_user(user) -> dict:
    if not user:
        raise AuthorizationError("Authentication required")
    return user


def require_admin(user) -> dict:
    require_user(user)
    if not user.get("is_admin"):
        raise AuthorizationError("Admin access required", status_code=403)
    return user
