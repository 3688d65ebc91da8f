"""
Shared map links.

A share moves through: draft (not yet saved) -> shared (is_public) ->
unpublished (not is_public) <-> shared -> deleted. Only public shares are
served to anonymous visitors; every served fetch counts one view.
"""

import logging
import secrets

from .errors import AuthorizationError, MapGenError, ShareNotFound, ShareValidationError

logger = logging.getLogger("mapgen")


def new_share_token() -> str:
    """URL-safe token from 16 random bytes."""
    return secrets.token_urlsafe(16)


def share_url(token: str, base_url: str = "") -> str:
    return f"{base_url.rstrip('/')}/map/{token}"


def share_state(share) -> str:
    if share is None:
        return "deleted"
    return "shared" if share.get("is_public") else "unpublished"


def _require_user(user):
    if not user or not user.get("id"):
        raise AuthorizationError("Authentication required")


def _require_owner_or_admin(user, share):
    _require_user(user)
    if share.get("created_by") != user["id"] and not user.get("is_admin"):
        raise AuthorizationError("Only the owner or an admin can modify this share", status_code=403)


class ShareService:
    """Share operations over a SharedMapStore."""

    def __init__(self, store, token_factory=new_share_token):
        self.store = store
        self.token_factory = token_factory

    def create_share(self, user, title: str, map_data, layers=None,
                     description: str = None, is_public: bool = True) -> dict:
        """
        Save a snapshot of the current map under a new token.

        Raises:
            AuthorizationError: no authenticated user
            ShareValidationError: empty title
        """
        _require_user(user)
        title = (title or "").strip()
        if not title:
            raise ShareValidationError("Title is required")

        record = {
            "title": title,
            "description": (description or "").strip() or None,
            "map_data": map_data,
            "layers": layers or [],
            "is_public": is_public,
            "created_by": user["id"],
        }
        share = self.store.create(record, self.token_factory)
        if share is None:
            raise MapGenError("Share could not be saved")

        logger.info(f"Share created by {user['id']} ({'public' if is_public else 'private'})")
        return share

    def fetch_public(self, token: str) -> dict:
        """
        Public share for a token, counting one view.

        Raises:
            ShareNotFound: unknown token or share not public (no view counted)
        """
        share = self.store.get_by_token(token) if token else None
        if share is None or not share.get("is_public"):
            raise ShareNotFound("Shared map not found")

        updated = self.store.increment_views(share)
        if updated is not None:
            return updated
        return {**share, "view_count": (share.get("view_count") or 0) + 1}

    def _get_owned(self, user, share_id) -> dict:
        share = self.store.get(share_id)
        if share is None:
            raise ShareNotFound("Shared map not found")
        _require_owner_or_admin(user, share)
        return share

    def set_visibility(self, user, share_id, is_public: bool) -> dict:
        self._get_owned(user, share_id)
        updated = self.store.set_public(share_id, bool(is_public))
        if updated is None:
            raise MapGenError("Share could not be updated")
        return updated

    def delete_share(self, user, share_id) -> bool:
        self._get_owned(user, share_id)
        if not self.store.delete(share_id):
            raise MapGenError("Share could not be deleted")
        logger.info(f"Share {share_id} deleted by {user['id']}")
        return True
