"""
Table repositories over the Supabase client.

Each store wraps one table and takes the supabase-py Client by injection,
so tests can swap in in-memory stores with the same methods. Reads return
[] / None when the backend fails; the failure is logged.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .errors import ShareValidationError
from .geodata import validate_feature_collection

logger = logging.getLogger("mapgen")

# Attempts at minting a share token that is not already taken
MAX_TOKEN_ATTEMPTS = 5


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class TableStore:
    """Common CRUD over a single table."""

    table_name = None
    order_column = "created_at"
    order_desc = True

    def __init__(self, client):
        self.client = client

    def table(self):
        return self.client.table(self.table_name)

    def list_all(self, limit: int = None) -> List[Dict]:
        try:
            query = self.table().select("*").order(self.order_column, desc=self.order_desc)
            if limit:
                query = query.limit(limit)
            result = query.execute()
            return result.data if result.data else []
        except Exception as e:
            logger.error(f"Failed to list {self.table_name}: {e}")
            return []

    def get(self, row_id) -> Optional[Dict]:
        try:
            result = self.table().select("*").eq("id", row_id).execute()
            return result.data[0] if result.data else None
        except Exception as e:
            logger.error(f"Failed to get {self.table_name} {row_id}: {e}")
            return None

    def insert(self, data: Dict[str, Any]) -> Optional[Dict]:
        try:
            result = self.table().insert(data).execute()
            return result.data[0] if result.data else None
        except Exception as e:
            logger.error(f"Failed to insert into {self.table_name}: {e}")
            return None

    def update(self, row_id, fields: Dict[str, Any]) -> Optional[Dict]:
        try:
            result = self.table().update(fields).eq("id", row_id).execute()
            return result.data[0] if result.data else None
        except Exception as e:
            logger.error(f"Failed to update {self.table_name} {row_id}: {e}")
            return None

    def delete(self, row_id) -> bool:
        try:
            self.table().delete().eq("id", row_id).execute()
            return True
        except Exception as e:
            logger.error(f"Failed to delete {self.table_name} {row_id}: {e}")
            return False

    def count(self) -> int:
        try:
            result = self.table().select("id", count="exact").limit(1).execute()
            return result.count or 0
        except Exception as e:
            logger.error(f"Failed to count {self.table_name}: {e}")
            return 0


class ActiveFlagMixin:
    """Tables soft-deleted through an is_active column."""

    def list_active(self) -> List[Dict]:
        try:
            result = (self.table().select("*").eq("is_active", True)
                      .order(self.order_column, desc=self.order_desc).execute())
            return result.data if result.data else []
        except Exception as e:
            logger.error(f"Failed to list active {self.table_name}: {e}")
            return []

    def set_active(self, row_id, is_active: bool) -> Optional[Dict]:
        return self.update(row_id, {"is_active": is_active})


class DocumentStore(ActiveFlagMixin, TableStore):
    """Reference documents used as generation context."""

    table_name = "documents"
    order_desc = False
    bucket = "documents"

    def list_context_documents(self) -> List[Dict]:
        """Active, embedding-processed documents, oldest first."""
        try:
            result = (self.table().select("*")
                      .eq("is_active", True)
                      .eq("embedding_processed", True)
                      .order("created_at").order("name")
                      .execute())
            return result.data if result.data else []
        except Exception as e:
            logger.error(f"Failed to load context documents: {e}")
            return []

    def update(self, row_id, fields: Dict[str, Any]) -> Optional[Dict]:
        return super().update(row_id, {**fields, "updated_at": utc_now()})

    def mark_processed(self, row_id, processed: bool = True) -> Optional[Dict]:
        return self.update(row_id, {"embedding_processed": processed})

    def upload_file(self, path: str, content: bytes, content_type: str = None) -> Optional[str]:
        """Upload a file to the documents bucket and return its public URL."""
        try:
            options = {"content-type": content_type} if content_type else None
            self.client.storage.from_(self.bucket).upload(path, content, options)
            return self.client.storage.from_(self.bucket).get_public_url(path)
        except Exception as e:
            logger.error(f"Failed to upload {path}: {e}")
            return None


class GenerationLogStore(TableStore):
    """One row per generation attempt, validated afterwards by admins."""

    table_name = "ai_generation_logs"

    def list_logs(self, limit: int = 100, offset: int = 0,
                  validated: Optional[bool] = None, success: Optional[bool] = None) -> List[Dict]:
        try:
            query = self.table().select("*")
            if validated is not None:
                query = query.eq("is_validated", validated)
            if success is not None:
                query = query.eq("success", success)
            query = query.order("created_at", desc=True).range(offset, offset + limit - 1)
            result = query.execute()
            return result.data if result.data else []
        except Exception as e:
            logger.error(f"Failed to list generation logs: {e}")
            return []

    def validate(self, log_id, notes: str = None, corrected_geojson=None,
                 is_validated: bool = True) -> Optional[Dict]:
        """The only mutation allowed on a log row."""
        return self.update(log_id, {
            "is_validated": is_validated,
            "validation_notes": notes,
            "corrected_geojson": corrected_geojson,
        })


class GeneratedMapStore(TableStore):
    """Successful generations. Immutable except is_public."""

    table_name = "generated_geojson"

    def save(self, name: str, geojson_data: dict, ai_prompt: str, created_by=None,
             description: str = None, is_public: bool = False) -> Optional[Dict]:
        """Persist a generated FeatureCollection; malformed collections are not stored."""
        valid, reason = validate_feature_collection(geojson_data)
        if not valid:
            logger.warning(f"Generated map not saved: {reason}")
            return None
        return self.insert({
            "name": name,
            "description": description,
            "geojson_data": geojson_data,
            "ai_prompt": ai_prompt,
            "created_by": created_by,
            "is_public": is_public,
        })

    def list_for_user(self, user_id, limit: int = 50) -> List[Dict]:
        try:
            result = (self.table().select("*").eq("created_by", user_id)
                      .order("created_at", desc=True).limit(limit).execute())
            return result.data if result.data else []
        except Exception as e:
            logger.error(f"Failed to list maps for {user_id}: {e}")
            return []

    def set_public(self, map_id, is_public: bool) -> Optional[Dict]:
        return self.update(map_id, {"is_public": is_public})


class SharedMapStore(TableStore):
    """Shared map snapshots addressed by an unguessable token."""

    table_name = "shared_maps"

    def get_by_token(self, token: str) -> Optional[Dict]:
        try:
            result = self.table().select("*").eq("share_token", token).execute()
            return result.data[0] if result.data else None
        except Exception as e:
            logger.error(f"Failed to get shared map by token: {e}")
            return None

    def token_exists(self, token: str) -> bool:
        return self.get_by_token(token) is not None

    def create(self, record: Dict[str, Any], token_factory) -> Optional[Dict]:
        """Insert a share with a fresh token from token_factory."""
        for _ in range(MAX_TOKEN_ATTEMPTS):
            token = token_factory()
            if not self.token_exists(token):
                return self.insert({**record, "share_token": token, "view_count": 0})
            logger.warning("Share token collision, minting a new one")
        raise ShareValidationError("Could not mint a unique share token")

    def increment_views(self, share: Dict) -> Optional[Dict]:
        return self.update(share["id"], {"view_count": (share.get("view_count") or 0) + 1})

    def set_public(self, share_id, is_public: bool) -> Optional[Dict]:
        return self.update(share_id, {"is_public": is_public})

    def list_for_user(self, user_id) -> List[Dict]:
        try:
            result = (self.table().select("*").eq("created_by", user_id)
                      .order("created_at", desc=True).execute())
            return result.data if result.data else []
        except Exception as e:
            logger.error(f"Failed to list shares for {user_id}: {e}")
            return []


class EPCIStore(ActiveFlagMixin, TableStore):
    """Intercommunal bodies with inline GeoJSON or a GeoJSON URL."""

    table_name = "epci"
    order_column = "name"
    order_desc = False


class TemplateStore(ActiveFlagMixin, TableStore):
    table_name = "geojson_templates"
    order_column = "name"
    order_desc = False


class AIConfigStore(TableStore):
    """Model name, base system prompt and API key variable name."""

    table_name = "ai_config"

    def get_active(self) -> Optional[Dict]:
        try:
            result = (self.table().select("*").eq("is_active", True)
                      .order("created_at", desc=True).limit(1).execute())
            return result.data[0] if result.data else None
        except Exception as e:
            logger.error(f"Failed to load active AI config: {e}")
            return None

    def activate(self, config_id) -> Optional[Dict]:
        """Make one config active and deactivate the others."""
        try:
            self.table().update({"is_active": False}).neq("id", config_id).execute()
        except Exception as e:
            logger.error(f"Failed to deactivate AI configs: {e}")
            return None
        return self.update(config_id, {"is_active": True})


class ProfileStore(TableStore):
    table_name = "profiles"

    def get_by_user(self, user_id) -> Optional[Dict]:
        try:
            result = self.table().select("*").eq("user_id", user_id).execute()
            return result.data[0] if result.data else None
        except Exception as e:
            logger.error(f"Failed to load profile {user_id}: {e}")
            return None

    def is_admin(self, user_id) -> bool:
        profile = self.get_by_user(user_id)
        return bool(profile and profile.get("is_admin"))


class Stores:
    """All repositories over one client."""

    def __init__(self, client):
        self.documents = DocumentStore(client)
        self.generation_logs = GenerationLogStore(client)
        self.generated_maps = GeneratedMapStore(client)
        self.shared_maps = SharedMapStore(client)
        self.epci = EPCIStore(client)
        self.templates = TemplateStore(client)
        self.ai_config = AIConfigStore(client)
        self.profiles = ProfileStore(client)
