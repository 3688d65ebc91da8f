"""
Supabase client for the BFC map generator.
Handles the tables behind generation, sharing and the admin dashboard,
plus error logs for centralized monitoring.

Setup:
1. Add to your .env file:
   SUPABASE_URL=your_project_url
   SUPABASE_ANON_KEY=your_anon_key
   SUPABASE_SERVICE_KEY=your_service_role_key  (optional, for admin operations)

2. Create tables in Supabase SQL Editor:
   See CREATE_TABLES_SQL below, or run this file to print it.
"""

import os
import json
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from supabase import create_client, Client
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger("mapgen")

# Tables checked by test_connection()
TABLES = [
    "documents",
    "ai_generation_logs",
    "generated_geojson",
    "shared_maps",
    "epci",
    "geojson_templates",
    "ai_config",
    "profiles",
    "error_logs",
]


class SupabaseClient:
    """Supabase client shared by the API, the stores and the admin dashboard."""

    def __init__(self):
        self.url = os.getenv("SUPABASE_URL")
        self.anon_key = os.getenv("SUPABASE_ANON_KEY")
        self.service_key = os.getenv("SUPABASE_SERVICE_KEY")

        if not self.url or not (self.anon_key or self.service_key):
            raise ValueError(
                "SUPABASE_URL and SUPABASE_ANON_KEY (or SUPABASE_SERVICE_KEY) must be set in .env file"
            )

        # Use service key if available (for admin operations), otherwise anon key
        key = self.service_key if self.service_key else self.anon_key
        self.client: Client = create_client(self.url, key)

    # --- Error Logs ---

    def log_error(
        self,
        error_type: str,
        error_message: str,
        query: Optional[str] = None,
        traceback: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict]:
        """
        Log an error to the error_logs table.

        Args:
            error_type: Type of error (e.g., "UpstreamError", "ValueError")
            error_message: The error message
            query: The prompt that caused the error (if applicable)
            traceback: Full traceback string
            metadata: Additional context

        Returns:
            The inserted row or None if failed
        """
        try:
            data = {
                "error_type": error_type,
                "error_message": error_message,
                "query": query,
                "traceback": traceback,
                "metadata": json.dumps(metadata) if metadata else None,
                "created_at": datetime.now(timezone.utc).isoformat()
            }

            result = self.client.table("error_logs").insert(data).execute()
            return result.data[0] if result.data else None

        except Exception as e:
            logger.error(f"Failed to log error to Supabase: {e}")
            return None

    def get_error_logs(self, limit: int = 50) -> List[Dict]:
        """Get recent error logs."""
        try:
            result = self.client.table("error_logs").select("*").order("created_at", desc=True).limit(limit).execute()
            return result.data if result.data else []
        except Exception as e:
            logger.error(f"Failed to get error logs: {e}")
            return []

    # --- Dashboard Stats ---

    def get_generation_stats(self) -> Dict[str, Any]:
        """
        Aggregate generation statistics for the dashboard overview.

        Returns:
            Dict with total_generations, failed_generations, success_rate,
            validated_generations, total_shares, total_views
        """
        try:
            total = self.client.table("ai_generation_logs").select("id", count="exact").limit(1).execute()
            failed = (self.client.table("ai_generation_logs").select("id", count="exact")
                      .eq("success", False).limit(1).execute())
            validated = (self.client.table("ai_generation_logs").select("id", count="exact")
                         .eq("is_validated", True).limit(1).execute())
            shares = self.client.table("shared_maps").select("view_count").execute()

            total_count = total.count or 0
            failed_count = failed.count or 0
            share_rows = shares.data or []

            return {
                "total_generations": total_count,
                "failed_generations": failed_count,
                "success_rate": ((total_count - failed_count) / total_count * 100) if total_count > 0 else 0,
                "validated_generations": validated.count or 0,
                "total_shares": len(share_rows),
                "total_views": sum(row.get("view_count") or 0 for row in share_rows),
            }

        except Exception as e:
            logger.error(f"Failed to get generation stats from Supabase: {e}")
            return {
                "total_generations": 0,
                "failed_generations": 0,
                "success_rate": 0,
                "validated_generations": 0,
                "total_shares": 0,
                "total_views": 0,
            }

    # --- Connection Test ---

    def test_connection(self) -> Dict[str, Any]:
        """
        Test the Supabase connection and return status.

        Returns:
            Dict with connection status and table info
        """
        try:
            tables = {}

            for table in TABLES:
                try:
                    # profiles is keyed by user_id
                    column = "user_id" if table == "profiles" else "id"
                    result = self.client.table(table).select(column, count="exact").limit(1).execute()
                    tables[table] = {
                        "exists": True,
                        "count": result.count or 0
                    }
                except Exception as e:
                    tables[table] = {
                        "exists": False,
                        "error": str(e)
                    }

            return {
                "connected": True,
                "url": self.url,
                "tables": tables
            }

        except Exception as e:
            return {
                "connected": False,
                "error": str(e)
            }


def get_supabase_client() -> Optional[SupabaseClient]:
    """
    Get a Supabase client instance, or None if not configured.

    Returns:
        SupabaseClient instance or None
    """
    try:
        return SupabaseClient()
    except ValueError as e:
        logger.warning(f"Supabase not available: {e}")
        return None


# SQL to create tables (run once in Supabase SQL Editor)
CREATE_TABLES_SQL = """
-- Reference documents used as generation context
CREATE TABLE IF NOT EXISTS documents (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name TEXT NOT NULL,
    description TEXT,
    prompt TEXT,
    metadata JSONB DEFAULT '{}',
    is_active BOOLEAN DEFAULT TRUE,
    embedding_processed BOOLEAN DEFAULT FALSE,
    file_url TEXT,
    file_type TEXT,
    file_size BIGINT,
    created_by UUID REFERENCES auth.users(id),
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_documents_context ON documents(is_active, embedding_processed, created_at);

-- One row per generation attempt
CREATE TABLE IF NOT EXISTS ai_generation_logs (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_prompt TEXT NOT NULL,
    raw_ai_response TEXT,
    ai_response JSONB,
    success BOOLEAN DEFAULT FALSE,
    error_message TEXT,
    model_name TEXT,
    system_prompt TEXT,
    execution_time_ms INTEGER,
    created_by UUID REFERENCES auth.users(id),
    is_validated BOOLEAN DEFAULT FALSE,
    validation_notes TEXT,
    corrected_geojson JSONB,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_generation_logs_created_at ON ai_generation_logs(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_generation_logs_success ON ai_generation_logs(success);

-- Successful generations
CREATE TABLE IF NOT EXISTS generated_geojson (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name TEXT NOT NULL,
    description TEXT,
    geojson_data JSONB NOT NULL,
    ai_prompt TEXT,
    created_by UUID REFERENCES auth.users(id),
    is_public BOOLEAN DEFAULT FALSE,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_generated_geojson_owner ON generated_geojson(created_by, created_at DESC);

-- Shared map snapshots
CREATE TABLE IF NOT EXISTS shared_maps (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    title TEXT NOT NULL,
    description TEXT,
    map_data JSONB,
    layers JSONB DEFAULT '[]',
    share_token TEXT UNIQUE NOT NULL,
    is_public BOOLEAN DEFAULT TRUE,
    view_count INTEGER DEFAULT 0,
    created_by UUID REFERENCES auth.users(id),
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_shared_maps_token ON shared_maps(share_token);

-- Intercommunal bodies (EPCI)
CREATE TABLE IF NOT EXISTS epci (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name TEXT NOT NULL,
    code TEXT UNIQUE NOT NULL,
    description TEXT,
    geojson_data JSONB,
    geojson_url TEXT,
    population INTEGER,
    area_km2 DOUBLE PRECISION,
    is_active BOOLEAN DEFAULT TRUE,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

-- GeoJSON templates
CREATE TABLE IF NOT EXISTS geojson_templates (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name TEXT NOT NULL,
    description TEXT,
    geojson_url TEXT,
    properties JSONB DEFAULT '{}',
    style_config JSONB DEFAULT '{}',
    is_active BOOLEAN DEFAULT TRUE,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

-- Model configuration (one active row)
CREATE TABLE IF NOT EXISTS ai_config (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    model_name TEXT NOT NULL DEFAULT 'mistral-large-latest',
    system_prompt TEXT,
    api_key_name TEXT DEFAULT 'MISTRAL_API_KEY',
    is_active BOOLEAN DEFAULT FALSE,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

-- User profiles (admin flag)
CREATE TABLE IF NOT EXISTS profiles (
    user_id UUID PRIMARY KEY REFERENCES auth.users(id),
    email TEXT,
    full_name TEXT,
    is_admin BOOLEAN DEFAULT FALSE,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

-- Error logs table
CREATE TABLE IF NOT EXISTS error_logs (
    id BIGSERIAL PRIMARY KEY,
    error_type TEXT NOT NULL,
    error_message TEXT NOT NULL,
    query TEXT,
    traceback TEXT,
    metadata JSONB,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_error_logs_created_at ON error_logs(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_error_logs_type ON error_logs(error_type);

-- Enable Row Level Security (optional, for public access control)
-- ALTER TABLE shared_maps ENABLE ROW LEVEL SECURITY;
-- ALTER TABLE generated_geojson ENABLE ROW LEVEL SECURITY;
-- ALTER TABLE ai_generation_logs ENABLE ROW LEVEL SECURITY;
"""


if __name__ == "__main__":
    # Test connection
    print("Testing Supabase connection...")

    try:
        client = SupabaseClient()
        status = client.test_connection()

        if status["connected"]:
            print(f"Connected to: {status['url']}")
            print("\nTable status:")
            for table, info in status["tables"].items():
                if info["exists"]:
                    print(f"  {table}: {info['count']} rows")
                else:
                    print(f"  {table}: NOT FOUND - {info.get('error', 'unknown error')}")

            print("\nIf tables don't exist, run this SQL in Supabase SQL Editor:")
            print("-" * 50)
            print(CREATE_TABLES_SQL)
        else:
            print(f"Connection failed: {status['error']}")

    except Exception as e:
        print(f"Error: {e}")
