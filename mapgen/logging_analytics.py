"""
Logging and analytics functions for generation tracking and error monitoring.
"""

import json
import logging
from datetime import datetime

from .settings import LOGS_DIR

# Set up logging
logs_dir = LOGS_DIR
logs_dir.mkdir(parents=True, exist_ok=True)

log_path = logs_dir / "mapgen.log"

# Create a custom logger with proper configuration
logger = logging.getLogger("mapgen")
logger.setLevel(logging.INFO)

# Remove any existing handlers to avoid duplicates on reload
for handler in logger.handlers[:]:
    logger.removeHandler(handler)

# File handler - all logs go to file
file_handler = logging.FileHandler(log_path, encoding='utf-8')
file_handler.setLevel(logging.INFO)
file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))

# Console handler
console_handler = logging.StreamHandler()
console_handler.setLevel(logging.INFO)
console_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))

logger.addHandler(file_handler)
logger.addHandler(console_handler)

# Prevent propagation to root logger (avoids duplicate logs)
logger.propagate = False

# Generation analytics - one JSON line per generation attempt
analytics_dir = logs_dir / "analytics"
analytics_dir.mkdir(exist_ok=True)
analytics_log_path = analytics_dir / "generations.jsonl"

# Initialize Supabase client (lazy loaded to avoid import issues)
_supabase_client = None


def get_supabase():
    """Get the Supabase client, initializing if needed."""
    global _supabase_client
    if _supabase_client is None:
        try:
            from supabase_client import get_supabase_client
            _supabase_client = get_supabase_client()
            if _supabase_client:
                logger.info("Supabase client initialized - cloud logging enabled")
            else:
                logger.info("Supabase not configured - using local logging only")
        except Exception as e:
            logger.warning(f"Could not initialize Supabase client: {e}")
            _supabase_client = False  # Mark as failed to avoid retrying
    return _supabase_client if _supabase_client else None


def log_generation(prompt, kind, success, feature_count=0, documents_used=0,
                   model_name=None, execution_time_ms=None, error=None):
    """
    Append a generation summary to the local analytics JSONL file.

    The full record (raw response, system prompt) goes to the
    ai_generation_logs table; this file is a lightweight local backup.
    """
    entry = {
        "timestamp": datetime.now().isoformat(),
        "prompt": prompt[:500] if prompt else None,
        "kind": kind,
        "success": success,
        "feature_count": feature_count,
        "documents_used": documents_used,
        "model_name": model_name,
        "execution_time_ms": execution_time_ms,
        "error": error,
    }

    try:
        with open(analytics_log_path, 'a', encoding='utf-8') as f:
            json.dump(entry, f, ensure_ascii=False)
            f.write('\n')
    except Exception as e:
        logger.error(f"Failed to log generation locally: {e}")


def log_error_to_cloud(error_type, error_message, query=None, tb=None, metadata=None):
    """
    Log errors to Supabase cloud for centralized error tracking.

    Args:
        error_type: Type of error (e.g., "UpstreamError", "ValueError")
        error_message: The error message
        query: The prompt that caused the error (if applicable)
        tb: Traceback string
        metadata: Additional context
    """
    supabase_client = get_supabase()
    if supabase_client:
        try:
            supabase_client.log_error(
                error_type=error_type,
                error_message=error_message,
                query=query,
                traceback=tb,
                metadata=metadata
            )
        except Exception as e:
            logger.error(f"Failed to log error to Supabase: {e}")
