"""
Settings Management for mapgen

Environment variables (loaded from .env) provide credentials and service
endpoints. settings.json in the project root holds operator overrides
(data folder, geocoding fan-out) that can be edited from the /settings
endpoint without restarting the server.
"""

import json
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Project root (folder containing app.py)
PROJECT_ROOT = Path(os.environ.get("MAPGEN_ROOT", Path(__file__).resolve().parent.parent))

# Settings file location (in project root)
SETTINGS_FILE = PROJECT_ROOT / "settings.json"

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY")

MISTRAL_API_URL = os.getenv("MISTRAL_API_URL", "https://api.mistral.ai/v1")
MISTRAL_MODEL = os.getenv("MISTRAL_MODEL", "mistral-large-latest")
MISTRAL_API_KEY_NAME = "MISTRAL_API_KEY"

GEOCODING_URL = os.getenv("GEOCODING_URL", "https://api-adresse.data.gouv.fr/search/")

LOGS_DIR = Path(os.getenv("MAPGEN_LOG_DIR", PROJECT_ROOT / "logs"))

# Default settings
DEFAULT_SETTINGS = {
    "data_dir": os.getenv("MAPGEN_DATA_DIR", str(PROJECT_ROOT / "data")),
    "geocode_timeout": float(os.getenv("GEOCODE_TIMEOUT", "10")),
    "geocode_max_workers": int(os.getenv("GEOCODE_MAX_WORKERS", "4")),
    "llm_temperature": 0.1,
    "llm_max_tokens": 3000,
}


def load_settings() -> dict:
    """
    Load settings from settings.json file.
    Returns default settings if file doesn't exist.
    """
    try:
        if SETTINGS_FILE.exists():
            with open(SETTINGS_FILE, 'r', encoding='utf-8') as f:
                settings = json.load(f)
                # Merge with defaults to ensure all keys exist
                return {**DEFAULT_SETTINGS, **settings}
    except (json.JSONDecodeError, IOError) as e:
        print(f"Warning: Could not load settings: {e}")

    return DEFAULT_SETTINGS.copy()


def save_settings(settings: dict) -> bool:
    """
    Save settings to settings.json file.
    Only known keys are kept. Returns True on success, False on failure.
    """
    try:
        current = load_settings()
        current.update({k: v for k, v in settings.items() if k in DEFAULT_SETTINGS})

        with open(SETTINGS_FILE, 'w', encoding='utf-8') as f:
            json.dump(current, f, indent=2)
        return True
    except IOError as e:
        print(f"Error saving settings: {e}")
        return False


def get_data_dir() -> Path:
    """Folder holding the static boundary files."""
    return Path(load_settings().get("data_dir") or DEFAULT_SETTINGS["data_dir"])


def get_mistral_api_key(key_name: str = None) -> str:
    """
    Read the Mistral API key from the environment.
    key_name comes from the active ai_config row (api_key_name column).
    """
    return os.getenv(key_name or MISTRAL_API_KEY_NAME, "")


def get_settings_with_status() -> dict:
    """
    Get settings along with service configuration status.
    Used by the /settings endpoint. Secrets are never returned.
    """
    settings = load_settings()
    data_dir = Path(settings["data_dir"])

    return {
        **settings,
        "data_dir_exists": data_dir.exists(),
        "supabase_configured": bool(SUPABASE_URL and (SUPABASE_SERVICE_KEY or SUPABASE_ANON_KEY)),
        "mistral_configured": bool(get_mistral_api_key()),
        "mistral_model": MISTRAL_MODEL,
        "geocoding_url": GEOCODING_URL,
    }
