"""Assistant configuration - inference service endpoint, user profile, auth token."""

import json
import logging
import os

from shared.paths import get_config_dir, get_data_dir, safe_path

logger = logging.getLogger(__name__)

# App config file path (cross-platform: APPDATA on Windows, ~/.config on Linux, ~/Library on macOS)
APP_CONFIG_PATH = get_config_dir() / "config.json"

# Token written by the web app's auth layer after login
AUTH_TOKEN_PATH = get_data_dir() / "auth.json"
AUTH_TOKEN_ENV = "SOULSPACE_AUTH_TOKEN"

DEFAULT_API_BASE_URL = "http://localhost:5000/api/ai-assistant"
DEFAULT_REQUEST_TIMEOUT = 30.0

# Cached config with mtime check
_cached_config: dict | None = None
_cached_mtime: float = 0.0


def _read_config() -> dict:
    """Read the app config with mtime-based caching."""
    global _cached_config, _cached_mtime
    try:
        if APP_CONFIG_PATH.exists():
            mtime = os.path.getmtime(APP_CONFIG_PATH)
            if mtime == _cached_mtime and _cached_config is not None:
                return _cached_config
            with open(APP_CONFIG_PATH, encoding='utf-8') as f:
                config = json.load(f)
            _cached_config = config
            _cached_mtime = mtime
            return config
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Could not read %s: %s", APP_CONFIG_PATH, e)
    return {}


def get_service_config() -> dict:
    """
    Get inference service settings.
    Returns dict with 'base_url' and 'timeout' keys.
    """
    assistant = _read_config().get("assistant", {})
    base_url = assistant.get("apiBaseUrl") or DEFAULT_API_BASE_URL
    try:
        timeout = float(assistant.get("requestTimeout", DEFAULT_REQUEST_TIMEOUT))
    except (TypeError, ValueError):
        logger.warning("Invalid requestTimeout in config, using %ss", DEFAULT_REQUEST_TIMEOUT)
        timeout = DEFAULT_REQUEST_TIMEOUT
    return {"base_url": base_url.rstrip("/"), "timeout": timeout}


def get_user_name() -> str | None:
    """Display name of the signed-in user, used in the welcome message."""
    name = _read_config().get("user", {}).get("name")
    return name or None


def get_auth_token() -> str | None:
    """
    Bearer token for the inference service.

    The environment variable wins; otherwise the token file written by the
    web app is read. Returns None when the user is not signed in.
    """
    token = os.environ.get(AUTH_TOKEN_ENV)
    if token:
        return token.strip()

    try:
        if AUTH_TOKEN_PATH.exists():
            safe_path(AUTH_TOKEN_PATH, get_data_dir())
            with open(AUTH_TOKEN_PATH, encoding='utf-8') as f:
                token = json.load(f).get("token")
            return token.strip() if token else None
    except (OSError, ValueError, AttributeError) as e:
        logger.warning("Could not read auth token: %s", e)
    return None
