"""Cross-platform path helpers for the SoulSpace voice assistant."""

import os
import platform
from pathlib import Path

APP_DIR_NAME = "soulspace-assistant"


def get_config_base() -> Path:
    """Get the platform-appropriate base config directory."""
    system = platform.system()
    if system == "Windows":
        base = os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming"))
        return Path(base)
    elif system == "Darwin":
        return Path.home() / "Library" / "Application Support"
    else:
        return Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))


def get_config_dir() -> Path:
    """Get the assistant config directory (holds config.json)."""
    return get_config_base() / APP_DIR_NAME


def get_data_dir() -> Path:
    """Get the assistant data directory (settings, auth token, logs)."""
    return get_config_dir() / "data"


def safe_path(path, allowed_base) -> str:
    """Resolve *path* and verify it is within *allowed_base*.

    Both arguments are resolved with ``os.path.realpath`` so symlinks
    and ``..`` components are collapsed before the check.

    Returns the resolved path string on success, raises ``ValueError``
    if the path escapes the allowed base directory.
    """
    resolved = os.path.realpath(str(path))
    base = os.path.realpath(str(allowed_base))
    if resolved == base or resolved.startswith(base + os.sep):
        return resolved
    raise ValueError(f"Path {path} is outside allowed directory {allowed_base}")
