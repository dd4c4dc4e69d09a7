"""Shared helpers: paths, error taxonomy, session-scoped tasks."""

from .errors import (
    AssistantError,
    CaptureError,
    InferenceError,
    MicPermissionError,
    MicrophoneDeniedError,
)
from .paths import get_config_base, get_config_dir, get_data_dir, safe_path
from .tasks import SessionTasks

__all__ = [
    "AssistantError",
    "CaptureError",
    "InferenceError",
    "MicPermissionError",
    "MicrophoneDeniedError",
    "get_config_base",
    "get_config_dir",
    "get_data_dir",
    "safe_path",
    "SessionTasks",
]
