"""Inference service configuration and client."""

from .config import (
    APP_CONFIG_PATH,
    AUTH_TOKEN_PATH,
    get_auth_token,
    get_service_config,
    get_user_name,
)
from .inference import InferenceClient, InferenceReply, classify_http_error

__all__ = [
    "APP_CONFIG_PATH",
    "AUTH_TOKEN_PATH",
    "get_auth_token",
    "get_service_config",
    "get_user_name",
    "InferenceClient",
    "InferenceReply",
    "classify_http_error",
]
