"""Voice assistant session: commands, conversation history and the session controller."""

from .commands import SEND_DEBOUNCE_SECONDS, VoiceCommand, interpret
from .controller import PRIMARY_FAILURE_LIMIT, AssistantSessionController
from .conversation import (
    HEALTH_TIPS_TEXT,
    ConversationManager,
    Message,
    Sender,
    Severity,
    SuggestedAction,
    classify_severity,
    welcome_text,
)

__all__ = [
    "SEND_DEBOUNCE_SECONDS",
    "VoiceCommand",
    "interpret",
    "PRIMARY_FAILURE_LIMIT",
    "AssistantSessionController",
    "HEALTH_TIPS_TEXT",
    "ConversationManager",
    "Message",
    "Sender",
    "Severity",
    "SuggestedAction",
    "classify_severity",
    "welcome_text",
]
