"""Session-scoped conversation history with severity triage."""

import itertools
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from providers.inference import InferenceReply

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_WINDOW = 10

URGENT_MARKERS = ("immediate", "emergency", "right away", "caution:")
WARNING_MARKERS = ("important note:",)

HEALTH_TIPS_TEXT = (
    "Here are some general health tips:\n\n"
    "1. Stay hydrated by drinking at least 8 glasses of water daily\n"
    "2. Aim for 7-9 hours of quality sleep each night\n"
    "3. Eat a balanced diet rich in fruits, vegetables, and whole grains\n"
    "4. Exercise regularly - at least 150 minutes of moderate activity per week\n"
    "5. Practice stress management through meditation, deep breathing, or other relaxation techniques\n"
    "6. Maintain regular health check-ups and screenings\n"
    "7. Limit alcohol consumption and avoid smoking\n"
    "8. Wash hands frequently to prevent infections\n"
    "9. Maintain social connections for mental well-being\n"
    "10. Protect your skin from sun damage"
)


class Sender:
    USER = "user"
    ASSISTANT = "assistant"


class Severity:
    INFO = "info"
    WARNING = "warning"
    URGENT = "urgent"
    NONE = "none"


class SuggestedAction:
    APPOINTMENT = "appointment"


def welcome_text(user_name: str | None = None) -> str:
    return (
        f"Hello {user_name or 'there'}! I'm your AI health assistant. "
        "I can provide general health information and guidance. How can I help you today?"
    )


def classify_severity(text: str, suggest_appointment: bool = False, self_care_appropriate: bool | None = True) -> str:
    """
    Severity of an assistant reply; first matching rule wins.

    urgent: text mentions immediate / emergency / right away / "caution:"
    warning: an appointment is suggested, text has "important note:",
             or self-care was not confirmed (false or missing)
    info: everything else
    """
    lowered = (text or "").lower()
    if any(marker in lowered for marker in URGENT_MARKERS):
        return Severity.URGENT
    if suggest_appointment or any(marker in lowered for marker in WARNING_MARKERS) or not self_care_appropriate:
        return Severity.WARNING
    return Severity.INFO


@dataclass(frozen=True)
class Message:
    id: int
    sender: str
    text: str
    timestamp: datetime
    severity: str = Severity.NONE
    self_care_appropriate: bool | None = None
    suggested_action: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sender": self.sender,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity,
            "selfCareAppropriate": self.self_care_appropriate,
            "suggestedAction": self.suggested_action,
        }


class ConversationManager:
    """Owns the message history for one assistant session. Append-only between resets."""

    def __init__(self):
        self._messages: list[Message] = []
        # Ids keep counting across resets and are never reused
        self._ids = itertools.count(1)

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def get(self, message_id: int) -> Message | None:
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    def append_user(self, text: str) -> Message:
        return self._append(Message(
            id=next(self._ids),
            sender=Sender.USER,
            text=text,
            timestamp=datetime.now(),
        ))

    def append_assistant(self, text: str, reply: "InferenceReply | None" = None) -> Message:
        """Append a reply from the inference service, classifying its severity."""
        suggest = bool(reply.suggest_appointment) if reply is not None else False
        self_care = reply.self_care_appropriate if reply is not None else True
        return self._append(Message(
            id=next(self._ids),
            sender=Sender.ASSISTANT,
            text=text,
            timestamp=datetime.now(),
            severity=classify_severity(text, suggest, self_care),
            self_care_appropriate=self_care,
            suggested_action=SuggestedAction.APPOINTMENT if suggest else None,
        ))

    def append_notice(self, text: str, severity: str = Severity.INFO) -> Message:
        """Append a synthetic assistant message (tips, failure explanations)."""
        return self._append(Message(
            id=next(self._ids),
            sender=Sender.ASSISTANT,
            text=text,
            timestamp=datetime.now(),
            severity=severity,
        ))

    def context_window(self, n: int = DEFAULT_CONTEXT_WINDOW) -> list[dict]:
        """The last *n* messages, oldest first, as ``{"sender", "text"}`` dicts."""
        if n <= 0:
            return []
        return [{"sender": m.sender, "text": m.text} for m in self._messages[-n:]]

    def reset(self, welcome: str) -> Message:
        """Replace the whole history with a single assistant welcome message."""
        self._messages = []
        message = self.append_notice(welcome, Severity.INFO)
        logger.info("Conversation reset (next id %d)", message.id + 1)
        return message

    def _append(self, message: Message) -> Message:
        self._messages.append(message)
        return message
