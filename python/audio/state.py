"""Session state container for the voice assistant."""

from dataclasses import dataclass, field


class PermissionState:
    """Microphone permission as seen by the PermissionGate."""
    UNKNOWN = "unknown"
    GRANTED = "granted"
    DENIED = "denied"
    PROMPT = "prompt"

    ALL = frozenset((UNKNOWN, GRANTED, DENIED, PROMPT))


class CaptureState:
    """Speech-capture phase of the session."""
    IDLE = "idle"
    AWAITING_PERMISSION = "awaiting-permission"
    LISTENING = "listening"
    PROCESSING_FINAL = "processing-final"
    ERROR = "error"
    FALLBACK_LISTENING = "fallback-listening"

    # States in which audio is being captured
    CAPTURING = frozenset((LISTENING, FALLBACK_LISTENING))


class AssistantPhase:
    """Controller phase overlay: Idle -> RequestingPermission -> Listening -> Sending -> Idle."""
    IDLE = "idle"
    REQUESTING_PERMISSION = "requesting-permission"
    LISTENING = "listening"
    SENDING = "sending"


@dataclass
class SessionState:
    """
    Mutable state of one assistant session.

    Owned exclusively by the AssistantSessionController; message history
    lives in the ConversationManager and is merged in by ``snapshot()``.
    """

    permission: str = PermissionState.UNKNOWN
    capture: str = CaptureState.IDLE
    phase: str = AssistantPhase.IDLE
    voice_output_enabled: bool = False
    using_fallback: bool = False

    # UI feedback
    typing: bool = False
    is_speaking: bool = False
    status_text: str | None = None  # transient capture/permission error text
    listening_text: str = ""  # interim transcript or command feedback
    show_permission_dialog: bool = False

    # Rate limiting reported by the inference service
    quota_exceeded: bool = False
    retry_after: str | None = None

    def to_dict(self) -> dict:
        return {
            "permission": self.permission,
            "capture": self.capture,
            "phase": self.phase,
            "voiceOutputEnabled": self.voice_output_enabled,
            "usingFallback": self.using_fallback,
            "typing": self.typing,
            "isSpeaking": self.is_speaking,
            "statusText": self.status_text,
            "listeningText": self.listening_text,
            "showPermissionDialog": self.show_permission_dialog,
            "quotaExceeded": self.quota_exceeded,
            "retryAfter": self.retry_after,
        }


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view handed to the UI layer."""

    state: dict
    messages: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {**self.state, "messages": [m.to_dict() for m in self.messages]}
