"""Audio processing - session state, permission gate, VAD, microphone adapters."""

from .permission import MicrophoneAccess, PermissionGate
from .state import (
    AssistantPhase,
    CaptureState,
    PermissionState,
    SessionSnapshot,
    SessionState,
)
from .vad import contains_speech, detect_speech_energy, get_audio_level

__all__ = [
    "MicrophoneAccess",
    "PermissionGate",
    "AssistantPhase",
    "CaptureState",
    "PermissionState",
    "SessionSnapshot",
    "SessionState",
    "contains_speech",
    "detect_speech_energy",
    "get_audio_level",
]
