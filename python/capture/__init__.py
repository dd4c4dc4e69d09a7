"""Speech capture strategies: live recognition and the fallback recorder."""

from .base import CaptureCallbacks, CaptureSession, SessionStatus
from .fallback import AudioRecorder, FallbackCaptureSession
from .primary import (
    PrimaryCaptureSession,
    RecognitionEngine,
    RecognitionListener,
    map_engine_error,
)

__all__ = [
    "CaptureCallbacks",
    "CaptureSession",
    "SessionStatus",
    "AudioRecorder",
    "FallbackCaptureSession",
    "PrimaryCaptureSession",
    "RecognitionEngine",
    "RecognitionListener",
    "map_engine_error",
]
