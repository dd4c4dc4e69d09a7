"""Error taxonomy shared by the capture, permission and inference layers."""


class AssistantError(Exception):
    """Base class for every error the assistant surfaces to the controller."""


class MicPermissionError(AssistantError):
    """Microphone permission is not available (denied or still needs a prompt)."""

    DENIED = "denied"
    PROMPT = "prompt"

    def __init__(self, state: str = DENIED, message: str | None = None):
        self.state = state
        super().__init__(message or f"Microphone permission {state}")


class MicrophoneDeniedError(MicPermissionError):
    """Raised by platform adapters when the OS refuses microphone access."""

    def __init__(self, message: str | None = None):
        super().__init__(MicPermissionError.DENIED, message)


class CaptureError(AssistantError):
    """A speech-capture attempt could not start or ended without a transcript."""

    UNSUPPORTED = "unsupported"
    PERMISSION_DENIED = "permission-denied"
    NO_SPEECH = "no-speech"
    DEVICE_UNAVAILABLE = "capture-device-unavailable"
    ABORTED = "aborted"
    UNKNOWN = "unknown"
    BUSY = "busy"
    TRANSCRIPTION_UNAVAILABLE = "transcription-unavailable"

    def __init__(self, code: str, message: str | None = None):
        self.code = code
        super().__init__(message or code)


class InferenceError(AssistantError):
    """The inference service call failed."""

    UNAUTHENTICATED = "unauthenticated"
    SERVER_ERROR = "server-error"
    NETWORK = "network"
    RATE_LIMITED = "rate-limited"

    def __init__(self, kind: str, message: str | None = None, retry_after: str | None = None):
        self.kind = kind
        self.retry_after = retry_after
        super().__init__(message or kind)
