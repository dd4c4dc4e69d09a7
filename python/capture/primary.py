"""Primary capture: one live speech-recognition attempt."""

import logging
from abc import ABC, abstractmethod

from shared.errors import CaptureError, MicrophoneDeniedError

from .base import CaptureCallbacks, CaptureSession, SessionStatus

logger = logging.getLogger(__name__)

# Engine error codes -> capture error taxonomy
ENGINE_ERROR_CODES = {
    "not-allowed": CaptureError.PERMISSION_DENIED,
    "service-not-allowed": CaptureError.PERMISSION_DENIED,
    "permission-denied": CaptureError.PERMISSION_DENIED,
    "no-speech": CaptureError.NO_SPEECH,
    "audio-capture": CaptureError.DEVICE_UNAVAILABLE,
    "capture-device-unavailable": CaptureError.DEVICE_UNAVAILABLE,
    "aborted": CaptureError.ABORTED,
}


def map_engine_error(code: str) -> str:
    return ENGINE_ERROR_CODES.get(code, CaptureError.UNKNOWN)


class RecognitionListener(ABC):
    """Events a RecognitionEngine delivers, always on the event loop thread."""

    @abstractmethod
    def handle_start(self) -> None: ...

    @abstractmethod
    def handle_result(self, text: str, is_final: bool) -> None: ...

    @abstractmethod
    def handle_error(self, code: str, message: str | None = None) -> None: ...

    @abstractmethod
    def handle_end(self) -> None: ...


class RecognitionEngine(ABC):
    """Platform adapter for live speech recognition."""

    @abstractmethod
    def is_supported(self) -> bool:
        """Whether live recognition is available at all on this host."""

    @abstractmethod
    async def open(self, listener: RecognitionListener) -> None:
        """Acquire the microphone and begin recognizing."""

    @abstractmethod
    def stop(self) -> None:
        """Finish gracefully; a final result may still be delivered."""

    @abstractmethod
    def abort(self) -> None:
        """Stop immediately without delivering results."""

    @abstractmethod
    def close(self) -> None:
        """Release the microphone and any recognizer resources."""


class PrimaryCaptureSession(CaptureSession, RecognitionListener):
    """
    Drives one RecognitionEngine through
    idle -> starting -> listening -> finalizing -> done | error.
    """

    kind = "primary"

    def __init__(self, engine: RecognitionEngine, callbacks: CaptureCallbacks | None = None):
        super().__init__(callbacks)
        self._engine = engine

    async def start(self) -> None:
        self._ensure_idle()
        if not self._engine.is_supported():
            raise CaptureError(CaptureError.UNSUPPORTED, "Live speech recognition is not available")

        self.status = SessionStatus.STARTING
        logger.info("Starting live speech recognition")
        try:
            await self._engine.open(self)
        except CaptureError as e:
            if e.code == CaptureError.UNSUPPORTED:
                self._fail(e, notify=False)
                raise
            self._fail(e)
        except MicrophoneDeniedError as e:
            self._fail(CaptureError(CaptureError.PERMISSION_DENIED, str(e)))
        except Exception as e:
            logger.error("Error setting up speech recognition: %s", e)
            self._fail(CaptureError(CaptureError.UNKNOWN, str(e)))
        else:
            if self.is_terminal:
                # Aborted while the engine was opening
                self._release_late()

    def stop(self) -> None:
        if not self.is_active:
            return
        logger.info("Stopping live speech recognition")
        try:
            self._engine.stop()
        except Exception as e:
            logger.warning("Recognition engine stop failed: %s", e)
            self._fail(CaptureError(CaptureError.UNKNOWN, str(e)))

    def abort(self) -> None:
        if self.is_terminal:
            return
        try:
            self._engine.abort()
        except Exception as e:
            logger.warning("Recognition engine abort failed: %s", e)
        self._fail(CaptureError(CaptureError.ABORTED), notify=False)

    def _release_resource(self) -> None:
        self._engine.close()

    # RecognitionListener

    def handle_start(self) -> None:
        if self.status != SessionStatus.STARTING:
            return
        self.status = SessionStatus.LISTENING
        logger.info("Speech recognition started")
        self._emit(self.callbacks.on_listening, self)

    def handle_result(self, text: str, is_final: bool) -> None:
        if self.is_terminal or self.status == SessionStatus.IDLE:
            return
        if self.status == SessionStatus.STARTING:
            self.handle_start()

        if not is_final:
            logger.debug("Interim transcript: %s", text)
            self._emit(self.callbacks.on_interim, text)
            return

        transcript = (text or "").strip()
        if not transcript:
            self._fail(CaptureError(CaptureError.NO_SPEECH))
            return
        self._complete(transcript)

    def handle_error(self, code: str, message: str | None = None) -> None:
        if self.is_terminal:
            return
        logger.warning("Speech recognition error: %s %s", code, message or "")
        self._fail(CaptureError(map_engine_error(code), message))

    def handle_end(self) -> None:
        if self.is_terminal:
            return
        logger.info("Speech recognition ended without a final result")
        self._end_without_result()
