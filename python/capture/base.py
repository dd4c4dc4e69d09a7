"""Capture strategy interface shared by the primary and fallback sessions."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from shared.errors import CaptureError

logger = logging.getLogger(__name__)


class SessionStatus:
    """Lifecycle of a single capture attempt."""
    IDLE = "idle"
    STARTING = "starting"
    LISTENING = "listening"
    FINALIZING = "finalizing"
    DONE = "done"
    ERROR = "error"

    TERMINAL = frozenset((DONE, ERROR))


def _noop(*_args) -> None:
    return None


@dataclass
class CaptureCallbacks:
    """
    Uniform event interface regardless of the active strategy.

    on_listening: capture is live (audio flowing)
    on_interim: advisory partial transcript, never sent to inference
    on_final: the transcript, emitted at most once per session
    on_error: CaptureError describing why no transcript was produced
    on_finished: always last, after the capture resource was released
    """
    on_listening: Callable[["CaptureSession"], None] = _noop
    on_interim: Callable[[str], None] = _noop
    on_final: Callable[[str], None] = _noop
    on_error: Callable[[CaptureError], None] = _noop
    on_finished: Callable[["CaptureSession"], None] = _noop


class CaptureSession(ABC):
    """One speech-capture attempt. Subclasses own exactly one capture resource."""

    kind = "capture"

    def __init__(self, callbacks: CaptureCallbacks | None = None):
        self.callbacks = callbacks or CaptureCallbacks()
        self.status = SessionStatus.IDLE
        self.error: CaptureError | None = None
        self._released = False
        self._finished = False

    @property
    def is_active(self) -> bool:
        return self.status not in SessionStatus.TERMINAL and self.status != SessionStatus.IDLE

    @property
    def is_terminal(self) -> bool:
        return self.status in SessionStatus.TERMINAL

    @property
    def released(self) -> bool:
        return self._released

    @abstractmethod
    async def start(self) -> None:
        """Begin capturing. Raises CaptureError(unsupported) or CaptureError(busy)."""

    @abstractmethod
    def stop(self) -> None:
        """User asked to stop: finish with whatever was captured."""

    @abstractmethod
    def abort(self) -> None:
        """Tear down silently, releasing the capture resource."""

    @abstractmethod
    def _release_resource(self) -> None:
        """Release the underlying capture resource. Called exactly once."""

    def _ensure_idle(self) -> None:
        if self.status != SessionStatus.IDLE:
            raise CaptureError(CaptureError.BUSY, f"{self.kind} capture session already used")

    def _release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            self._release_resource()
        except Exception as e:
            logger.warning("Failed to release %s capture resource: %s", self.kind, e)

    def _release_late(self) -> None:
        """Release a resource that finished opening after the session was torn down."""
        logger.info("%s capture resource opened after teardown, releasing it", self.kind)
        try:
            self._release_resource()
        except Exception as e:
            logger.warning("Failed to release %s capture resource: %s", self.kind, e)

    def _complete(self, transcript: str) -> None:
        """Terminal success: release, then emit the transcript once."""
        if self.is_terminal:
            return
        self.status = SessionStatus.FINALIZING
        self._release()
        self.status = SessionStatus.DONE
        logger.info("%s capture finished with transcript (%d chars)", self.kind, len(transcript))
        self._emit(self.callbacks.on_final, transcript)
        self._finish()

    def _fail(self, error: CaptureError, notify: bool = True) -> None:
        """Terminal failure: release, then report the error."""
        if self.is_terminal:
            return
        self.status = SessionStatus.ERROR
        self.error = error
        self._release()
        logger.info("%s capture ended with error: %s", self.kind, error.code)
        if notify:
            self._emit(self.callbacks.on_error, error)
        self._finish(notify)

    def _end_without_result(self) -> None:
        """Terminal state reached with neither transcript nor error (e.g. stopped early)."""
        if self.is_terminal:
            return
        self.status = SessionStatus.FINALIZING
        self._release()
        self.status = SessionStatus.DONE
        self._finish()

    def _finish(self, notify: bool = True) -> None:
        if self._finished:
            return
        self._finished = True
        if notify:
            self._emit(self.callbacks.on_finished, self)

    def _emit(self, callback: Callable, *args) -> None:
        try:
            callback(*args)
        except Exception as e:
            logger.error("%s capture callback failed: %s", self.kind, e, exc_info=True)
