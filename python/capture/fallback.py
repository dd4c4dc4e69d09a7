"""Fallback capture: a fixed-window raw audio recording.

Used when live recognition is unavailable. The recording is only turned
into text when a batch transcriber (STT adapter) is configured; without
one the session reports ``transcription-unavailable`` instead of
inventing a transcript.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING

import numpy as np

from audio.vad import contains_speech
from shared.errors import CaptureError, MicrophoneDeniedError

from .base import CaptureCallbacks, CaptureSession, SessionStatus

if TYPE_CHECKING:
    from stt.base import STTAdapter

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 5.0


class AudioRecorder(ABC):
    """Platform adapter for raw microphone capture."""

    sample_rate: int = 16000

    @abstractmethod
    async def open(self, on_chunk: Callable[[np.ndarray], None]) -> None:
        """
        Start streaming float32 mono chunks to *on_chunk* (may be called
        from the audio thread).

        Raises:
            MicrophoneDeniedError: access refused
            CaptureError: capture-device-unavailable or other capture failure
        """

    @abstractmethod
    def close(self) -> None:
        """Stop the stream and release the microphone."""


class FallbackCaptureSession(CaptureSession):
    """Records for a fixed window, then stops on its own and releases the stream."""

    kind = "fallback"

    def __init__(
        self,
        recorder: AudioRecorder,
        callbacks: CaptureCallbacks | None = None,
        transcriber: "STTAdapter | None" = None,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
    ):
        super().__init__(callbacks)
        self._recorder = recorder
        self._transcriber = transcriber
        self.window_seconds = window_seconds
        self._chunks: list[np.ndarray] = []
        self._lock = threading.Lock()
        self._window_task: asyncio.Task | None = None
        self._finalize_task: asyncio.Task | None = None

    @property
    def can_transcribe(self) -> bool:
        return self._transcriber is not None

    async def start(self) -> None:
        self._ensure_idle()
        self.status = SessionStatus.STARTING
        logger.info("Starting alternative voice input (%.1fs window)", self.window_seconds)
        try:
            await self._recorder.open(self._on_chunk)
        except MicrophoneDeniedError as e:
            self._fail(CaptureError(CaptureError.PERMISSION_DENIED, str(e)))
            return
        except CaptureError as e:
            self._fail(e)
            return
        except Exception as e:
            logger.error("Error in fallback recording: %s", e)
            self._fail(CaptureError(CaptureError.UNKNOWN, str(e)))
            return

        if self.is_terminal:
            # Aborted while the stream was opening
            self._release_late()
            return

        self.status = SessionStatus.LISTENING
        self._emit(self.callbacks.on_listening, self)
        self._window_task = asyncio.ensure_future(self._run_window())

    def stop(self) -> None:
        """End the window early and process what was recorded."""
        if self.status != SessionStatus.LISTENING:
            return
        if self._window_task is not None:
            self._window_task.cancel()
        if self._finalize_task is None:
            self._finalize_task = asyncio.ensure_future(self._finalize())

    def abort(self) -> None:
        if self.is_terminal:
            return
        for task in (self._window_task, self._finalize_task):
            if task is not None and not task.done():
                task.cancel()
        self._fail(CaptureError(CaptureError.ABORTED), notify=False)

    def _release_resource(self) -> None:
        self._recorder.close()

    def _on_chunk(self, chunk: np.ndarray) -> None:
        if self._released:
            return
        with self._lock:
            self._chunks.append(np.asarray(chunk, dtype=np.float32).reshape(-1))

    def _take_audio(self) -> np.ndarray:
        with self._lock:
            if not self._chunks:
                return np.array([], dtype=np.float32)
            audio = np.concatenate(self._chunks)
            self._chunks = []
            return audio

    async def _run_window(self) -> None:
        await asyncio.sleep(self.window_seconds)
        if self._finalize_task is None:
            self._finalize_task = asyncio.ensure_future(self._finalize())

    async def _finalize(self) -> None:
        if self.status != SessionStatus.LISTENING:
            return
        self.status = SessionStatus.FINALIZING
        # Stream is released before any processing
        self._release()
        audio = self._take_audio()
        logger.info("Alternative voice input captured %.2fs of audio",
                    len(audio) / float(self._recorder.sample_rate))

        if not contains_speech(audio):
            self._fail(CaptureError(CaptureError.NO_SPEECH))
            return

        if self._transcriber is None:
            self._fail(CaptureError(
                CaptureError.TRANSCRIPTION_UNAVAILABLE,
                "Voice input was recorded but no transcription backend is configured",
            ))
            return

        try:
            transcript = await self._transcriber.transcribe(audio, self._recorder.sample_rate)
        except Exception as e:
            logger.error("Fallback transcription failed: %s", e)
            self._fail(CaptureError(CaptureError.UNKNOWN, str(e)))
            return

        if self.is_terminal:
            return
        if not transcript or not transcript.strip():
            self._fail(CaptureError(CaptureError.NO_SPEECH))
            return
        self._complete(transcript.strip())
