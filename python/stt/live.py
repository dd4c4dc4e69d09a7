"""Local live speech recognition built on sounddevice + an STT adapter.

The audio callback runs in the PortAudio thread and only buffers samples
and updates speech timestamps. A monitor task on the event loop turns
those into recognition events: periodic interim transcripts while the
user speaks, a final transcript after trailing silence, and ``no-speech``
when nothing is heard in time.
"""

import asyncio
import logging
import threading
import time

import numpy as np
import sounddevice as sd

from audio.microphone import (
    close_stream,
    open_input_stream,
    has_input_device,
    is_denial_error,
    SAMPLE_RATE,
)
from audio.vad import detect_speech_energy
from capture.primary import RecognitionEngine, RecognitionListener
from shared.errors import CaptureError, MicrophoneDeniedError

from .base import STTAdapter

logger = logging.getLogger(__name__)

MONITOR_INTERVAL = 0.1  # seconds between monitor checks
MAX_UTTERANCE_SECONDS = 30.0  # force-finalize long recordings


class LocalRecognitionEngine(RecognitionEngine):
    """Live recognition: VAD-segmented recording transcribed by an STTAdapter. One engine serves one capture."""

    def __init__(
        self,
        stt: STTAdapter | None,
        device=None,
        silence_timeout: float = 1.5,
        no_speech_timeout: float = 8.0,
        interim_interval: float = 1.0,
        max_duration: float = MAX_UTTERANCE_SECONDS,
    ):
        self._stt = stt
        self.device = device
        self.silence_timeout = silence_timeout
        self.no_speech_timeout = no_speech_timeout
        self.interim_interval = interim_interval
        self.max_duration = max_duration

        self._listener: RecognitionListener | None = None
        self._stream: sd.InputStream | None = None
        self._monitor_task: asyncio.Task | None = None
        self._lock = threading.Lock()
        self._buffer: list[np.ndarray] = []
        self._active = False
        self._stop_requested = False
        self._closed = False
        self._heard_speech = False
        self._started_at = 0.0
        self._last_speech_time = 0.0
        self._last_interim_time = 0.0

    def is_supported(self) -> bool:
        return self._stt is not None

    async def open(self, listener: RecognitionListener) -> None:
        self._listener = listener
        if not await self._stt.ensure_loaded():
            raise CaptureError(CaptureError.UNSUPPORTED, f"STT adapter {self._stt.name} could not be loaded")

        loop = asyncio.get_running_loop()
        if not await loop.run_in_executor(None, has_input_device):
            raise CaptureError(CaptureError.DEVICE_UNAVAILABLE, "No microphone detected")
        if self._closed:
            return
        try:
            stream = await loop.run_in_executor(
                None, lambda: open_input_stream(self._audio_callback, self.device)
            )
        except sd.PortAudioError as e:
            if is_denial_error(e):
                raise MicrophoneDeniedError(str(e)) from e
            raise CaptureError(CaptureError.DEVICE_UNAVAILABLE, str(e)) from e

        if self._closed:
            # Torn down while the stream was opening
            close_stream(stream)
            return
        self._stream = stream
        now = time.monotonic()
        self._started_at = now
        self._last_interim_time = now
        self._active = True
        listener.handle_start()
        self._monitor_task = asyncio.ensure_future(self._monitor())

    def stop(self) -> None:
        self._stop_requested = True

    def abort(self) -> None:
        self._shutdown()

    def close(self) -> None:
        self._shutdown()

    def _shutdown(self) -> None:
        self._closed = True
        self._active = False
        task = self._monitor_task
        self._monitor_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._stop_stream()

    def _stop_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            close_stream(stream)

    def _audio_callback(self, indata, frames, time_info, status):
        """PortAudio thread: buffer audio and track speech activity."""
        if status:
            logger.debug("Audio status: %s", status)
        audio = indata[:, 0].copy()  # Mono
        is_speech, _ = detect_speech_energy(audio, "recording")
        with self._lock:
            self._buffer.append(audio)
        if is_speech:
            # Plain attribute writes are atomic under the GIL
            self._last_speech_time = time.monotonic()
            self._heard_speech = True

    def _snapshot_audio(self) -> np.ndarray:
        with self._lock:
            if not self._buffer:
                return np.array([], dtype=np.float32)
            return np.concatenate(self._buffer)

    async def _monitor(self) -> None:
        try:
            while self._active:
                await asyncio.sleep(MONITOR_INTERVAL)
                if not self._active:
                    return
                now = time.monotonic()

                if self._stop_requested:
                    await self._finalize()
                    return
                if not self._heard_speech and now - self._started_at > self.no_speech_timeout:
                    self._stop_stream()
                    self._listener.handle_error("no-speech", "No speech detected")
                    return
                if self._heard_speech and now - self._last_speech_time > self.silence_timeout:
                    await self._finalize()
                    return
                if now - self._started_at > self.max_duration:
                    logger.warning("Recognition exceeded %.0fs, finalizing", self.max_duration)
                    await self._finalize()
                    return

                if self._heard_speech and now - self._last_interim_time >= self.interim_interval:
                    self._last_interim_time = now
                    interim = await self._stt.transcribe(self._snapshot_audio(), SAMPLE_RATE)
                    if interim and self._active:
                        self._listener.handle_result(interim, False)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Live recognition failed: %s", e)
            if self._active:
                self._listener.handle_error("unknown", str(e))

    async def _finalize(self) -> None:
        self._stop_stream()
        if not self._heard_speech:
            self._listener.handle_end()
            return
        transcript = await self._stt.transcribe(self._snapshot_audio(), SAMPLE_RATE)
        if self._active:
            self._listener.handle_result(transcript, True)
