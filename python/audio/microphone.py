"""sounddevice-backed microphone adapters (permission probe and raw recorder)."""

import asyncio
import logging
from collections.abc import Callable

import numpy as np
import sounddevice as sd

from capture.fallback import AudioRecorder
from shared.errors import CaptureError, MicrophoneDeniedError

from .permission import MicrophoneAccess

logger = logging.getLogger(__name__)

# Audio settings
SAMPLE_RATE = 16000
CHANNELS = 1
CHUNK_SAMPLES = 1280  # 80ms at 16kHz

# PortAudio reports OS-level refusals only through its message text
_DENIAL_MARKERS = ("permission", "denied", "not allowed", "access")


def is_denial_error(error: Exception) -> bool:
    text = str(error).lower()
    return any(marker in text for marker in _DENIAL_MARKERS)


def has_input_device() -> bool:
    """True if sounddevice can see at least one input device."""
    try:
        sd.query_devices(kind="input")
        return True
    except (sd.PortAudioError, ValueError):
        return False


def open_input_stream(callback=None, device=None) -> sd.InputStream:
    stream = sd.InputStream(
        samplerate=SAMPLE_RATE,
        channels=CHANNELS,
        dtype="float32",
        blocksize=CHUNK_SAMPLES,
        device=device,
        callback=callback,
    )
    try:
        stream.start()
    except Exception:
        stream.close()
        raise
    return stream


def close_stream(stream: sd.InputStream) -> None:
    try:
        stream.stop()
    finally:
        stream.close()


class SoundDeviceMicrophone(MicrophoneAccess):
    """Probes microphone access by opening and immediately closing an input stream."""

    def __init__(self, device=None):
        self.device = device

    async def open_probe(self) -> sd.InputStream:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, lambda: open_input_stream(device=self.device))
        except sd.PortAudioError as e:
            if is_denial_error(e):
                raise MicrophoneDeniedError(str(e)) from e
            raise

    def release(self, handle: sd.InputStream) -> None:
        close_stream(handle)


class SoundDeviceRecorder(AudioRecorder):
    """Raw audio capture used by the fallback session. One recorder serves one capture."""

    sample_rate = SAMPLE_RATE

    def __init__(self, device=None):
        self.device = device
        self._stream: sd.InputStream | None = None
        self._closed = False

    async def open(self, on_chunk: Callable[[np.ndarray], None]) -> None:
        if self._stream is not None:
            raise CaptureError(CaptureError.BUSY, "Recorder already open")
        loop = asyncio.get_running_loop()
        if not await loop.run_in_executor(None, has_input_device):
            raise CaptureError(CaptureError.DEVICE_UNAVAILABLE, "No microphone detected")

        def _callback(indata, frames, time_info, status):
            if status:
                logger.debug("Audio status: %s", status)
            on_chunk(indata[:, 0].copy())  # Mono

        try:
            stream = await loop.run_in_executor(
                None, lambda: open_input_stream(_callback, self.device)
            )
        except sd.PortAudioError as e:
            if is_denial_error(e):
                raise MicrophoneDeniedError(str(e)) from e
            raise CaptureError(CaptureError.DEVICE_UNAVAILABLE, str(e)) from e

        if self._closed:
            # Closed while the stream was opening
            close_stream(stream)
            logger.info("Recorder closed during open, stream released")
            return
        self._stream = stream
        logger.info("Recording started (device=%s)", self.device if self.device is not None else "default")

    def close(self) -> None:
        self._closed = True
        stream, self._stream = self._stream, None
        if stream is None:
            return
        close_stream(stream)
        logger.info("Recording stopped")
