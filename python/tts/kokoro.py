"""Kokoro TTS adapter."""

import asyncio
import logging
from collections.abc import Callable

from .base import TTSAdapter, chunk_text

logger = logging.getLogger(__name__)

# Available Kokoro voices
KOKORO_VOICES = [
    "af_bella",    # American Female - Bella
    "af_nicole",   # American Female - Nicole
    "af_sarah",    # American Female - Sarah
    "af_sky",      # American Female - Sky
    "am_adam",     # American Male - Adam
    "am_michael",  # American Male - Michael
    "bf_emma",     # British Female - Emma
    "bf_isabella", # British Female - Isabella
    "bm_george",   # British Male - George
    "bm_lewis",    # British Male - Lewis
]

KOKORO_MODEL_FILE = "kokoro-v1.0.onnx"
KOKORO_VOICES_FILE = "voices-v1.0.bin"


class KokoroAdapter(TTSAdapter):
    """TTS adapter using Kokoro ONNX for local synthesis."""

    adapter_type = "kokoro"

    def __init__(self, voice: str | None = None, speed: float = 1.0, volume: float = 1.0):
        """
        Initialize Kokoro adapter.

        Args:
            voice: Kokoro voice ID (default: "af_bella")
        """
        super().__init__(voice=voice or "af_bella", speed=speed, volume=volume)

    def load(self) -> bool:
        """Load the Kokoro TTS model."""
        try:
            from kokoro_onnx import Kokoro
        except ImportError:
            logger.error("Kokoro TTS not available - install with: pip install kokoro-onnx")
            self.model = None
            return False

        try:
            logger.info("Loading Kokoro TTS model...")
            self.model = Kokoro(KOKORO_MODEL_FILE, KOKORO_VOICES_FILE)
            logger.info("Kokoro TTS loaded (voice: %s)", self.voice)
            return True
        except Exception as e:
            logger.warning("Failed to load Kokoro TTS: %s", e)
            self.model = None
            return False

    async def speak(
        self,
        text: str,
        on_start: Callable[[], None] | None = None,
        on_end: Callable[[], None] | None = None
    ) -> None:
        """Synthesize and play text chunk by chunk, pre-synthesizing the next chunk."""
        text = self.strip_markdown(text)
        if not text:
            return

        loop = asyncio.get_running_loop()
        if self.model is None:
            loaded = await loop.run_in_executor(None, self.load)
            if not loaded:
                raise RuntimeError("Kokoro TTS not loaded")

        self._interrupted.clear()
        self._is_speaking = True
        logger.info("Speaking: %s...", text[:50])
        if on_start:
            on_start()

        def _synthesize(chunk):
            return self.model.create(chunk, voice=self.voice, speed=self.speed)

        next_future = None
        try:
            chunks = chunk_text(text)
            for i, chunk in enumerate(chunks):
                if self._interrupted.is_set():
                    break

                if next_future is not None:
                    samples, sample_rate = await next_future
                    next_future = None
                else:
                    samples, sample_rate = await loop.run_in_executor(None, _synthesize, chunk)

                if self._interrupted.is_set():
                    break

                # Pre-synthesize the next chunk while this one plays
                if i + 1 < len(chunks):
                    next_future = loop.run_in_executor(None, _synthesize, chunks[i + 1])

                await loop.run_in_executor(None, self._play_audio, samples, sample_rate)
        finally:
            if next_future is not None:
                next_future.cancel()
            self._is_speaking = False

        if on_end and not self._interrupted.is_set():
            on_end()

    @property
    def name(self) -> str:
        """Return display name."""
        return f"Kokoro ({self.voice})"

    @property
    def available_voices(self) -> list[str]:
        """Return available Kokoro voice IDs."""
        return KOKORO_VOICES.copy()
