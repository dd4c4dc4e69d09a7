"""Base TTS adapter interface."""

import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

import numpy as np

logger = logging.getLogger(__name__)

PLAYBACK_POLL_INTERVAL = 0.05  # seconds
PLAYBACK_TIMEOUT = 60.0  # seconds per chunk


def chunk_text(text: str, max_chars: int = 200) -> list[str]:
    """
    Split text into chunks for sequential synthesis.
    Splits on sentence boundaries (. ! ?) and packs sentences up to
    *max_chars* per chunk.
    """
    if len(text) <= max_chars:
        return [text]

    chunks = []
    sentences = re.split(r'(?<=[.!?])\s+', text)

    current = ''
    for sentence in sentences:
        if not sentence.strip():
            continue
        if current and len(current) + len(sentence) + 1 > max_chars:
            chunks.append(current.strip())
            current = sentence
        else:
            current = (current + ' ' + sentence).strip() if current else sentence

    if current.strip():
        chunks.append(current.strip())

    return chunks if chunks else [text]


class TTSAdapter(ABC):
    """
    Base class for Text-to-Speech adapters.

    ``speak`` plays one utterance; ``stop_speaking`` interrupts it
    synchronously (audible output stops before it returns).
    """

    adapter_type = "base"

    def __init__(self, voice: str | None = None, speed: float = 1.0, volume: float = 1.0):
        """
        Initialize the TTS adapter.

        Args:
            voice: Optional voice ID to use (adapter-dependent)
            speed: Speech rate multiplier
            volume: Playback gain, 0.0 - 1.0
        """
        self.voice = voice
        self.speed = speed
        self.volume = volume
        self.model = None
        self._is_speaking = False
        self._interrupted = threading.Event()

    @abstractmethod
    def load(self) -> bool:
        """
        Load the TTS model.

        Returns:
            True if loaded successfully, False otherwise
        """

    @abstractmethod
    async def speak(
        self,
        text: str,
        on_start: Callable[[], None] | None = None,
        on_end: Callable[[], None] | None = None
    ) -> None:
        """
        Synthesize text and play audio.

        Args:
            text: Text to speak
            on_start: Callback when audio starts
            on_end: Callback when playback completes without interruption

        Raises:
            Exception: synthesis or playback failures
        """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the display name of this adapter."""

    @property
    @abstractmethod
    def available_voices(self) -> list[str]:
        """Return list of available voice IDs for this adapter."""

    @property
    def is_loaded(self) -> bool:
        """Check if the model is loaded."""
        return self.model is not None

    @property
    def is_speaking(self) -> bool:
        """Check if currently speaking."""
        return self._is_speaking

    def stop_speaking(self) -> bool:
        """Interrupt current speech. Returns True if something was playing."""
        import sounddevice as sd

        was_speaking = self._is_speaking
        self._interrupted.set()
        try:
            sd.stop()
        except sd.PortAudioError as e:
            logger.warning("Failed to stop playback: %s", e)
        self._is_speaking = False
        return was_speaking

    def _play_audio(self, audio: np.ndarray, sample_rate: int) -> None:
        """Play samples via sounddevice, interruptible through ``stop_speaking``."""
        import sounddevice as sd

        sd.play(audio * self.volume, sample_rate)
        # Poll instead of blocking sd.wait() so stop_speaking() can interrupt
        deadline = time.monotonic() + PLAYBACK_TIMEOUT
        while time.monotonic() < deadline:
            if not sd.get_stream().active:
                break
            if self._interrupted.is_set():
                sd.stop()
                break
            time.sleep(PLAYBACK_POLL_INTERVAL)
        else:
            sd.stop()

    def unload(self) -> None:
        """Unload the model to free memory."""
        self.model = None

    def set_voice(self, voice: str) -> bool:
        """
        Change the voice for this adapter.

        Returns:
            True if voice was changed successfully
        """
        if voice in self.available_voices:
            self.voice = voice
            logger.info("TTS voice changed to: %s", voice)
            return True
        logger.warning("Unknown voice: %s. Available: %s", voice, ", ".join(self.available_voices))
        return False

    @staticmethod
    def strip_markdown(text: str) -> str:
        """
        Strip markdown syntax that sounds bad when spoken aloud.

        Args:
            text: Text potentially containing markdown

        Returns:
            Cleaned text suitable for TTS
        """
        # Remove code blocks
        text = re.sub(r'```[^`]*```', '', text, flags=re.DOTALL)
        # Remove headers (## Header -> Header)
        text = re.sub(r'#{1,6}\s*', '', text)
        # Remove bold (**text** -> text)
        text = re.sub(r'\*\*([^*]+)\*\*', r'\1', text)
        # Remove italic (*text* -> text)
        text = re.sub(r'\*([^*]+)\*', r'\1', text)
        # Links keep only their label ([label](url) -> label)
        text = re.sub(r'\[([^\]]+)\]\([^)]+\)', r'\1', text)
        # Remove bullet points at line start
        text = re.sub(r'^[-*]\s+', '', text, flags=re.MULTILINE)
        # Remove numbered lists (1. item -> item)
        text = re.sub(r'^\d+\.\s+', '', text, flags=re.MULTILINE)
        # Remove inline code (`code` -> code)
        text = re.sub(r'`([^`]+)`', r'\1', text)
        # Remove horizontal rules
        text = re.sub(r'^---+$', '', text, flags=re.MULTILINE)
        # Clean up extra whitespace
        text = re.sub(r'\n{3,}', '\n\n', text)
        return text.strip()
