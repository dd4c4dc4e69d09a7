"""Parakeet STT adapter (NVIDIA NeMo model via onnx-asr)."""

import asyncio
import io
import logging
import os
import tempfile

import numpy as np
import soundfile as sf

from .base import STTAdapter

logger = logging.getLogger(__name__)


def to_wav_bytes(audio_data: np.ndarray, sample_rate: int) -> bytes:
    """Encode float32 mono samples as a 16-bit PCM WAV file."""
    buf = io.BytesIO()
    sf.write(buf, np.clip(audio_data, -1.0, 1.0), sample_rate, format="WAV", subtype="PCM_16")
    return buf.getvalue()


class ParakeetAdapter(STTAdapter):
    """
    Parakeet STT adapter using NVIDIA's NeMo Parakeet model.

    Local transcription on CPU. Default model: nemo-parakeet-tdt-0.6b-v2
    """

    adapter_type = "parakeet"
    adapter_category = "local"
    pip_package = "onnx-asr"

    def __init__(self, model_name: str | None = None, **kwargs):
        super().__init__(model_name or "nemo-parakeet-tdt-0.6b-v2")

    async def load(self) -> bool:
        """Load the Parakeet model."""
        try:
            import onnx_asr
        except ImportError:
            logger.error("Parakeet STT not available - install with: pip install onnx-asr[hub]")
            return False

        logger.info("Loading Parakeet STT model (%s)...", self.model_name)

        # Real files instead of hub-cache symlinks, which ONNX Runtime rejects
        # as escaping the model directory
        model_cache = os.path.join(
            os.path.expanduser("~"), ".cache", "soulspace-assistant", "models", self.model_name
        )

        loop = asyncio.get_running_loop()
        try:
            self.model = await loop.run_in_executor(
                None,
                lambda: onnx_asr.load_model(
                    self.model_name,
                    path=model_cache,
                    providers=["CPUExecutionProvider"],
                ),
            )
        except Exception as e:
            logger.error("Failed to load Parakeet model: %s", e)
            self.model = None
            return False

        logger.info("Parakeet loaded (CPU mode)")
        return True

    async def transcribe(self, audio_data: np.ndarray, sample_rate: int = 16000) -> str:
        """Transcribe audio using Parakeet."""
        if not self.is_loaded:
            return ""

        wav_data = to_wav_bytes(audio_data, sample_rate)
        loop = asyncio.get_running_loop()

        # In-memory first, temp file if the API insists on a path
        try:
            wav_io = io.BytesIO(wav_data)
            wav_io.name = "audio.wav"
            result = await loop.run_in_executor(None, lambda: self.model.recognize(wav_io))
        except (TypeError, AttributeError, ValueError):
            temp_path = None
            try:
                with tempfile.NamedTemporaryFile(suffix=".wav", delete=False) as f:
                    f.write(wav_data)
                    temp_path = f.name
                result = await loop.run_in_executor(None, lambda: self.model.recognize(temp_path))
            finally:
                if temp_path and os.path.exists(temp_path):
                    try:
                        os.unlink(temp_path)
                    except OSError:
                        pass

        if result and result.strip():
            return result.strip()
        return ""

    @property
    def name(self) -> str:
        """Return adapter name."""
        return f"Parakeet ({self.model_name}) - CPU"
