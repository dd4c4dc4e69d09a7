"""Base STT adapter interface."""

from abc import ABC, abstractmethod

import numpy as np


class STTAdapter(ABC):
    """
    Base class for batch Speech-to-Text adapters.

    Adapters turn a complete float32 mono recording into text. They back
    both the live recognition engine (interim and final passes) and the
    fallback recorder.
    """

    adapter_type = "base"
    adapter_category = "local"
    pip_package: str | None = None

    def __init__(self, model_name: str | None = None):
        self.model_name = model_name
        self.model = None

    @abstractmethod
    async def load(self) -> bool:
        """
        Load the model.

        Returns:
            True if loaded successfully, False otherwise
        """

    @abstractmethod
    async def transcribe(self, audio_data: np.ndarray, sample_rate: int = 16000) -> str:
        """
        Transcribe a recording.

        Returns:
            The transcript, or "" when nothing was recognized
        """

    @property
    def is_loaded(self) -> bool:
        """Check if the model is loaded."""
        return self.model is not None

    @property
    def name(self) -> str:
        """Return the display name of this adapter."""
        return f"{self.adapter_type} ({self.model_name})"

    async def ensure_loaded(self) -> bool:
        """Load on first use."""
        if self.is_loaded:
            return True
        return await self.load()
