"""Energy-based voice activity detection for captured microphone audio."""

import logging

import numpy as np

logger = logging.getLogger(__name__)

# Mean absolute amplitude thresholds (float32 samples in [-1, 1])
_ENERGY_THRESHOLDS = {
    "recording": 0.01,
    "follow_up": 0.03,
}


def get_audio_level(audio_chunk: np.ndarray) -> float:
    """Mean absolute amplitude of a chunk (0.0 for empty input)."""
    if audio_chunk is None or audio_chunk.size == 0:
        return 0.0
    return float(np.abs(audio_chunk).mean())


def detect_speech_energy(audio_chunk: np.ndarray, mode: str = "recording") -> tuple[bool, float]:
    """
    Simple energy-based VAD.

    Args:
        audio_chunk: float32 mono samples (any length).
        mode: one of 'recording', 'follow_up'.

    Returns:
        (is_speech, energy)
    """
    energy = get_audio_level(audio_chunk)
    threshold = _ENERGY_THRESHOLDS.get(mode, 0.01)
    return (energy > threshold, energy)


def contains_speech(audio: np.ndarray, frame_samples: int = 1280, mode: str = "recording") -> bool:
    """True if any frame of *audio* crosses the speech energy threshold."""
    if audio is None or audio.size == 0:
        return False
    for start in range(0, len(audio), frame_samples):
        is_speech, _ = detect_speech_energy(audio[start:start + frame_samples], mode)
        if is_speech:
            return True
    return False
