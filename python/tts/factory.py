"""Factory for creating TTS adapters."""

from .base import TTSAdapter
from .kokoro import KokoroAdapter

# Registry of available adapters
ADAPTERS: dict[str, type] = {
    "kokoro": KokoroAdapter,
}


def create_tts_adapter(
    adapter_name: str,
    voice: str | None = None,
    speed: float = 1.0,
    volume: float = 1.0,
) -> TTSAdapter:
    """
    Create a TTS adapter by name.

    Args:
        adapter_name: Name of the adapter ("kokoro")
        voice: Optional voice ID to use (adapter-dependent)
        speed: Speech rate multiplier
        volume: Playback gain

    Raises:
        ValueError: If adapter_name is not recognized
    """
    adapter_name = adapter_name.lower()

    if adapter_name not in ADAPTERS:
        available = ", ".join(ADAPTERS.keys()) if ADAPTERS else "none"
        raise ValueError(
            f"Unknown TTS adapter: {adapter_name}. "
            f"Available: {available}"
        )

    return ADAPTERS[adapter_name](voice=voice, speed=speed, volume=volume)


def list_available_adapters() -> list[str]:
    """List all available TTS adapter names."""
    return list(ADAPTERS.keys())


def get_default_adapter() -> str:
    """Get the default TTS adapter name."""
    return "kokoro"
