"""Speech-to-text adapters and the live recognition engine."""

from .base import STTAdapter

# Registry of available adapters
ADAPTERS: dict[str, type] = {}


def _register_adapters():
    """Register available STT adapters."""
    from .parakeet import ParakeetAdapter
    ADAPTERS["parakeet"] = ParakeetAdapter


_register_adapters()


def create_stt_adapter(adapter_name: str = "parakeet", model_name: str | None = None, **kwargs) -> STTAdapter:
    """
    Create an STT adapter by name.

    Raises:
        ValueError: If adapter_name is not recognized
    """
    adapter_name = adapter_name.lower()
    if adapter_name not in ADAPTERS:
        available = ", ".join(ADAPTERS.keys()) if ADAPTERS else "none"
        raise ValueError(f"Unknown STT adapter: {adapter_name}. Available: {available}")
    return ADAPTERS[adapter_name](model_name, **kwargs)


def list_available_adapters() -> list[str]:
    return list(ADAPTERS.keys())


__all__ = [
    "STTAdapter",
    "ADAPTERS",
    "create_stt_adapter",
    "list_available_adapters",
]
