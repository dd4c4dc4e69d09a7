"""Text-to-speech adapters and the shared speech output player."""

from .base import TTSAdapter, chunk_text
from .factory import create_tts_adapter, get_default_adapter, list_available_adapters
from .player import (
    SpeechOutputPlayer,
    clean_for_speech,
    get_speech_player,
    init_speech_player,
    shutdown_speech_player,
)

__all__ = [
    "TTSAdapter",
    "chunk_text",
    "create_tts_adapter",
    "get_default_adapter",
    "list_available_adapters",
    "SpeechOutputPlayer",
    "clean_for_speech",
    "get_speech_player",
    "init_speech_player",
    "shutdown_speech_player",
]
