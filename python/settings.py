"""Voice settings management - speech output, capture strategy, STT/TTS adapters."""

import json
import logging
from typing import Any

from shared.paths import get_data_dir

logger = logging.getLogger(__name__)

VOICE_SETTINGS_PATH = get_data_dir() / "voice_settings.json"

DEFAULT_VOICE_SETTINGS: dict[str, Any] = {
    "voice_output_enabled": False,  # Spoken replies are opt-in
    "use_fallback": False,  # Start with the alternative capture method
    "tts_adapter": "kokoro",
    "tts_voice": "af_bella",  # Voice ID (adapter-dependent)
    "tts_speed": 0.9,  # Slightly slower than default for comprehension
    "tts_volume": 1.0,
    "stt_adapter": "parakeet",
    "stt_model": None,  # None = use adapter's default model
    "fallback_window": 5.0,  # seconds recorded by the alternative method
    "no_speech_timeout": 8.0,  # seconds of silence before "no speech"
    "silence_timeout": 1.5,  # trailing silence that finalizes an utterance
    "context_window": 10,  # messages sent as conversation history
}


def load_voice_settings() -> dict[str, Any]:
    """Load the user's voice settings merged over the defaults."""
    defaults = dict(DEFAULT_VOICE_SETTINGS)

    if VOICE_SETTINGS_PATH.exists():
        try:
            settings = json.loads(VOICE_SETTINGS_PATH.read_text(encoding="utf-8"))
            return {**defaults, **settings}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not read %s, using defaults: %s", VOICE_SETTINGS_PATH, e)

    return defaults


def save_voice_settings(settings: dict[str, Any]) -> bool:
    """Save the user's voice settings to disk."""
    try:
        VOICE_SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
        VOICE_SETTINGS_PATH.write_text(json.dumps(settings, indent=2), encoding="utf-8")
        return True
    except OSError as e:
        logger.warning("Could not save voice settings: %s", e)
        return False
