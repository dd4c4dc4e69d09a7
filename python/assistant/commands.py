"""Voice command recognition for finalized transcripts."""


class VoiceCommand:
    """Commands the assistant executes locally, without the inference service."""
    CLEAR_CHAT = "clear-chat"
    SHOW_TIPS = "show-tips"
    TOGGLE_VOICE = "toggle-voice"
    NONE = "none"


# Priority order: first match wins
COMMAND_PHRASES = (
    (VoiceCommand.CLEAR_CHAT, ("clear chat", "start over")),
    (VoiceCommand.SHOW_TIPS, ("health tips", "show tips")),
    (VoiceCommand.TOGGLE_VOICE, ("toggle voice", "enable voice", "disable voice")),
)

# Delay before a non-command transcript is sent, so the UI can show it first
SEND_DEBOUNCE_SECONDS = 0.5


def interpret(transcript: str) -> str:
    """Map a final transcript to a VoiceCommand (case-insensitive substring match)."""
    lowered = (transcript or "").lower()
    for command, phrases in COMMAND_PHRASES:
        if any(phrase in lowered for phrase in phrases):
            return command
    return VoiceCommand.NONE
