"""Speech output for assistant replies.

One ``SpeechOutputPlayer`` wraps the process-wide synthesizer so that at
most one utterance is ever active: every ``speak`` cancels the previous
utterance first, and ``disable``/``cancel`` silence output before they
return.
"""

import asyncio
import logging
import re
from collections.abc import Callable

from .base import TTSAdapter

logger = logging.getLogger(__name__)

SpeakingListener = Callable[[bool], None]


def clean_for_speech(text: str) -> str:
    """Prepare reply text for the synthesizer: no markdown, newlines become pauses."""
    text = TTSAdapter.strip_markdown(text)
    text = text.replace("**", "").replace("*", "").replace("#", "")
    text = re.sub(r'\n\n+', '. ', text)
    text = text.replace("\n", ". ")
    text = re.sub(r'([.!?])\.\s', r'\1 ', text)
    return text.strip()


class SpeechOutputPlayer:
    """Queues nothing: one utterance at a time, interruptible."""

    def __init__(self, synthesizer: TTSAdapter, enabled: bool = True):
        self._synth = synthesizer
        self._enabled = enabled
        self._is_speaking = False
        self._utterance_id = 0
        self._task: asyncio.Task | None = None
        self._listeners: list[SpeakingListener] = []
        self._closed = False

    @property
    def synthesizer(self) -> TTSAdapter:
        return self._synth

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def is_speaking(self) -> bool:
        return self._is_speaking

    def subscribe(self, listener: SpeakingListener) -> Callable[[], None]:
        """Register ``listener(is_speaking)``. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def speak(self, text: str) -> asyncio.Task | None:
        """
        Speak *text*, replacing any current utterance.

        Returns the playback task, or None when output is disabled or the
        text is empty after cleaning.
        """
        if not self._enabled or self._closed:
            return None
        cleaned = clean_for_speech(text)
        if not cleaned:
            return None

        self.cancel()
        self._utterance_id += 1
        self._task = asyncio.ensure_future(self._play(self._utterance_id, cleaned))
        return self._task

    def cancel(self) -> None:
        """Stop the current utterance now. ``is_speaking`` is False on return."""
        # Invalidate callbacks from the outgoing utterance
        self._utterance_id += 1
        task, self._task = self._task, None
        try:
            self._synth.stop_speaking()
        except Exception as e:
            logger.warning("Failed to stop speech synthesis: %s", e)
        if task is not None and not task.done():
            task.cancel()
        self._set_speaking(False)

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        """Stop speaking immediately and ignore ``speak`` until re-enabled."""
        self._enabled = False
        self.cancel()

    def close(self) -> None:
        self.cancel()
        self._closed = True
        self._listeners.clear()

    async def _play(self, utterance_id: int, text: str) -> None:
        def _on_start():
            if utterance_id == self._utterance_id:
                self._set_speaking(True)

        def _on_end():
            if utterance_id == self._utterance_id:
                self._set_speaking(False)

        try:
            await self._synth.speak(text, on_start=_on_start, on_end=_on_end)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Speech synthesis error: %s", e)
        finally:
            if utterance_id == self._utterance_id:
                self._set_speaking(False)
                self._task = None

    def _set_speaking(self, speaking: bool) -> None:
        if speaking == self._is_speaking:
            return
        self._is_speaking = speaking
        for listener in list(self._listeners):
            try:
                listener(speaking)
            except Exception as e:
                logger.error("Speaking listener failed: %s", e)


# Process-wide player
_player: SpeechOutputPlayer | None = None


def init_speech_player(synthesizer: TTSAdapter, enabled: bool = True) -> SpeechOutputPlayer:
    """Create the shared player, replacing (and silencing) any previous one."""
    global _player
    if _player is not None:
        _player.close()
    _player = SpeechOutputPlayer(synthesizer, enabled=enabled)
    return _player


def get_speech_player() -> SpeechOutputPlayer:
    """Return the shared player. Raises if ``init_speech_player`` was not called."""
    if _player is None:
        raise RuntimeError("Speech player not initialized")
    return _player


def shutdown_speech_player() -> None:
    """Silence and drop the shared player."""
    global _player
    if _player is not None:
        _player.close()
        _player = None
