"""Tests for the shared speech output player."""

import asyncio
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Ensure the python package root is on sys.path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from tts.base import chunk_text
from tts.player import (
    SpeechOutputPlayer,
    clean_for_speech,
    get_speech_player,
    init_speech_player,
    shutdown_speech_player,
)

from fakes import FakeSynth


class TestCleanForSpeech:
    def test_strips_markdown(self):
        assert clean_for_speech("**Drink** water and *rest*") == "Drink water and rest"

    def test_links_keep_label(self):
        assert clean_for_speech("See [our guide](https://example.com/guide)") == "See our guide"

    def test_newlines_become_pauses(self):
        assert clean_for_speech("Rest well\nDrink water") == "Rest well. Drink water"

    def test_no_double_punctuation(self):
        assert clean_for_speech("Rest well.\n\nDrink water") == "Rest well. Drink water"


class TestChunkText:
    def test_short_text_single_chunk(self):
        assert chunk_text("Hello there.") == ["Hello there."]

    def test_long_text_split_on_sentences(self):
        text = " ".join(["This is a sentence about health."] * 12)
        chunks = chunk_text(text, max_chars=200)
        assert len(chunks) > 1
        assert all(len(c) <= 200 for c in chunks)
        assert " ".join(chunks) == text


class TestSpeechOutputPlayer:
    def test_speak_sets_is_speaking_until_done(self):
        synth = FakeSynth()
        player = SpeechOutputPlayer(synth)
        changes = []
        player.subscribe(changes.append)

        async def run_test():
            task = player.speak("Hello")
            await asyncio.sleep(0)
            assert player.is_speaking
            synth.finish()
            await task

        asyncio.run(run_test())
        assert not player.is_speaking
        assert changes == [True, False]
        assert synth.spoken == ["Hello"]

    def test_new_utterance_cancels_previous(self):
        synth = FakeSynth()
        player = SpeechOutputPlayer(synth)

        async def run_test():
            first = player.speak("First")
            await asyncio.sleep(0)
            second = player.speak("Second")
            await asyncio.sleep(0)
            assert first.cancelled() or first.done()
            assert player.is_speaking
            synth.finish()
            await second

        asyncio.run(run_test())
        assert synth.spoken == ["First", "Second"]
        assert synth.stops >= 1

    def test_cancel_is_synchronous(self):
        synth = FakeSynth()
        player = SpeechOutputPlayer(synth)

        async def run_test():
            player.speak("A long answer")
            await asyncio.sleep(0)
            assert player.is_speaking
            player.cancel()
            # No await between cancel and the check
            assert player.is_speaking is False
            assert synth.is_speaking is False
            await asyncio.sleep(0)

        asyncio.run(run_test())

    def test_disable_suppresses_speak(self):
        synth = FakeSynth()
        player = SpeechOutputPlayer(synth)
        player.disable()

        async def run_test():
            return player.speak("Hello")

        assert asyncio.run(run_test()) is None
        assert synth.spoken == []

    def test_enable_after_disable(self):
        synth = FakeSynth()
        player = SpeechOutputPlayer(synth, enabled=False)
        player.enable()

        async def run_test():
            task = player.speak("Back on")
            await asyncio.sleep(0)
            synth.finish()
            await task

        asyncio.run(run_test())
        assert synth.spoken == ["Back on"]

    def test_empty_text_is_not_spoken(self):
        player = SpeechOutputPlayer(FakeSynth())

        async def run_test():
            return player.speak("**  **")

        assert asyncio.run(run_test()) is None

    def test_synth_error_resets_is_speaking(self):
        synth = FakeSynth()
        synth.speak = MagicMock(side_effect=RuntimeError("no audio device"))
        player = SpeechOutputPlayer(synth)

        async def run_test():
            await player.speak("Hello")

        asyncio.run(run_test())
        assert player.is_speaking is False


class TestSingleton:
    def teardown_method(self):
        shutdown_speech_player()

    def test_get_before_init_raises(self):
        shutdown_speech_player()
        with pytest.raises(RuntimeError):
            get_speech_player()

    def test_init_replaces_and_silences_previous(self):
        first_synth = FakeSynth()
        first = init_speech_player(first_synth)
        second = init_speech_player(FakeSynth())
        assert get_speech_player() is second
        assert first is not second
        assert first_synth.stops == 1
