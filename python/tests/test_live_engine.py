"""Tests for the local live recognition engine (primary capture strategy)."""

import asyncio
import sys
import threading
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import numpy as np
import pytest

# Ensure the python package root is on sys.path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from capture.primary import RecognitionListener
from shared.errors import CaptureError, MicrophoneDeniedError
from stt.base import STTAdapter

try:
    from stt import live
except OSError:  # PortAudio shared library not installed
    live = None

pytestmark = pytest.mark.skipif(live is None, reason="PortAudio library not available")

SPEECH = np.full((1280, 1), 0.2, dtype=np.float32)
SILENCE = np.zeros((1280, 1), dtype=np.float32)


class ScriptedSTT(STTAdapter):
    """STT adapter returning a fixed transcript."""

    adapter_type = "scripted"

    def __init__(self, transcript: str = "hello", loads: bool = True):
        super().__init__("test")
        self.transcript = transcript
        self.loads = loads
        self.calls = []

    async def load(self) -> bool:
        if self.loads:
            self.model = object()
        return self.loads

    async def transcribe(self, audio_data, sample_rate=16000):
        self.calls.append(len(audio_data))
        return self.transcript


class EventLog(RecognitionListener):
    def __init__(self):
        self.events = []

    def handle_start(self):
        self.events.append(("start",))

    def handle_result(self, text, is_final):
        self.events.append(("result", text, is_final))

    def handle_error(self, code, message=None):
        self.events.append(("error", code))

    def handle_end(self):
        self.events.append(("end",))


@pytest.fixture
def audio_stack(monkeypatch):
    """Replace the PortAudio stream helpers with recorders."""
    stack = SimpleNamespace(stream=MagicMock(name="stream"), callbacks=[], closed=[])

    def fake_open(callback=None, device=None):
        stack.callbacks.append(callback)
        return stack.stream

    monkeypatch.setattr(live, "open_input_stream", fake_open)
    monkeypatch.setattr(live, "has_input_device", lambda: True)
    monkeypatch.setattr(live, "close_stream", stack.closed.append)
    monkeypatch.setattr(live, "MONITOR_INTERVAL", 0.005)
    return stack


def feed(engine, chunk):
    engine._audio_callback(chunk, len(chunk), None, None)


# ---------------------------------------------------------------------------
# Support
# ---------------------------------------------------------------------------

class TestSupport:
    def test_unsupported_without_adapter(self):
        assert live.LocalRecognitionEngine(None).is_supported() is False

    def test_supported_check_does_not_query_devices(self, monkeypatch):
        query = MagicMock(return_value=True)
        monkeypatch.setattr(live, "has_input_device", query)
        assert live.LocalRecognitionEngine(ScriptedSTT()).is_supported() is True
        query.assert_not_called()

    def test_adapter_load_failure_is_unsupported(self, audio_stack):
        engine = live.LocalRecognitionEngine(ScriptedSTT(loads=False))
        with pytest.raises(CaptureError) as exc:
            asyncio.run(engine.open(EventLog()))
        assert exc.value.code == CaptureError.UNSUPPORTED
        assert audio_stack.callbacks == []

    def test_no_input_device(self, audio_stack, monkeypatch):
        monkeypatch.setattr(live, "has_input_device", lambda: False)
        engine = live.LocalRecognitionEngine(ScriptedSTT())
        with pytest.raises(CaptureError) as exc:
            asyncio.run(engine.open(EventLog()))
        assert exc.value.code == CaptureError.DEVICE_UNAVAILABLE
        assert audio_stack.callbacks == []

    def test_denied_stream(self, audio_stack, monkeypatch):
        def denied(callback=None, device=None):
            raise live.sd.PortAudioError("Error opening InputStream: Permission denied")

        monkeypatch.setattr(live, "open_input_stream", denied)
        engine = live.LocalRecognitionEngine(ScriptedSTT())
        with pytest.raises(MicrophoneDeniedError):
            asyncio.run(engine.open(EventLog()))

    def test_broken_device(self, audio_stack, monkeypatch):
        def broken(callback=None, device=None):
            raise live.sd.PortAudioError("Invalid number of channels")

        monkeypatch.setattr(live, "open_input_stream", broken)
        engine = live.LocalRecognitionEngine(ScriptedSTT())
        with pytest.raises(CaptureError) as exc:
            asyncio.run(engine.open(EventLog()))
        assert exc.value.code == CaptureError.DEVICE_UNAVAILABLE


# ---------------------------------------------------------------------------
# Recognition
# ---------------------------------------------------------------------------

class TestRecognition:
    def test_final_after_trailing_silence(self, audio_stack):
        stt = ScriptedSTT("hello")
        log = EventLog()
        engine = live.LocalRecognitionEngine(stt, silence_timeout=0.03, interim_interval=10.0)

        async def run_test():
            await engine.open(log)
            feed(engine, SPEECH)
            await asyncio.sleep(0.15)

        asyncio.run(run_test())
        assert log.events == [("start",), ("result", "hello", True)]
        assert stt.calls == [1280]
        assert audio_stack.closed == [audio_stack.stream]

    def test_interim_results_while_speaking(self, audio_stack):
        log = EventLog()
        engine = live.LocalRecognitionEngine(ScriptedSTT("what is"), silence_timeout=5.0, interim_interval=0.01)

        async def run_test():
            await engine.open(log)
            for _ in range(10):
                feed(engine, SPEECH)
                await asyncio.sleep(0.01)
            engine.abort()

        asyncio.run(run_test())
        assert ("result", "what is", False) in log.events
        assert not [e for e in log.events if e[0] == "result" and e[2]]
        assert audio_stack.closed == [audio_stack.stream]

    def test_no_speech_timeout(self, audio_stack):
        stt = ScriptedSTT()
        log = EventLog()
        engine = live.LocalRecognitionEngine(stt, no_speech_timeout=0.02)

        async def run_test():
            await engine.open(log)
            feed(engine, SILENCE)
            await asyncio.sleep(0.1)

        asyncio.run(run_test())
        assert log.events == [("start",), ("error", "no-speech")]
        assert stt.calls == []
        assert audio_stack.closed == [audio_stack.stream]

    def test_max_duration_finalizes_long_speech(self, audio_stack):
        log = EventLog()
        engine = live.LocalRecognitionEngine(
            ScriptedSTT("a very long story"), silence_timeout=5.0, interim_interval=10.0, max_duration=0.03,
        )

        async def run_test():
            await engine.open(log)
            for _ in range(10):
                feed(engine, SPEECH)
                await asyncio.sleep(0.01)

        asyncio.run(run_test())
        finals = [e for e in log.events if e[0] == "result" and e[2]]
        assert finals == [("result", "a very long story", True)]

    def test_stop_finalizes_what_was_heard(self, audio_stack):
        log = EventLog()
        engine = live.LocalRecognitionEngine(ScriptedSTT("clear chat"), silence_timeout=5.0, interim_interval=10.0)

        async def run_test():
            await engine.open(log)
            feed(engine, SPEECH)
            engine.stop()
            await asyncio.sleep(0.05)

        asyncio.run(run_test())
        assert log.events == [("start",), ("result", "clear chat", True)]

    def test_stop_without_speech_ends(self, audio_stack):
        log = EventLog()
        engine = live.LocalRecognitionEngine(ScriptedSTT())

        async def run_test():
            await engine.open(log)
            engine.stop()
            await asyncio.sleep(0.05)

        asyncio.run(run_test())
        assert log.events == [("start",), ("end",)]
        assert audio_stack.closed == [audio_stack.stream]


# ---------------------------------------------------------------------------
# Teardown
# ---------------------------------------------------------------------------

class TestTeardown:
    def test_close_releases_stream_once(self, audio_stack):
        engine = live.LocalRecognitionEngine(ScriptedSTT())

        async def run_test():
            await engine.open(EventLog())
            engine.close()
            engine.close()

        asyncio.run(run_test())
        assert audio_stack.closed == [audio_stack.stream]

    def test_abort_while_stream_opening(self, audio_stack, monkeypatch):
        entered = threading.Event()
        release = threading.Event()

        def slow_open(callback=None, device=None):
            entered.set()
            release.wait(2.0)
            return audio_stack.stream

        monkeypatch.setattr(live, "open_input_stream", slow_open)
        log = EventLog()
        engine = live.LocalRecognitionEngine(ScriptedSTT())

        async def run_test():
            opening = asyncio.ensure_future(engine.open(log))
            await asyncio.get_running_loop().run_in_executor(None, entered.wait, 2.0)
            engine.abort()
            release.set()
            await opening
            await asyncio.sleep(0.02)

        asyncio.run(run_test())
        assert log.events == []
        assert audio_stack.closed == [audio_stack.stream]
        assert engine._stream is None
        assert engine._monitor_task is None
