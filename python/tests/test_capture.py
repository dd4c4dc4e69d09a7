"""Tests for the primary and fallback capture sessions."""

import asyncio
import sys
from pathlib import Path

import numpy as np
import pytest

# Ensure the python package root is on sys.path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from capture.base import CaptureCallbacks, SessionStatus
from capture.fallback import FallbackCaptureSession
from capture.primary import PrimaryCaptureSession, map_engine_error
from shared.errors import CaptureError, MicrophoneDeniedError

from fakes import FakeEngine, FakeRecorder, FakeTranscriber


class Recorder:
    """Collects capture callbacks in order."""

    def __init__(self):
        self.events = []

    def callbacks(self) -> CaptureCallbacks:
        return CaptureCallbacks(
            on_listening=lambda s: self.events.append(("listening",)),
            on_interim=lambda t: self.events.append(("interim", t)),
            on_final=lambda t: self.events.append(("final", t)),
            on_error=lambda e: self.events.append(("error", e.code)),
            on_finished=lambda s: self.events.append(("finished",)),
        )

    def names(self):
        return [e[0] for e in self.events]


# ---------------------------------------------------------------------------
# Primary
# ---------------------------------------------------------------------------

class TestPrimaryCapture:
    def test_unsupported_raises_before_acquiring(self):
        engine = FakeEngine(supported=False)
        session = PrimaryCaptureSession(engine)
        with pytest.raises(CaptureError) as exc:
            asyncio.run(session.start())
        assert exc.value.code == CaptureError.UNSUPPORTED
        assert engine.listener is None
        assert engine.closes == 0

    def test_interim_then_final(self):
        engine = FakeEngine()
        rec = Recorder()
        session = PrimaryCaptureSession(engine, rec.callbacks())
        asyncio.run(session.start())
        assert session.status == SessionStatus.LISTENING

        engine.listener.handle_result("what is", False)
        engine.listener.handle_result("What is a fever?", True)
        # Late events after the terminal state are ignored
        engine.listener.handle_result("ignored", True)

        assert rec.events == [
            ("listening",),
            ("interim", "what is"),
            ("final", "What is a fever?"),
            ("finished",),
        ]
        assert session.status == SessionStatus.DONE
        assert engine.closes == 1

    def test_empty_final_is_no_speech(self):
        engine = FakeEngine()
        rec = Recorder()
        session = PrimaryCaptureSession(engine, rec.callbacks())
        asyncio.run(session.start())
        engine.listener.handle_result("   ", True)
        assert ("error", CaptureError.NO_SPEECH) in rec.events
        assert "final" not in rec.names()

    @pytest.mark.parametrize("code,expected", [
        ("not-allowed", CaptureError.PERMISSION_DENIED),
        ("no-speech", CaptureError.NO_SPEECH),
        ("audio-capture", CaptureError.DEVICE_UNAVAILABLE),
        ("aborted", CaptureError.ABORTED),
        ("network", CaptureError.UNKNOWN),
    ])
    def test_engine_error_mapping(self, code, expected):
        assert map_engine_error(code) == expected

        engine = FakeEngine()
        rec = Recorder()
        session = PrimaryCaptureSession(engine, rec.callbacks())
        asyncio.run(session.start())
        engine.listener.handle_error(code)
        assert rec.events[-2:] == [("error", expected), ("finished",)]
        assert engine.closes == 1

    def test_stop_may_still_deliver_final(self):
        engine = FakeEngine()
        engine.final_on_stop = "clear chat"
        rec = Recorder()
        session = PrimaryCaptureSession(engine, rec.callbacks())
        asyncio.run(session.start())
        session.stop()
        assert engine.stopped
        assert ("final", "clear chat") in rec.events

    def test_stop_without_result_finishes_quietly(self):
        engine = FakeEngine()
        rec = Recorder()
        session = PrimaryCaptureSession(engine, rec.callbacks())
        asyncio.run(session.start())
        session.stop()
        assert rec.names() == ["listening", "finished"]
        assert engine.closes == 1

    def test_abort_releases_silently_once(self):
        engine = FakeEngine()
        rec = Recorder()
        session = PrimaryCaptureSession(engine, rec.callbacks())
        asyncio.run(session.start())
        session.abort()
        session.abort()
        assert engine.aborted
        assert engine.closes == 1
        assert rec.names() == ["listening"]

    def test_second_start_is_busy(self):
        session = PrimaryCaptureSession(FakeEngine())
        asyncio.run(session.start())
        with pytest.raises(CaptureError) as exc:
            asyncio.run(session.start())
        assert exc.value.code == CaptureError.BUSY

    def test_open_denied_reports_permission_denied(self):
        engine = FakeEngine(open_error=MicrophoneDeniedError("denied"))
        rec = Recorder()
        session = PrimaryCaptureSession(engine, rec.callbacks())
        asyncio.run(session.start())
        assert rec.events == [("error", CaptureError.PERMISSION_DENIED), ("finished",)]
        assert engine.closes == 1

    def test_open_unsupported_is_reraised_silently(self):
        engine = FakeEngine(open_error=CaptureError(CaptureError.UNSUPPORTED))
        rec = Recorder()
        session = PrimaryCaptureSession(engine, rec.callbacks())
        with pytest.raises(CaptureError):
            asyncio.run(session.start())
        assert rec.events == []
        assert engine.closes == 1

    def test_abort_while_opening_releases_engine(self):
        engine = FakeEngine()
        rec = Recorder()
        session = PrimaryCaptureSession(engine, rec.callbacks())

        async def run_test():
            engine.open_gate = asyncio.Event()
            starting = asyncio.ensure_future(session.start())
            await asyncio.sleep(0)
            session.abort()
            assert engine.stream_open is False
            # The engine finishes opening after the session is gone
            engine.open_gate.set()
            await starting

        asyncio.run(run_test())
        assert session.status == SessionStatus.ERROR
        assert engine.stream_open is False
        assert rec.events == []


# ---------------------------------------------------------------------------
# Fallback
# ---------------------------------------------------------------------------

class TestFallbackCapture:
    def _run(self, session, recorder, speech=True, stop_early=False, window_wait=0.05):
        async def run_test():
            await session.start()
            if recorder.on_chunk is not None:
                if speech:
                    recorder.push_speech()
                else:
                    recorder.push(np.zeros(8000, dtype=np.float32))
            if stop_early:
                session.stop()
            await asyncio.sleep(window_wait)

        asyncio.run(run_test())

    def test_window_elapses_and_transcribes(self):
        recorder = FakeRecorder()
        rec = Recorder()
        transcriber = FakeTranscriber("show tips")
        session = FallbackCaptureSession(recorder, rec.callbacks(), transcriber, window_seconds=0.01)
        self._run(session, recorder)
        assert rec.events == [("listening",), ("final", "show tips"), ("finished",)]
        assert recorder.closes == 1
        assert transcriber.calls and transcriber.calls[0][1] == 16000

    def test_silence_is_no_speech(self):
        recorder = FakeRecorder()
        rec = Recorder()
        transcriber = FakeTranscriber("should not be used")
        session = FallbackCaptureSession(recorder, rec.callbacks(), transcriber, window_seconds=0.01)
        self._run(session, recorder, speech=False)
        assert ("error", CaptureError.NO_SPEECH) in rec.events
        assert transcriber.calls == []

    def test_no_transcriber_never_fabricates_text(self):
        recorder = FakeRecorder()
        rec = Recorder()
        session = FallbackCaptureSession(recorder, rec.callbacks(), None, window_seconds=0.01)
        self._run(session, recorder)
        assert "final" not in rec.names()
        assert ("error", CaptureError.TRANSCRIPTION_UNAVAILABLE) in rec.events
        assert recorder.closes == 1

    def test_empty_transcript_is_no_speech(self):
        recorder = FakeRecorder()
        rec = Recorder()
        session = FallbackCaptureSession(recorder, rec.callbacks(), FakeTranscriber("  "), window_seconds=0.01)
        self._run(session, recorder)
        assert ("error", CaptureError.NO_SPEECH) in rec.events

    def test_transcriber_failure_is_unknown(self):
        recorder = FakeRecorder()
        rec = Recorder()
        transcriber = FakeTranscriber(error=RuntimeError("model crashed"))
        session = FallbackCaptureSession(recorder, rec.callbacks(), transcriber, window_seconds=0.01)
        self._run(session, recorder)
        assert ("error", CaptureError.UNKNOWN) in rec.events

    def test_stop_ends_window_early(self):
        recorder = FakeRecorder()
        rec = Recorder()
        session = FallbackCaptureSession(recorder, rec.callbacks(), FakeTranscriber("hello"), window_seconds=60)
        self._run(session, recorder, stop_early=True)
        assert ("final", "hello") in rec.events
        assert recorder.closes == 1

    def test_recorder_denied(self):
        recorder = FakeRecorder(open_error=MicrophoneDeniedError("denied"))
        rec = Recorder()
        session = FallbackCaptureSession(recorder, rec.callbacks(), FakeTranscriber("x"), window_seconds=0.01)
        self._run(session, recorder)
        assert rec.events == [("error", CaptureError.PERMISSION_DENIED), ("finished",)]

    def test_recorder_device_unavailable(self):
        recorder = FakeRecorder(open_error=CaptureError(CaptureError.DEVICE_UNAVAILABLE))
        rec = Recorder()
        session = FallbackCaptureSession(recorder, rec.callbacks(), None, window_seconds=0.01)
        self._run(session, recorder)
        assert ("error", CaptureError.DEVICE_UNAVAILABLE) in rec.events

    def test_abort_releases_once_without_callbacks(self):
        recorder = FakeRecorder()
        rec = Recorder()
        session = FallbackCaptureSession(recorder, rec.callbacks(), FakeTranscriber("x"), window_seconds=60)

        async def run_test():
            await session.start()
            recorder.push_speech()
            session.abort()
            session.abort()
            await asyncio.sleep(0.01)

        asyncio.run(run_test())
        assert rec.names() == ["listening"]
        assert recorder.closes == 1

    def test_abort_while_opening_releases_stream(self):
        recorder = FakeRecorder()
        rec = Recorder()
        session = FallbackCaptureSession(recorder, rec.callbacks(), FakeTranscriber("x"), window_seconds=60)

        async def run_test():
            recorder.open_gate = asyncio.Event()
            starting = asyncio.ensure_future(session.start())
            await asyncio.sleep(0)
            session.abort()
            recorder.open_gate.set()
            await starting
            await asyncio.sleep(0.01)

        asyncio.run(run_test())
        assert session.status == SessionStatus.ERROR
        assert recorder.stream_open is False
        assert rec.events == []
