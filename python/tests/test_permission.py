"""Tests for the microphone PermissionGate."""

import asyncio
import sys
from pathlib import Path
from unittest.mock import MagicMock

# Ensure the python package root is on sys.path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from audio.permission import PermissionGate
from audio.state import PermissionState
from shared.errors import MicrophoneDeniedError

from fakes import FakeMicrophone


class TestCheckPermission:
    def test_probe_success_grants_and_releases_once(self):
        mic = FakeMicrophone()
        gate = PermissionGate(mic)
        assert asyncio.run(gate.check_permission()) == PermissionState.GRANTED
        assert gate.is_granted
        assert mic.released == ["probe-1"]

    def test_denial_error_denies(self):
        mic = FakeMicrophone(probe_error=MicrophoneDeniedError("Permission denied"))
        gate = PermissionGate(mic)
        assert asyncio.run(gate.check_permission()) == PermissionState.DENIED
        assert mic.released == []

    def test_other_error_uses_declarative_query(self):
        mic = FakeMicrophone(probe_error=RuntimeError("no backend"), status=PermissionState.PROMPT)
        gate = PermissionGate(mic)
        assert asyncio.run(gate.check_permission()) == PermissionState.PROMPT

    def test_no_signal_is_unknown(self):
        mic = FakeMicrophone(probe_error=RuntimeError("no backend"), status=None)
        gate = PermissionGate(mic)
        assert asyncio.run(gate.check_permission()) == PermissionState.UNKNOWN

    def test_invalid_status_is_unknown(self):
        mic = FakeMicrophone(probe_error=RuntimeError("no backend"), status="maybe")
        gate = PermissionGate(mic)
        assert asyncio.run(gate.check_permission()) == PermissionState.UNKNOWN

    def test_release_failure_still_grants(self):
        mic = FakeMicrophone()
        mic.release = MagicMock(side_effect=OSError("already closed"))
        gate = PermissionGate(mic)
        assert asyncio.run(gate.check_permission()) == PermissionState.GRANTED
        mic.release.assert_called_once_with("probe-1")


class TestSubscribe:
    def test_listener_gets_transitions_only(self):
        gate = PermissionGate(FakeMicrophone())
        changes = []
        gate.subscribe(lambda old, new: changes.append((old, new)))

        asyncio.run(gate.check_permission())
        asyncio.run(gate.check_permission())
        gate.mark_denied()

        assert changes == [
            (PermissionState.UNKNOWN, PermissionState.GRANTED),
            (PermissionState.GRANTED, PermissionState.DENIED),
        ]

    def test_unsubscribe(self):
        gate = PermissionGate(FakeMicrophone())
        listener = MagicMock()
        unsubscribe = gate.subscribe(listener)
        unsubscribe()
        gate.mark_denied()
        listener.assert_not_called()

    def test_failing_listener_does_not_break_others(self):
        gate = PermissionGate(FakeMicrophone())
        gate.subscribe(MagicMock(side_effect=RuntimeError("boom")))
        second = MagicMock()
        gate.subscribe(second)
        gate.mark_denied()
        second.assert_called_once_with(PermissionState.UNKNOWN, PermissionState.DENIED)


class TestWatch:
    def test_watch_reports_external_change(self):
        mic = FakeMicrophone(status=PermissionState.DENIED)
        gate = PermissionGate(mic)
        changes = []
        gate.subscribe(lambda old, new: changes.append(new))

        async def run_test():
            task = gate.start_watching(interval=0.01)
            await asyncio.sleep(0.03)
            mic.status = PermissionState.GRANTED
            await asyncio.sleep(0.03)
            gate.stop_watching()
            await asyncio.sleep(0.01)
            return task

        task = asyncio.run(run_test())
        assert changes == [PermissionState.DENIED, PermissionState.GRANTED]
        assert task.done()

    def test_watch_ends_without_status_query(self):
        gate = PermissionGate(FakeMicrophone(status=None))
        asyncio.run(asyncio.wait_for(gate.watch(0.01), timeout=1.0))
        assert gate.state == PermissionState.UNKNOWN
