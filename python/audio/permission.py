"""Microphone permission gate.

Probing the device directly is the only reliable signal on some platforms,
so ``check_permission()`` opens (and immediately releases) an input stream
first and only consults a declarative status query when the probe fails for
a reason other than denial.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

from shared.errors import MicrophoneDeniedError

from .state import PermissionState

logger = logging.getLogger(__name__)

PermissionListener = Callable[[str, str], None]


class MicrophoneAccess(ABC):
    """Platform adapter for microphone permission."""

    @abstractmethod
    async def open_probe(self) -> object:
        """
        Acquire the microphone to test access.

        Returns an opaque handle that must be passed to ``release``.

        Raises:
            MicrophoneDeniedError: the OS or user refused access
            Exception: any other failure (no device, backend error)
        """

    @abstractmethod
    def release(self, handle: object) -> None:
        """Release a handle returned by ``open_probe``."""

    async def query_status(self) -> str | None:
        """Declarative permission status, or None when the platform has none."""
        return None


class PermissionGate:
    """Queries and tracks microphone permission for one assistant session."""

    def __init__(self, access: MicrophoneAccess):
        self._access = access
        self._state = PermissionState.UNKNOWN
        self._listeners: list[PermissionListener] = []
        self._watch_task: asyncio.Task | None = None

    @property
    def state(self) -> str:
        return self._state

    @property
    def is_granted(self) -> bool:
        return self._state == PermissionState.GRANTED

    def subscribe(self, listener: PermissionListener) -> Callable[[], None]:
        """Register ``listener(old, new)`` for state changes. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def check_permission(self) -> str:
        """
        Determine the current microphone permission.

        Returns:
            One of PermissionState.GRANTED, DENIED, PROMPT, UNKNOWN
        """
        try:
            handle = await self._access.open_probe()
        except MicrophoneDeniedError as e:
            logger.warning("Microphone access denied: %s", e)
            self._set_state(PermissionState.DENIED)
            return self._state
        except Exception as e:
            logger.warning("Direct microphone probe failed: %s", e)
        else:
            self._release(handle)
            logger.info("Microphone permission granted via direct access")
            self._set_state(PermissionState.GRANTED)
            return self._state

        status = await self._query_status()
        if status is None:
            logger.info("No permission status query available, will negotiate on first use")
            self._set_state(PermissionState.UNKNOWN)
        else:
            self._set_state(status)
        return self._state

    def mark_denied(self) -> None:
        """Record a denial reported mid-session by a capture engine."""
        self._set_state(PermissionState.DENIED)

    def mark_granted(self) -> None:
        """Record a successful microphone acquisition outside the probe."""
        self._set_state(PermissionState.GRANTED)

    def start_watching(self, interval: float = 2.0) -> asyncio.Task:
        """Poll the declarative status so external changes reach subscribers."""
        if self._watch_task is None or self._watch_task.done():
            self._watch_task = asyncio.ensure_future(self.watch(interval))
        return self._watch_task

    def stop_watching(self) -> None:
        if self._watch_task is not None and not self._watch_task.done():
            self._watch_task.cancel()
        self._watch_task = None

    async def watch(self, interval: float = 2.0) -> None:
        """Permission change loop. Ends when the platform offers no status query."""
        while True:
            status = await self._query_status()
            if status is None:
                logger.debug("Permission watcher stopped: no status query on this platform")
                return
            self._set_state(status)
            await asyncio.sleep(interval)

    async def _query_status(self) -> str | None:
        try:
            status = await self._access.query_status()
        except Exception as e:
            logger.warning("Permission status query failed: %s", e)
            return None
        if status is not None and status not in PermissionState.ALL:
            logger.warning("Ignoring unknown permission status %r", status)
            return None
        return status

    def _release(self, handle: object) -> None:
        try:
            self._access.release(handle)
        except Exception as e:
            logger.warning("Failed to release microphone probe: %s", e)

    def _set_state(self, new_state: str) -> None:
        old_state = self._state
        if new_state == old_state:
            return
        self._state = new_state
        logger.info("Microphone permission: %s -> %s", old_state, new_state)
        for listener in list(self._listeners):
            try:
                listener(old_state, new_state)
            except Exception as e:
                logger.error("Permission listener failed: %s", e)
