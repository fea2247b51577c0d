"""Cooperative cancellation for polling loops.

The poller checks the signal between steps and sleeps on it, so a
shutdown request lets the in-flight page finish processing and
persisting before the loop stops.
"""

from __future__ import annotations

import anyio


class AbortSignal:
    """Cooperative cancellation signal.

    Once set, it cannot be unset.

    Usage::

        signal = AbortSignal()

        # In the loop:
        if signal.is_set:
            break
        if await signal.sleep(5.0):
            break   # aborted while sleeping

        # From a signal handler or shutdown hook:
        signal.set()
    """

    def __init__(self) -> None:
        self._is_set: bool = False
        self._event: anyio.Event | None = None

    @property
    def is_set(self) -> bool:
        """Whether the abort has been requested."""
        return self._is_set

    def set(self) -> None:
        """Request abort and wake any sleeper."""
        if self._is_set:
            return
        self._is_set = True
        if self._event is not None:
            self._event.set()

    async def sleep(self, delay: float) -> bool:
        """Sleep up to *delay* seconds; return True if aborted meanwhile."""
        if self._is_set:
            return True
        if delay <= 0:
            return False
        if self._event is None:
            # anyio events need a running loop, so create lazily.
            self._event = anyio.Event()
        with anyio.move_on_after(delay):
            await self._event.wait()
        return self._is_set
