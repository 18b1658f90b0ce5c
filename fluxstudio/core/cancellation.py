"""Cooperative cancellation for long-running loops.

Used by the poll loop in `fluxstudio.image.polling` and the background
reconciliation loop in `fluxstudio.storage.router`. Waiting on the handle
yields to the event loop, so cancellation interrupts an in-progress delay
instead of waiting for it to elapse.
"""

import asyncio


class CancellationHandle:
    """Caller-owned switch that aborts a running poll or reconciliation loop."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: float) -> bool:
        """Wait up to `timeout` seconds; return `True` if cancelled meanwhile."""
        if self._event.is_set():
            return True
        if timeout <= 0:
            await asyncio.sleep(0)
            return self._event.is_set()
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

