import asyncio
import inspect
from functools import partial
from typing import Callable, List, Optional, Sequence, Set

from ..models.alert import AlertEvent
from ..models.snapshot import Snapshot
from ..utils.logging import get_logger


class Dispatcher:
    """Fans snapshots and alert events out to subscribers.

    Plain callables run inline, in subscription order. Coroutine handlers are
    started as background tasks so a slow subscriber (a webhook, say) never
    delays the next poll; ``drain()`` waits for the ones still running.
    A failing handler is logged and does not prevent the others from running.
    """

    def __init__(self):
        self.logger = get_logger(__name__)
        self.snapshot_handlers: List[Callable] = []
        self.alert_handlers: List[Callable] = []
        self._pending: Set[asyncio.Future] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def on_snapshot(self, handler: Callable) -> Callable[[], None]:
        self.snapshot_handlers.append(handler)
        return lambda: self._remove(self.snapshot_handlers, handler)

    def on_alert_event(self, handler: Callable) -> Callable[[], None]:
        self.alert_handlers.append(handler)
        return lambda: self._remove(self.alert_handlers, handler)

    def _remove(self, handlers: List[Callable], handler: Callable):
        if handler in handlers:
            handlers.remove(handler)

    async def publish(self, snapshot: Snapshot, events: Sequence[AlertEvent] = ()):
        for handler in list(self.snapshot_handlers):
            self._call(handler, snapshot)

        for event in events:
            await self.publish_event(event)

    async def publish_event(self, event: AlertEvent):
        for handler in list(self.alert_handlers):
            self._call(handler, event)

    def _call(self, handler: Callable, payload):
        try:
            result = handler(payload)
        except Exception as e:
            self._log_failure(handler, e)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(partial(self._finished, handler))

    def _finished(self, handler: Callable, task: asyncio.Future):
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._log_failure(handler, error)

    def _log_failure(self, handler: Callable, error: BaseException):
        self.logger.error(f"Subscriber {getattr(handler, '__name__', handler)!r} failed: {error}")

    async def drain(self, timeout: Optional[float] = None):
        """Wait for running subscriber tasks; cancel those still running after ``timeout``."""
        if not self._pending:
            return

        _, still_running = await asyncio.wait(set(self._pending), timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            self.logger.warning(f"Cancelled {len(still_running)} subscriber task(s) still running")
            await asyncio.gather(*still_running, return_exceptions=True)
