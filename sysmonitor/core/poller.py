import asyncio
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Optional
from datetime import datetime
from enum import Enum

from .alert_engine import AlertEngine
from .dispatcher import Dispatcher
from .exceptions import AcquisitionError
from .snapshot_cache import SnapshotCache
from .sources import MetricSource
from ..models.snapshot import Snapshot
from ..utils.config import (
    DEFAULT_INTERVAL_MS, DEFAULT_FAILURE_THRESHOLD, DEFAULT_PROBE_INTERVAL,
    DEFAULT_TIMEOUT_RATIO, clamp_interval_ms, clamp_timeout_ratio
)
from ..utils.logging import get_logger

COUNTER_FIELDS = ("bytes_sent", "bytes_recv", "packets_sent", "packets_recv")


class PollerMode(Enum):
    LIVE = "live"
    FALLBACK = "fallback"


@dataclass
class PollerState:
    mode: PollerMode = PollerMode.LIVE
    consecutive_failures: int = 0
    fallback_ticks: int = 0
    last_live_success: Optional[datetime] = None
    ticks: int = 0
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["mode"] = self.mode.value
        data["last_live_success"] = (
            self.last_live_success.isoformat() if self.last_live_success else None
        )
        return data


class Poller:
    """Periodic acquisition loop with live/fallback switching.

    Each tick acquires exactly one snapshot, stores it in the cache, runs the
    alert engine on it and publishes both through the dispatcher, in that
    order. ``stop()`` takes effect before the next tick; a fetch already in
    flight is bounded by ``fetch_timeout``.
    """

    def __init__(self, live: MetricSource, synthetic: MetricSource,
                 cache: SnapshotCache, engine: AlertEngine,
                 dispatcher: Optional[Dispatcher] = None,
                 interval_ms: int = DEFAULT_INTERVAL_MS,
                 failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
                 probe_interval: int = DEFAULT_PROBE_INTERVAL,
                 timeout_ratio: float = DEFAULT_TIMEOUT_RATIO):
        self.logger = get_logger(__name__)

        self.live = live
        self.synthetic = synthetic
        self.cache = cache
        self.engine = engine
        self.dispatcher = dispatcher

        self.failure_threshold = max(1, int(failure_threshold))
        self.probe_interval = max(1, int(probe_interval))
        self.timeout_ratio = clamp_timeout_ratio(timeout_ratio)
        self._interval_ms = clamp_interval_ms(interval_ms)

        self._state = PollerState()
        self._last_live: Optional[Snapshot] = None
        self._last_timestamp: Optional[datetime] = None
        self._counter_offsets: Dict[str, Dict[str, int]] = {}

        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._tick_lock = asyncio.Lock()

    @property
    def state(self) -> PollerState:
        return replace(self._state)

    @property
    def mode(self) -> PollerMode:
        return self._state.mode

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @property
    def interval(self) -> float:
        return self._interval_ms / 1000

    @property
    def fetch_timeout(self) -> float:
        return self.interval * self.timeout_ratio

    @property
    def running(self) -> bool:
        return (
            self._task is not None
            and not self._task.done()
            and not self._stop_event.is_set()
        )

    def set_interval(self, interval_ms) -> int:
        self._interval_ms = clamp_interval_ms(interval_ms)
        self.logger.info(f"Poll interval set to {self._interval_ms} ms")
        return self._interval_ms

    def start(self):
        if self.running:
            return

        loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._task = loop.create_task(self._run(self._stop_event))
        self.logger.info(f"Poller started (interval {self._interval_ms} ms)")

    def stop(self):
        if not self.running:
            return

        self._stop_event.set()
        self.logger.info("Poller stopping")

    async def wait_closed(self):
        if self._task is not None:
            await self._task

    async def _run(self, stop_event: asyncio.Event):
        loop = asyncio.get_running_loop()

        while not stop_event.is_set():
            started = loop.time()
            try:
                await self.tick()
            except Exception as e:
                self.logger.error(f"Error in polling cycle: {e}")

            delay = max(0.0, self.interval - (loop.time() - started))
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        self.logger.info("Poller stopped")

    async def tick(self) -> Snapshot:
        async with self._tick_lock:
            snapshot = await self._acquire()
            snapshot = self._stamp(snapshot)

            self.cache.update(snapshot)
            events = self.engine.evaluate(snapshot)

            if self.dispatcher is not None:
                await self.dispatcher.publish(snapshot, events)

            self.logger.debug(
                f"Tick {self._state.ticks} ({self._state.mode.value}): {len(events)} alert event(s)"
            )
            return snapshot

    async def _acquire(self) -> Snapshot:
        state = self._state
        state.ticks += 1

        if state.mode is PollerMode.LIVE:
            try:
                snapshot = await self._fetch_live()
            except AcquisitionError as e:
                state.consecutive_failures += 1
                state.last_error = e.reason
                self.logger.warning(
                    f"Live fetch failed ({state.consecutive_failures}/{self.failure_threshold}): {e.reason}"
                )
                if state.consecutive_failures >= self.failure_threshold:
                    self._enter_fallback()
                    return await self._fetch_synthetic()
                return await self._stale_snapshot()

            snapshot = self._continue_counters(snapshot)
            state.consecutive_failures = 0
            state.last_error = None
            state.last_live_success = snapshot.timestamp
            self._last_live = snapshot
            return snapshot

        state.fallback_ticks += 1
        if state.fallback_ticks % self.probe_interval == 0:
            try:
                snapshot = await self._fetch_live()
            except AcquisitionError as e:
                state.last_error = e.reason
                self.logger.info(f"Live probe failed, staying in fallback: {e.reason}")
            else:
                snapshot = self._continue_counters(snapshot, self.cache.peek())
                self._enter_live(snapshot)
                return snapshot

        return await self._fetch_synthetic()

    async def _fetch_live(self) -> Snapshot:
        timeout = self.fetch_timeout
        try:
            snapshot = await asyncio.wait_for(self.live.fetch(), timeout=timeout)
        except AcquisitionError:
            raise
        except asyncio.TimeoutError:
            raise AcquisitionError(f"live fetch timed out after {timeout:.2f}s")
        except Exception as e:
            raise AcquisitionError(f"live fetch failed: {e}") from e
        return replace(snapshot, degraded=False)

    async def _fetch_synthetic(self) -> Snapshot:
        snapshot = await self.synthetic.fetch()
        return replace(snapshot, degraded=True)

    async def _stale_snapshot(self) -> Snapshot:
        # below the failure threshold the last good snapshot is republished
        previous = self.cache.peek()
        if previous is None:
            return await self._fetch_synthetic()
        return replace(previous, degraded=True)

    def _enter_fallback(self):
        state = self._state
        state.mode = PollerMode.FALLBACK
        state.fallback_ticks = 0

        reseed = getattr(self.synthetic, "reseed", None)
        if self._last_live is not None and reseed is not None:
            reseed(self._last_live)

        self.logger.warning(
            f"Live source failed {state.consecutive_failures} times in a row, switching to synthetic data"
        )

    def _enter_live(self, snapshot: Snapshot):
        state = self._state
        state.mode = PollerMode.LIVE
        state.consecutive_failures = 0
        state.fallback_ticks = 0
        state.last_error = None
        state.last_live_success = snapshot.timestamp
        self._last_live = snapshot
        self.logger.info("Live source recovered, leaving fallback mode")

    def _continue_counters(self, snapshot: Snapshot, published: Optional[Snapshot] = None) -> Snapshot:
        """Offset live interface counters so they never drop below published ones.

        Synthetic counters keep growing from the last live values while in
        fallback; on recovery the shortfall becomes a per-interface offset
        applied to every later live snapshot. Offsets of interfaces that
        disappear are dropped.
        """
        offsets: Dict[str, Dict[str, int]] = {}
        network = []

        for iface in snapshot.network:
            offset = dict(self._counter_offsets.get(iface.name, {}))
            previous = published.interface(iface.name) if published is not None else None
            if previous is not None:
                for name in COUNTER_FIELDS:
                    shortfall = getattr(previous, name) - (getattr(iface, name) + offset.get(name, 0))
                    if shortfall > 0:
                        offset[name] = offset.get(name, 0) + shortfall

            if offset:
                offsets[iface.name] = offset
                iface = replace(iface, **{name: getattr(iface, name) + value for name, value in offset.items()})
            network.append(iface)

        if offsets and offsets != self._counter_offsets:
            self.logger.debug(f"Network counter offsets after fallback: {offsets}")
        self._counter_offsets = offsets

        if not offsets:
            return snapshot
        return replace(snapshot, network=tuple(network))

    def _stamp(self, snapshot: Snapshot) -> Snapshot:
        if self._last_timestamp is not None and snapshot.timestamp < self._last_timestamp:
            snapshot = snapshot.with_timestamp(self._last_timestamp)
        self._last_timestamp = snapshot.timestamp
        return snapshot

    def close(self):
        self.stop()
        self.live.close()
        self.synthetic.close()
