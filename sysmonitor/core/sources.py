import asyncio
import inspect
import platform
import random
import socket
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, Optional
from datetime import datetime, timedelta, timezone

from .exceptions import AcquisitionError
from ..models.snapshot import (
    Snapshot, SystemInfo, CPUInfo, MemoryInfo, DiskInfo, NetworkInterface, ProcessInfo
)
from ..utils.logging import get_logger

GIB = 1024 ** 3
MIB = 1024 ** 2

# Largest change any synthetic field may make between two consecutive snapshots.
DEFAULT_MAX_DELTAS: Dict[str, float] = {
    "cpu_percent": 5.0,
    "load": 0.25,
    "memory_percent": 2.0,
    "disk_percent": 0.05,
    "network_rate": 64 * 1024,
    "process_count": 3,
    "process_cpu_percent": 3.0,
    "process_memory": 8 * MIB,
}

MAX_NETWORK_RATE = 12.5 * MIB
SYNTHETIC_PROCESS_NAMES = ["chrome", "firefox", "node", "systemd", "bash", "vim", "code"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MetricSource(ABC):
    name = "source"

    @abstractmethod
    async def fetch(self) -> Snapshot:
        ...

    def close(self):
        pass


class LiveSource(MetricSource):
    """Wraps an external collector; every failure surfaces as AcquisitionError.

    The collector may be a plain callable (run on a dedicated worker thread)
    or a coroutine function. It must return a Snapshot or a mapping in the
    Snapshot.to_dict() shape.
    """

    name = "live"

    def __init__(self, collector: Callable[[], Any], timeout: Optional[float] = None):
        self.collector = collector
        self.timeout = timeout
        self.logger = get_logger(__name__)
        self._executor: Optional[ThreadPoolExecutor] = None

    async def fetch(self, timeout: Optional[float] = None) -> Snapshot:
        timeout = timeout if timeout is not None else self.timeout

        try:
            if inspect.iscoroutinefunction(self.collector):
                pending = self.collector()
            else:
                loop = asyncio.get_running_loop()
                pending = loop.run_in_executor(self._get_executor(), self.collector)

            result = await self._await(pending, timeout)
            if inspect.isawaitable(result):
                result = await self._await(result, timeout)
        except asyncio.TimeoutError:
            raise AcquisitionError(f"live collector timed out after {timeout:.2f}s")
        except AcquisitionError:
            raise
        except Exception as e:
            raise AcquisitionError(f"live collector failed: {e}") from e

        return self._coerce(result)

    async def _await(self, pending, timeout: Optional[float]):
        if timeout:
            return await asyncio.wait_for(pending, timeout)
        return await pending

    def _coerce(self, result: Any) -> Snapshot:
        if isinstance(result, Snapshot):
            return result

        if isinstance(result, Mapping):
            try:
                return Snapshot.from_dict(result)
            except (KeyError, TypeError, ValueError) as e:
                raise AcquisitionError(f"malformed response: {e!r}") from e

        raise AcquisitionError(f"malformed response: unexpected type {type(result).__name__}")

    def _get_executor(self) -> ThreadPoolExecutor:
        # A single worker: a hung collector makes later fetches time out
        # instead of piling up threads.
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="live-source")
        return self._executor

    def close(self):
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None


class SyntheticSource(MetricSource):
    """Generates plausible snapshots with bounded random walks.

    Every numeric field moves by at most ``max_deltas[...]`` from the previous
    synthetic snapshot and is clamped to its valid range, so fallback data
    changes smoothly. Network counters only ever grow.
    """

    name = "synthetic"

    def __init__(self, seed: Optional[int] = None, max_deltas: Optional[Dict[str, float]] = None,
                 include_processes: bool = False, max_processes: int = 20,
                 clock: Callable[[], datetime] = _utcnow, default_step: float = 2.0):
        self.max_deltas = dict(DEFAULT_MAX_DELTAS)
        if max_deltas:
            self.max_deltas.update(max_deltas)
        self.include_processes = include_processes
        self.max_processes = max_processes
        self.clock = clock
        self.default_step = default_step
        self.logger = get_logger(__name__)

        self._rng = random.Random(seed)
        self._last: Optional[Snapshot] = None
        self._rates: Dict[str, List[float]] = {}

    @property
    def last(self) -> Optional[Snapshot]:
        return self._last

    async def fetch(self) -> Snapshot:
        return self.generate()

    def reseed(self, snapshot: Snapshot):
        """Continue the walk from ``snapshot`` (normally the last live one)."""
        self._last = replace(snapshot, degraded=False)
        self._rates = {}
        self.logger.debug(f"Synthetic source reseeded from snapshot at {snapshot.timestamp.isoformat()}")

    def generate(self) -> Snapshot:
        now = self.clock()
        if self._last is None:
            snapshot = self._baseline(now)
        else:
            if now < self._last.timestamp:
                now = self._last.timestamp
            snapshot = self._step(self._last, now)

        self._last = snapshot
        return snapshot

    def _walk(self, value: float, delta: float, low: float, high: float) -> float:
        return min(high, max(low, value + self._rng.uniform(-delta, delta)))

    def _baseline(self, now: datetime) -> Snapshot:
        logical = 8
        cores = tuple(self._rng.uniform(5.0, 35.0) for _ in range(logical))
        boot_time = now - timedelta(days=3)

        memory_total = 16 * GIB
        memory = self._memory(memory_total, self._rng.uniform(35.0, 55.0))

        disk_total = 500 * 1000 ** 3
        disk = (self._disk("/dev/sda1", "/", "ext4", disk_total, self._rng.uniform(40.0, 70.0)),)

        network = (
            NetworkInterface(name="eth0", bytes_sent=0, bytes_recv=0),
            NetworkInterface(name="lo", bytes_sent=0, bytes_recv=0),
        )

        return Snapshot(
            system=SystemInfo(
                hostname=socket.gethostname(),
                os=platform.system(),
                platform="synthetic",
                platform_version=platform.release(),
                architecture=platform.machine(),
                uptime=(now - boot_time).total_seconds(),
                process_count=self._rng.randint(180, 320),
                boot_time=boot_time,
                timestamp=now,
            ),
            cpu=CPUInfo(
                usage=sum(cores) / logical,
                usage_per_core=cores,
                load1=self._rng.uniform(0.5, 2.0),
                load5=self._rng.uniform(0.5, 2.0),
                load15=self._rng.uniform(0.5, 2.0),
                model_name="Synthetic CPU",
                cores=logical // 2,
                logical_cores=logical,
                speed_mhz=2400.0,
                cache_size=8192,
            ),
            memory=memory,
            disk=disk,
            network=network,
            processes=self._baseline_processes() if self.include_processes else (),
        )

    def _step(self, last: Snapshot, now: datetime) -> Snapshot:
        d = self.max_deltas
        elapsed = (now - last.timestamp).total_seconds()
        dt = elapsed if elapsed > 0 else self.default_step

        per_core = last.cpu.usage_per_core or (last.cpu.usage,) * max(1, last.cpu.logical_cores)
        cores = tuple(self._walk(v, d["cpu_percent"], 0.0, 100.0) for v in per_core)
        # a reseeded live load may already exceed the nominal ceiling
        max_load = max(float(len(cores) * 2), last.cpu.load1, last.cpu.load5, last.cpu.load15)

        cpu = replace(
            last.cpu,
            usage=self._walk(last.cpu.usage, d["cpu_percent"], 0.0, 100.0),
            usage_per_core=cores,
            load1=self._walk(last.cpu.load1, d["load"], 0.0, max_load),
            load5=self._walk(last.cpu.load5, d["load"], 0.0, max_load),
            load15=self._walk(last.cpu.load15, d["load"], 0.0, max_load),
        )

        memory = self._memory(
            last.memory.total,
            self._walk(last.memory.used_percent, d["memory_percent"], 0.0, 100.0),
        )

        disk = tuple(
            self._disk(v.device, v.mountpoint, v.fstype, v.total,
                       self._walk(v.used_percent, d["disk_percent"], 0.0, 100.0))
            for v in last.disk
        )

        network = tuple(self._advance_interface(iface, dt) for iface in last.network)

        process_count = int(round(self._walk(
            last.system.process_count, d["process_count"], 1, 100000
        )))

        system = replace(
            last.system,
            uptime=last.system.uptime + max(0.0, elapsed),
            process_count=process_count,
            timestamp=now,
        )

        processes = last.processes
        if self.include_processes:
            processes = self._step_processes(last.processes) if last.processes else self._baseline_processes()

        return Snapshot(
            system=system,
            cpu=cpu,
            memory=memory,
            disk=disk,
            network=network,
            processes=processes,
        )

    def _memory(self, total: int, used_percent: float) -> MemoryInfo:
        used = int(total * used_percent / 100)
        available = total - used
        free = int(available * 0.6)
        return MemoryInfo(
            total=total,
            used=used,
            available=available,
            free=free,
            cached=available - free,
        )

    def _disk(self, device: str, mountpoint: str, fstype: str, total: int,
              used_percent: float) -> DiskInfo:
        used = int(total * used_percent / 100)
        return DiskInfo(
            device=device,
            mountpoint=mountpoint,
            fstype=fstype,
            total=total,
            used=used,
            free=total - used,
            used_percent=(used / total) * 100 if total else 0.0,
        )

    def _advance_interface(self, iface: NetworkInterface, dt: float) -> NetworkInterface:
        step = self.max_deltas["network_rate"]
        rates = self._rates.get(iface.name)
        if rates is None:
            base = 0.0 if iface.name == "lo" else self._rng.uniform(0.0, 4 * step)
            rates = [base, base * 4]
        else:
            rates = [self._walk(r, step, 0.0, MAX_NETWORK_RATE) for r in rates]
        self._rates[iface.name] = rates

        sent = int(rates[0] * dt)
        recv = int(rates[1] * dt)
        return replace(
            iface,
            bytes_sent=iface.bytes_sent + sent,
            bytes_recv=iface.bytes_recv + recv,
            packets_sent=iface.packets_sent + sent // 1200,
            packets_recv=iface.packets_recv + recv // 1200,
        )

    def _baseline_processes(self) -> tuple:
        rows = []
        for i in range(self.max_processes):
            name = SYNTHETIC_PROCESS_NAMES[i % len(SYNTHETIC_PROCESS_NAMES)]
            rows.append(ProcessInfo(
                pid=1000 + i * 7,
                name=name,
                cpu_percent=self._rng.uniform(0.0, 10.0),
                memory=self._rng.randint(20, 800) * MIB,
                status="running",
            ))
        return tuple(rows)

    def _step_processes(self, processes) -> tuple:
        d = self.max_deltas
        return tuple(
            replace(
                p,
                cpu_percent=self._walk(p.cpu_percent, d["process_cpu_percent"], 0.0, 100.0),
                memory=int(self._walk(p.memory, d["process_memory"], MIB, 64 * GIB)),
            )
            for p in processes
        )
