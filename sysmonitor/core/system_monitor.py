import psutil
import platform
import socket
import time
from typing import List, Tuple
from datetime import datetime, timezone

from ..models.snapshot import (
    Snapshot, SystemInfo, CPUInfo, MemoryInfo, DiskInfo, NetworkInterface, ProcessInfo
)
from ..utils.logging import get_logger

PRIME_DELAY = 0.1


class SystemMonitor:
    """Collects a full Snapshot from the local host with psutil."""

    def __init__(self, include_processes: bool = False, max_processes: int = 50):
        self.logger = get_logger(__name__)
        self.include_processes = include_processes
        self.max_processes = max_processes
        self._cpu_model = platform.processor() or platform.machine()
        self._primed = False

    def _prime(self):
        # psutil reports 0.0 on the first non-blocking call for every counter
        psutil.cpu_percent(interval=None, percpu=True)
        if self.include_processes:
            for proc in psutil.process_iter():
                try:
                    proc.cpu_percent(None)
                except (psutil.NoSuchProcess, psutil.AccessDenied):
                    continue
        self._primed = True

    def collect(self) -> Snapshot:
        if not self._primed:
            self._prime()
            time.sleep(PRIME_DELAY)

        now = datetime.now(timezone.utc)
        return Snapshot(
            system=self.get_system_info(now),
            cpu=self.get_cpu_info(),
            memory=self.get_memory_info(),
            disk=self.get_disk_info(),
            network=self.get_network_info(),
            processes=self.get_processes() if self.include_processes else (),
        )

    def get_system_info(self, now: datetime) -> SystemInfo:
        boot_time = datetime.fromtimestamp(psutil.boot_time(), tz=timezone.utc)

        return SystemInfo(
            hostname=socket.gethostname(),
            os=platform.system(),
            platform=platform.platform(terse=True),
            platform_version=platform.version(),
            architecture=platform.machine(),
            uptime=max(0.0, (now - boot_time).total_seconds()),
            process_count=len(psutil.pids()),
            boot_time=boot_time,
            timestamp=now,
        )

    def get_cpu_info(self) -> CPUInfo:
        per_core = psutil.cpu_percent(interval=None, percpu=True)
        usage = sum(per_core) / len(per_core) if per_core else 0.0

        load = psutil.getloadavg() if hasattr(psutil, "getloadavg") else (0.0, 0.0, 0.0)
        try:
            freq = psutil.cpu_freq()
        except (OSError, NotImplementedError):
            freq = None

        return CPUInfo(
            usage=usage,
            usage_per_core=tuple(per_core),
            load1=float(load[0]),
            load5=float(load[1]),
            load15=float(load[2]),
            model_name=self._cpu_model,
            cores=psutil.cpu_count(logical=False) or 0,
            logical_cores=psutil.cpu_count(logical=True) or 0,
            speed_mhz=float(freq.current) if freq else 0.0,
        )

    def get_memory_info(self) -> MemoryInfo:
        memory = psutil.virtual_memory()
        return MemoryInfo.from_total_available(
            total=memory.total,
            available=memory.available,
            free=memory.free,
            cached=getattr(memory, "cached", 0),
        )

    def get_disk_info(self) -> Tuple[DiskInfo, ...]:
        disks = []
        for partition in psutil.disk_partitions():
            try:
                usage = psutil.disk_usage(partition.mountpoint)
            except (PermissionError, OSError):
                continue

            disks.append(DiskInfo(
                device=partition.device,
                mountpoint=partition.mountpoint,
                fstype=partition.fstype,
                total=int(usage.total),
                used=int(usage.used),
                free=int(usage.free),
                used_percent=(usage.used / usage.total) * 100 if usage.total else 0.0,
            ))

        return tuple(disks)

    def get_network_info(self) -> Tuple[NetworkInterface, ...]:
        counters = psutil.net_io_counters(pernic=True)

        return tuple(
            NetworkInterface(
                name=name,
                bytes_sent=stat.bytes_sent,
                bytes_recv=stat.bytes_recv,
                packets_sent=stat.packets_sent,
                packets_recv=stat.packets_recv,
                errin=stat.errin,
                errout=stat.errout,
                dropin=stat.dropin,
                dropout=stat.dropout,
            )
            for name, stat in sorted(counters.items())
        )

    def get_processes(self) -> Tuple[ProcessInfo, ...]:
        rows: List[ProcessInfo] = []
        cpu_count = psutil.cpu_count(logical=True) or 1

        for proc in psutil.process_iter(["pid", "name", "status"]):
            try:
                info = proc.info
                rows.append(ProcessInfo(
                    pid=int(info["pid"]),
                    name=info.get("name") or "",
                    cpu_percent=proc.cpu_percent(interval=None) / cpu_count,
                    memory=int(proc.memory_info().rss),
                    status=info.get("status") or "unknown",
                ))
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue

        rows.sort(key=lambda p: p.cpu_percent, reverse=True)
        return tuple(rows[:self.max_processes])
