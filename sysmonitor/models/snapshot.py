from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional, Tuple
from datetime import datetime, timezone


def clamp_percent(value: float) -> float:
    value = float(value)
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(100.0, value))


def _parse_ts(value: Any) -> datetime:
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, (int, float)):
        ts = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _bytes(value: Any) -> int:
    return max(0, int(value or 0))


@dataclass(frozen=True)
class SystemInfo:
    hostname: str
    os: str
    platform: str
    platform_version: str
    architecture: str
    uptime: float
    process_count: int
    boot_time: datetime
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hostname": self.hostname,
            "os": self.os,
            "platform": self.platform,
            "platform_version": self.platform_version,
            "architecture": self.architecture,
            "uptime": self.uptime,
            "process_count": self.process_count,
            "boot_time": self.boot_time.isoformat(),
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SystemInfo":
        return cls(
            hostname=str(data["hostname"]),
            os=str(data.get("os", "")),
            platform=str(data.get("platform", "")),
            platform_version=str(data.get("platform_version", "")),
            architecture=str(data.get("architecture", "")),
            uptime=max(0.0, float(data.get("uptime", 0.0))),
            process_count=max(0, int(data.get("process_count", 0))),
            boot_time=_parse_ts(data["boot_time"]),
            timestamp=_parse_ts(data["timestamp"]),
        )


@dataclass(frozen=True)
class CPUInfo:
    usage: float
    usage_per_core: Tuple[float, ...]
    load1: float = 0.0
    load5: float = 0.0
    load15: float = 0.0
    model_name: str = ""
    cores: int = 0
    logical_cores: int = 0
    speed_mhz: float = 0.0
    cache_size: int = 0

    def __post_init__(self):
        object.__setattr__(self, "usage", clamp_percent(self.usage))
        object.__setattr__(
            self, "usage_per_core", tuple(clamp_percent(v) for v in self.usage_per_core)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "usage": self.usage,
            "usage_per_core": list(self.usage_per_core),
            "load1": self.load1,
            "load5": self.load5,
            "load15": self.load15,
            "model_name": self.model_name,
            "cores": self.cores,
            "logical_cores": self.logical_cores,
            "speed_mhz": self.speed_mhz,
            "cache_size": self.cache_size,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CPUInfo":
        return cls(
            usage=float(data["usage"]),
            usage_per_core=tuple(float(v) for v in data.get("usage_per_core", ())),
            load1=float(data.get("load1", 0.0)),
            load5=float(data.get("load5", 0.0)),
            load15=float(data.get("load15", 0.0)),
            model_name=str(data.get("model_name", "")),
            cores=int(data.get("cores", 0)),
            logical_cores=int(data.get("logical_cores", 0)),
            speed_mhz=float(data.get("speed_mhz", 0.0)),
            cache_size=int(data.get("cache_size", 0)),
        )


@dataclass(frozen=True)
class MemoryInfo:
    total: int
    used: int
    available: int
    free: int
    cached: int = 0
    used_percent: float = field(init=False)

    def __post_init__(self):
        pct = (self.used / self.total) * 100 if self.total > 0 else 0.0
        object.__setattr__(self, "used_percent", clamp_percent(pct))

    @classmethod
    def from_total_available(cls, total: int, available: int, free: int,
                             cached: int = 0) -> "MemoryInfo":
        total = _bytes(total)
        available = min(_bytes(available), total)
        return cls(
            total=total,
            used=total - available,
            available=available,
            free=min(_bytes(free), available),
            cached=_bytes(cached),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "used": self.used,
            "available": self.available,
            "free": self.free,
            "cached": self.cached,
            "used_percent": self.used_percent,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MemoryInfo":
        total = _bytes(data["total"])
        available = data.get("available")
        if available is None:
            available = total - _bytes(data["used"])
        # used is always re-derived so that used + available == total
        return cls.from_total_available(
            total=total,
            available=available,
            free=data.get("free", 0),
            cached=data.get("cached", 0),
        )


@dataclass(frozen=True)
class DiskInfo:
    device: str
    mountpoint: str
    fstype: str
    total: int
    used: int
    free: int
    used_percent: float

    def __post_init__(self):
        object.__setattr__(self, "used_percent", clamp_percent(self.used_percent))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device": self.device,
            "mountpoint": self.mountpoint,
            "fstype": self.fstype,
            "total": self.total,
            "used": self.used,
            "free": self.free,
            "used_percent": self.used_percent,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DiskInfo":
        total = _bytes(data["total"])
        used = _bytes(data["used"])
        pct = data.get("used_percent")
        if pct is None:
            pct = (used / total) * 100 if total else 0.0
        return cls(
            device=str(data.get("device", "")),
            mountpoint=str(data["mountpoint"]),
            fstype=str(data.get("fstype", "")),
            total=total,
            used=used,
            free=_bytes(data.get("free", max(0, total - used))),
            used_percent=float(pct),
        )


@dataclass(frozen=True)
class NetworkInterface:
    name: str
    bytes_sent: int
    bytes_recv: int
    packets_sent: int = 0
    packets_recv: int = 0
    errin: int = 0
    errout: int = 0
    dropin: int = 0
    dropout: int = 0

    @property
    def total_bytes(self) -> int:
        return self.bytes_sent + self.bytes_recv

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "bytes_sent": self.bytes_sent,
            "bytes_recv": self.bytes_recv,
            "packets_sent": self.packets_sent,
            "packets_recv": self.packets_recv,
            "errin": self.errin,
            "errout": self.errout,
            "dropin": self.dropin,
            "dropout": self.dropout,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NetworkInterface":
        return cls(
            name=str(data["name"]),
            bytes_sent=_bytes(data["bytes_sent"]),
            bytes_recv=_bytes(data["bytes_recv"]),
            packets_sent=_bytes(data.get("packets_sent")),
            packets_recv=_bytes(data.get("packets_recv")),
            errin=_bytes(data.get("errin")),
            errout=_bytes(data.get("errout")),
            dropin=_bytes(data.get("dropin")),
            dropout=_bytes(data.get("dropout")),
        )


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    name: str
    cpu_percent: float
    memory: int
    status: str

    def __post_init__(self):
        object.__setattr__(self, "cpu_percent", clamp_percent(self.cpu_percent))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pid": self.pid,
            "name": self.name,
            "cpu_percent": self.cpu_percent,
            "memory": self.memory,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProcessInfo":
        return cls(
            pid=int(data["pid"]),
            name=str(data.get("name", "")),
            cpu_percent=float(data.get("cpu_percent", 0.0)),
            memory=_bytes(data.get("memory")),
            status=str(data.get("status", "unknown")),
        )


@dataclass(frozen=True)
class Snapshot:
    """One consistent set of system metrics captured at a single instant.

    Instances are immutable; producers build a new one per acquisition and
    consumers may hold on to them freely.
    """
    system: SystemInfo
    cpu: CPUInfo
    memory: MemoryInfo
    disk: Tuple[DiskInfo, ...] = ()
    network: Tuple[NetworkInterface, ...] = ()
    processes: Tuple[ProcessInfo, ...] = ()
    degraded: bool = False

    @property
    def timestamp(self) -> datetime:
        return self.system.timestamp

    def with_timestamp(self, timestamp: datetime) -> "Snapshot":
        return replace(self, system=replace(self.system, timestamp=timestamp))

    def interface(self, name: str) -> Optional[NetworkInterface]:
        for iface in self.network:
            if iface.name == name:
                return iface
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "degraded": self.degraded,
            "system": self.system.to_dict(),
            "cpu": self.cpu.to_dict(),
            "memory": self.memory.to_dict(),
            "disk": [d.to_dict() for d in self.disk],
            "network": [n.to_dict() for n in self.network],
            "processes": [p.to_dict() for p in self.processes],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Snapshot":
        return cls(
            system=SystemInfo.from_dict(data["system"]),
            cpu=CPUInfo.from_dict(data["cpu"]),
            memory=MemoryInfo.from_dict(data["memory"]),
            disk=tuple(DiskInfo.from_dict(d) for d in data.get("disk") or ()),
            network=tuple(NetworkInterface.from_dict(n) for n in data.get("network") or ()),
            processes=tuple(ProcessInfo.from_dict(p) for p in data.get("processes") or ()),
            degraded=bool(data.get("degraded", False)),
        )
