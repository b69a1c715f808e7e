from datetime import datetime, timedelta, timezone

import pytest

from sysmonitor.models.alert import AlertLevel, AlertRule
from sysmonitor.models.snapshot import (
    CPUInfo, DiskInfo, MemoryInfo, NetworkInterface, Snapshot, SystemInfo
)

GIB = 1024 ** 3
T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_snapshot(cpu=10.0, memory_available=12 * GIB, disk_percent=50.0, at=0.0,
                  network=None, process_count=200, degraded=False, disks=None):
    """Build a small but complete Snapshot taken ``at`` seconds after T0."""
    ts = T0 + timedelta(seconds=at)
    if network is None:
        network = [("eth0", 0, 0)]
    if disks is None:
        disks = [disk_percent]

    return Snapshot(
        system=SystemInfo(
            hostname="test-host",
            os="Linux",
            platform="test",
            platform_version="1",
            architecture="x86_64",
            uptime=3600.0 + at,
            process_count=process_count,
            boot_time=T0 - timedelta(hours=1),
            timestamp=ts,
        ),
        cpu=CPUInfo(usage=cpu, usage_per_core=(cpu, cpu), cores=1, logical_cores=2),
        memory=MemoryInfo.from_total_available(
            total=16 * GIB, available=memory_available, free=memory_available // 2
        ),
        disk=tuple(
            DiskInfo(device=f"/dev/sd{i}", mountpoint=f"/mnt/{i}", fstype="ext4",
                     total=100 * GIB, used=int(pct) * GIB, free=(100 - int(pct)) * GIB,
                     used_percent=pct)
            for i, pct in enumerate(disks)
        ),
        network=tuple(
            NetworkInterface(name=name, bytes_sent=sent, bytes_recv=recv)
            for name, sent, recv in network
        ),
        degraded=degraded,
    )


def make_rule(rule_id="cpu-high", metric="cpu", operator=">", threshold=80.0,
              duration=0.0, enabled=True, level=AlertLevel.WARNING):
    return AlertRule(id=rule_id, name=rule_id, metric=metric, operator=operator,
                     threshold=threshold, duration=duration, enabled=enabled, level=level)


@pytest.fixture
def snapshot():
    return make_snapshot()
