import pytest

from sysmonitor.core.sources import LiveSource
from sysmonitor.core.system_monitor import SystemMonitor
from sysmonitor.models.snapshot import Snapshot


def test_collect_real_host():
    """Smoke test against the machine running the tests."""
    snap = SystemMonitor().collect()

    assert isinstance(snap, Snapshot)
    assert snap.system.hostname
    assert 0.0 <= snap.cpu.usage <= 100.0
    assert snap.cpu.logical_cores >= 1
    assert snap.memory.total > 0
    assert snap.memory.used + snap.memory.available == snap.memory.total
    assert all(0.0 <= d.used_percent <= 100.0 for d in snap.disk)
    assert snap.processes == ()
    assert snap.degraded is False


def test_collect_processes_limited():
    snap = SystemMonitor(include_processes=True, max_processes=3).collect()
    assert len(snap.processes) <= 3
    cpu = [p.cpu_percent for p in snap.processes]
    assert cpu == sorted(cpu, reverse=True)


@pytest.mark.asyncio
async def test_live_source_wraps_system_monitor():
    source = LiveSource(SystemMonitor().collect, timeout=10)
    try:
        snap = await source.fetch()
    finally:
        source.close()
    assert snap.system.process_count > 0
