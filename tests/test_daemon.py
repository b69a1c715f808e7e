import asyncio

import pytest

from sysmonitor.core.daemon import MonitorDaemon
from sysmonitor.core.exceptions import NotReadyError
from sysmonitor.core.sources import MetricSource, SyntheticSource
from sysmonitor.models.alert import AlertFired, AlertResolved
from sysmonitor.utils.config import MonitorConfig, NotificationConfig

from conftest import make_rule, make_snapshot


class FakeLiveSource(MetricSource):
    def __init__(self, cpu=50.0):
        self.cpu = cpu
        self.calls = 0
        self.closed = False

    async def fetch(self):
        self.calls += 1
        return make_snapshot(cpu=self.cpu, at=self.calls)

    def close(self):
        self.closed = True


def make_daemon(live=None, **config):
    config.setdefault("rules", [make_rule(threshold=40)])
    daemon = MonitorDaemon(
        MonitorConfig(**config),
        live_source=live or FakeLiveSource(),
        synthetic_source=SyntheticSource(seed=1),
    )
    return daemon


def test_not_ready_before_first_refresh():
    daemon = make_daemon()
    with pytest.raises(NotReadyError):
        daemon.get_current_snapshot()
    assert daemon.get_status()["ready"] is False


@pytest.mark.asyncio
async def test_refresh_publishes_to_subscribers():
    daemon = make_daemon()
    snapshots, events = [], []
    daemon.on_snapshot(snapshots.append)
    daemon.on_alert_event(events.append)

    snap = await daemon.refresh()
    assert daemon.get_current_snapshot() is snap
    assert snapshots == [snap]
    assert [type(e) for e in events] == [AlertFired]
    assert [a.rule.id for a in daemon.get_active_alerts()] == ["cpu-high"]


@pytest.mark.asyncio
async def test_removing_active_rule_publishes_resolve():
    daemon = make_daemon()
    events = []
    daemon.on_alert_event(events.append)

    await daemon.refresh()
    assert await daemon.remove_rule("cpu-high") is True
    assert await daemon.remove_rule("cpu-high") is False

    assert [type(e) for e in events] == [AlertFired, AlertResolved]
    assert daemon.get_rules() == []
    assert daemon.config.rules == []


@pytest.mark.asyncio
async def test_add_and_set_rules_update_config():
    daemon = make_daemon()
    await daemon.add_rule(make_rule("mem", metric="memory", threshold=95))
    assert [r.id for r in daemon.config.rules] == ["cpu-high", "mem"]

    await daemon.set_rules([make_rule("disk", metric="disk", threshold=99)])
    assert [r.id for r in daemon.get_rules()] == ["disk"]


@pytest.mark.asyncio
async def test_update_rule_keeps_position_and_resolves():
    daemon = make_daemon(rules=[make_rule(threshold=40), make_rule("mem", metric="memory", threshold=95)])
    events = []
    daemon.on_alert_event(events.append)
    await daemon.refresh()

    resolved = await daemon.update_rule(make_rule(threshold=40, enabled=False))
    assert [type(e) for e in resolved] == [AlertResolved]
    assert [type(e) for e in events] == [AlertFired, AlertResolved]
    assert [r.id for r in daemon.get_rules()] == ["cpu-high", "mem"]
    assert daemon.get_rules()[0].enabled is False

    assert await daemon.update_rule(make_rule("missing")) is None


def test_set_interval_updates_poller_and_config():
    daemon = make_daemon()
    assert daemon.set_interval(100) == 500
    assert daemon.poller.interval_ms == 500
    assert daemon.config.poll_interval_ms == 500


@pytest.mark.asyncio
async def test_status_shape():
    daemon = make_daemon()
    await daemon.refresh()
    status = daemon.get_status()
    assert status["ready"] is True
    assert status["running"] is False
    assert status["poller"]["mode"] == "live"
    assert status["alerts"]["active_alerts"] == 1
    assert status["failure_threshold"] == 3


@pytest.mark.asyncio
async def test_start_without_auto_refresh_performs_single_tick():
    live = FakeLiveSource()
    daemon = make_daemon(live, enable_auto_refresh=False)

    daemon.start()
    await daemon.wait_closed()

    assert live.calls == 1
    assert daemon.running is False
    assert daemon.get_current_snapshot().cpu.usage == 50.0


@pytest.mark.asyncio
async def test_start_stop_idempotent():
    live = FakeLiveSource()
    daemon = make_daemon(live, poll_interval_ms=500)

    daemon.start()
    daemon.start()
    await asyncio.sleep(0.05)
    assert daemon.running
    daemon.stop()
    daemon.stop()
    await daemon.wait_closed()

    assert live.calls == 1
    assert daemon.running is False


@pytest.mark.asyncio
async def test_wait_closed_cancels_stuck_subscribers():
    daemon = make_daemon(poll_interval_ms=500, notifications=NotificationConfig(timeout=0.05))

    async def stuck(event):
        await asyncio.sleep(10)

    daemon.on_alert_event(stuck)
    daemon.start()
    await asyncio.sleep(0.05)
    daemon.stop()
    await asyncio.wait_for(daemon.wait_closed(), timeout=1)

    assert daemon.dispatcher.pending == 0


@pytest.mark.asyncio
async def test_run_until_stopped_closes_sources():
    live = FakeLiveSource()
    daemon = make_daemon(live, poll_interval_ms=500)

    task = asyncio.create_task(daemon.run())
    await asyncio.sleep(0.05)
    daemon.stop()
    await task

    assert live.calls >= 1
    assert live.closed


def test_notifier_not_subscribed_when_disabled():
    daemon = make_daemon()
    assert daemon.notifier.enabled is False
    assert daemon.dispatcher.alert_handlers == []
