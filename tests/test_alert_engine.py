import logging

from sysmonitor.core.alert_engine import AlertEngine, metric_value, network_throughput
from sysmonitor.models.alert import (
    AlertFired, AlertLevel, AlertResolved, MetricKey, Operator, format_alert_message
)

from conftest import GIB, make_rule, make_snapshot


def test_operator_parse_and_apply():
    assert Operator.parse("==") is Operator.EQ
    assert Operator.parse(" >= ") is Operator.GE
    assert Operator.parse("=>") is None
    assert Operator.GT.apply(81, 80)
    assert not Operator.GT.apply(80, 80)
    assert Operator.NE.apply(1, 2)


def test_metric_key_aliases():
    assert MetricKey.parse("cpu.usage") is MetricKey.CPU
    assert MetricKey.parse("MEMORY") is MetricKey.MEMORY
    assert MetricKey.parse("gpu") is None


def test_zero_duration_fires_on_first_breach_exactly_once():
    engine = AlertEngine([make_rule(threshold=80, duration=0)])

    events = engine.evaluate(make_snapshot(cpu=95, at=0))
    assert len(events) == 1
    assert isinstance(events[0], AlertFired)
    assert events[0].value == 95
    assert "greater than" in events[0].message

    assert engine.evaluate(make_snapshot(cpu=97, at=2)) == []
    assert engine.get_state("cpu-high").active


def test_duration_not_sustained_does_not_fire():
    """A breach shorter than the rule duration never fires and is forgotten."""
    engine = AlertEngine([make_rule(threshold=80, duration=10)])

    assert engine.evaluate(make_snapshot(cpu=95, at=0)) == []
    assert engine.evaluate(make_snapshot(cpu=95, at=4)) == []
    assert engine.evaluate(make_snapshot(cpu=50, at=6)) == []
    assert engine.get_state("cpu-high").first_breach is None

    assert engine.evaluate(make_snapshot(cpu=95, at=8)) == []
    assert engine.evaluate(make_snapshot(cpu=95, at=16)) == []
    events = engine.evaluate(make_snapshot(cpu=95, at=18))
    assert [type(e) for e in events] == [AlertFired]


def test_duration_uses_snapshot_timestamps():
    engine = AlertEngine([make_rule(threshold=80, duration=10)])
    engine.evaluate(make_snapshot(cpu=95, at=0))
    events = engine.evaluate(make_snapshot(cpu=95, at=10))
    assert len(events) == 1
    assert events[0].timestamp == make_snapshot(at=10).timestamp


def test_resolve_emitted_once():
    engine = AlertEngine([make_rule(threshold=80)])
    engine.evaluate(make_snapshot(cpu=95, at=0))

    events = engine.evaluate(make_snapshot(cpu=20, at=2))
    assert len(events) == 1
    assert isinstance(events[0], AlertResolved)
    assert engine.evaluate(make_snapshot(cpu=20, at=4)) == []
    assert not engine.get_state("cpu-high").active


def test_less_than_rule():
    engine = AlertEngine([make_rule("mem-low", metric="memory", operator="<", threshold=10)])
    # 15 of 16 GiB available -> 6.25 % used
    events = engine.evaluate(make_snapshot(memory_available=15 * GIB))
    assert len(events) == 1 and events[0].value == 6.25


def test_disk_uses_fullest_volume():
    snap = make_snapshot(disks=[20.0, 97.0, 40.0])
    assert metric_value(MetricKey.DISK, snap) == 97.0
    assert metric_value(MetricKey.DISK, make_snapshot(disks=[])) is None


def test_unknown_metric_never_fires_and_is_logged_once(caplog):
    caplog.set_level(logging.WARNING)
    engine = AlertEngine([make_rule("gpu", metric="gpu", threshold=0)])
    engine.set_rules(engine.rules)

    for i in range(3):
        assert engine.evaluate(make_snapshot(cpu=99, at=i)) == []

    warnings = [r for r in caplog.records if "gpu" in r.getMessage()]
    assert len(warnings) == 1
    assert engine.get_statistics()["invalid_rules"] == 1


def test_unknown_operator_never_fires():
    engine = AlertEngine([make_rule(operator="=>", threshold=0)])
    assert engine.evaluate(make_snapshot(cpu=99)) == []


def test_network_rate_needs_previous_snapshot():
    rule = make_rule("net", metric="network", threshold=1000)
    engine = AlertEngine([rule])

    assert engine.evaluate(make_snapshot(network=[("eth0", 0, 0)], at=0)) == []
    events = engine.evaluate(make_snapshot(network=[("eth0", 5000, 5000)], at=2))
    assert len(events) == 1
    assert events[0].value == 5000.0


def test_network_throughput_only_counts_common_interfaces():
    prev = make_snapshot(network=[("eth0", 0, 0), ("wlan0", 0, 0)], at=0)
    cur = make_snapshot(network=[("eth0", 100, 100), ("docker0", 10 ** 9, 0)], at=2)
    assert network_throughput(prev, cur) == 100.0

    disjoint = make_snapshot(network=[("tun0", 10, 10)], at=4)
    assert network_throughput(cur, disjoint) is None
    assert network_throughput(None, cur) is None
    assert network_throughput(cur, cur) is None


def test_network_counter_reset_counts_as_zero():
    prev = make_snapshot(network=[("eth0", 5000, 5000)], at=0)
    cur = make_snapshot(network=[("eth0", 10, 10)], at=1)
    assert network_throughput(prev, cur) == 0.0


def test_no_network_rate_between_live_and_synthetic():
    live = make_snapshot(network=[("eth0", 0, 0)], at=0)
    synthetic = make_snapshot(network=[("eth0", 10 ** 9, 10 ** 9)], at=2, degraded=True)
    recovered = make_snapshot(network=[("eth0", 100, 100)], at=4)

    assert network_throughput(live, synthetic) is None
    assert network_throughput(synthetic, recovered) is None

    stale = make_snapshot(network=[("eth0", 0, 0)], at=2, degraded=True)
    later = make_snapshot(network=[("eth0", 200, 200)], at=4, degraded=True)
    assert network_throughput(stale, later) == 200.0


def test_events_follow_rule_order():
    rules = [
        make_rule("b-rule", threshold=50),
        make_rule("a-rule", metric="memory", threshold=10),
    ]
    engine = AlertEngine(rules)
    events = engine.evaluate(make_snapshot(cpu=90, memory_available=2 * GIB))
    assert [e.rule.id for e in events] == ["b-rule", "a-rule"]


def test_removing_active_rule_resolves_it():
    engine = AlertEngine([make_rule(threshold=80)])
    engine.evaluate(make_snapshot(cpu=95))

    events = engine.remove_rule("cpu-high")
    assert len(events) == 1
    assert isinstance(events[0], AlertResolved)
    assert engine.rules == []
    assert engine.remove_rule("cpu-high") == []


def test_disabling_active_rule_resolves_it():
    engine = AlertEngine([make_rule(threshold=80)])
    engine.evaluate(make_snapshot(cpu=95))

    events = engine.set_rules([make_rule(threshold=80, enabled=False)])
    assert [type(e) for e in events] == [AlertResolved]
    assert engine.evaluate(make_snapshot(cpu=99, at=2)) == []


def test_replacing_rules_keeps_active_state():
    engine = AlertEngine([make_rule(threshold=80)])
    engine.evaluate(make_snapshot(cpu=95))

    assert engine.set_rules([make_rule(threshold=85)]) == []
    assert engine.get_state("cpu-high").active


def test_add_rule_replaces_same_id():
    engine = AlertEngine([make_rule(threshold=80)])
    engine.add_rule(make_rule(threshold=20))
    assert len(engine.rules) == 1
    assert engine.rules[0].threshold == 20

    engine.add_rule(make_rule("mem", metric="memory"))
    engine.add_rule(make_rule(threshold=30))
    assert [r.id for r in engine.rules] == ["cpu-high", "mem"]
    assert engine.rules[0].threshold == 30


def test_active_alerts_history_and_statistics():
    engine = AlertEngine([
        make_rule(threshold=80, level=AlertLevel.CRITICAL),
        make_rule("mem", metric="memory", threshold=99),
    ], history_size=2)

    engine.evaluate(make_snapshot(cpu=95, at=0))
    engine.evaluate(make_snapshot(cpu=10, at=1))
    engine.evaluate(make_snapshot(cpu=95, at=2))

    active = engine.get_active_alerts()
    assert [a.rule.id for a in active] == ["cpu-high"]
    assert len(engine.get_alert_history()) == 2
    assert len(engine.get_alert_history(limit=1)) == 1

    stats = engine.get_statistics()
    assert stats["total_rules"] == 2
    assert stats["active_alerts"] == 1
    assert stats["critical_alerts"] == 1
    assert stats["warning_alerts"] == 0


def test_format_alert_message():
    rule = make_rule(threshold=80)
    assert format_alert_message(rule, 91.234) == "cpu-high: current value 91.23 greater than threshold 80.00"
    assert format_alert_message(rule, None, resolved=True) == "cpu-high: resolved"


def test_less_than_rule_resolves_exactly_once():
    engine = AlertEngine([make_rule("cpu-idle", metric="cpu.usage", operator="<", threshold=20)])

    assert [type(e) for e in engine.evaluate(make_snapshot(cpu=5, at=0))] == [AlertFired]
    assert [type(e) for e in engine.evaluate(make_snapshot(cpu=50, at=2))] == [AlertResolved]
    for i in range(3, 6):
        assert engine.evaluate(make_snapshot(cpu=60, at=i)) == []


def test_short_breach_clears_pending_state():
    engine = AlertEngine([make_rule(metric="cpu.usage", threshold=90, duration=10)])
    events = []
    for at, cpu in [(0, 95), (5, 95), (6, 50)]:
        events += engine.evaluate(make_snapshot(cpu=cpu, at=at))

    assert events == []
    assert engine.get_state("cpu-high").first_breach is None
