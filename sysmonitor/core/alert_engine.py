import threading
from collections import OrderedDict, deque
from typing import Any, Deque, Dict, Iterable, List, Optional, Set
from datetime import datetime, timezone

from ..models.alert import (
    AlertEvent, AlertFired, AlertResolved, AlertRule, AlertState, AlertStatus, MetricKey,
    format_alert_message
)
from ..models.snapshot import Snapshot
from ..utils.logging import get_logger


def network_throughput(previous: Optional[Snapshot], current: Snapshot) -> Optional[float]:
    """Aggregate bytes/s over interfaces present in both snapshots.

    Returns None when no rate can be computed (no previous snapshot, no
    elapsed time, or no interface in common). Counters of live and
    synthetic snapshots are unrelated, so a pair that crosses between the
    two is not a valid sample either.
    """
    if previous is None or previous.degraded != current.degraded:
        return None

    elapsed = (current.timestamp - previous.timestamp).total_seconds()
    if elapsed <= 0:
        return None

    before = {iface.name: iface for iface in previous.network}
    matched = False
    total = 0
    for iface in current.network:
        prev = before.get(iface.name)
        if prev is None:
            continue
        matched = True
        # counter resets count as zero traffic
        total += max(0, iface.bytes_sent - prev.bytes_sent)
        total += max(0, iface.bytes_recv - prev.bytes_recv)

    if not matched:
        return None
    return total / elapsed


def metric_value(metric: MetricKey, snapshot: Snapshot,
                 previous: Optional[Snapshot] = None) -> Optional[float]:
    if metric is MetricKey.CPU:
        return snapshot.cpu.usage
    if metric is MetricKey.MEMORY:
        return snapshot.memory.used_percent
    if metric is MetricKey.DISK:
        if not snapshot.disk:
            return None
        return max(d.used_percent for d in snapshot.disk)
    if metric is MetricKey.NETWORK:
        return network_throughput(previous, snapshot)
    if metric is MetricKey.PROCESSES:
        return float(snapshot.system.process_count)
    return None


class AlertEngine:
    def __init__(self, rules: Iterable[AlertRule] = (), history_size: int = 500):
        self.logger = get_logger(__name__)

        self._lock = threading.RLock()
        self._rules: "OrderedDict[str, AlertRule]" = OrderedDict()
        self._states: Dict[str, AlertState] = {}
        self._reported_invalid: Set[str] = set()
        self._previous: Optional[Snapshot] = None

        self.history: Deque[AlertEvent] = deque(maxlen=max(1, history_size))

        if rules:
            self.set_rules(rules)

    @property
    def rules(self) -> List[AlertRule]:
        with self._lock:
            return list(self._rules.values())

    def get_state(self, rule_id: str) -> Optional[AlertState]:
        with self._lock:
            return self._states.get(rule_id)

    def set_rules(self, rules: Iterable[AlertRule], now: Optional[datetime] = None) -> List[AlertEvent]:
        """Replace the rule set.

        Rules that disappear or become disabled while active are resolved
        once; the returned events should be published like any other.
        """
        now = now or datetime.now(timezone.utc)
        new_rules: "OrderedDict[str, AlertRule]" = OrderedDict()
        for rule in rules:
            if rule.id in new_rules:
                self.logger.warning(f"Duplicate alert rule id {rule.id}, keeping the last definition")
            new_rules[rule.id] = rule

        events: List[AlertEvent] = []
        with self._lock:
            for rule_id, state in self._states.items():
                replacement = new_rules.get(rule_id)
                if state.active and (replacement is None or not replacement.enabled):
                    old_rule = self._rules[rule_id]
                    events.append(AlertResolved(
                        rule=old_rule,
                        value=state.last_value,
                        timestamp=now,
                        message=format_alert_message(old_rule, state.last_value, resolved=True),
                    ))
                    self.logger.info(f"Alert resolved (rule removed or disabled): {old_rule.name}")

            states: Dict[str, AlertState] = {}
            for rule_id, rule in new_rules.items():
                state = self._states.get(rule_id)
                if state is None or not rule.enabled:
                    state = AlertState(rule_id=rule_id)
                states[rule_id] = state

                if self._rules.get(rule_id) != rule:
                    self._reported_invalid.discard(rule_id)
                self._validate(rule)

            self._rules = new_rules
            self._states = states
            self._reported_invalid &= set(new_rules)
            self.history.extend(events)

        return events

    def add_rule(self, rule: AlertRule) -> List[AlertEvent]:
        with self._lock:
            rules = [rule if r.id == rule.id else r for r in self._rules.values()]
            if rule.id not in self._rules:
                rules.append(rule)
            return self.set_rules(rules)

    def remove_rule(self, rule_id: str) -> List[AlertEvent]:
        with self._lock:
            if rule_id not in self._rules:
                return []
            return self.set_rules(r for r in self._rules.values() if r.id != rule_id)

    def evaluate(self, snapshot: Snapshot) -> List[AlertEvent]:
        now = snapshot.timestamp
        events: List[AlertEvent] = []

        with self._lock:
            previous = self._previous
            for rule in self._rules.values():
                if not rule.enabled:
                    continue
                event = self._evaluate_rule(rule, snapshot, previous, now)
                if event is not None:
                    events.append(event)

            self._previous = snapshot
            self.history.extend(events)

        return events

    def _evaluate_rule(self, rule: AlertRule, snapshot: Snapshot,
                       previous: Optional[Snapshot], now: datetime) -> Optional[AlertEvent]:
        metric = rule.metric_key
        comparison = rule.comparison
        if metric is None or comparison is None:
            return None

        value = metric_value(metric, snapshot, previous)
        if value is None:
            return None

        state = self._states.setdefault(rule.id, AlertState(rule_id=rule.id))
        state.last_value = value
        breached = comparison.apply(value, rule.threshold)

        if breached:
            if state.active:
                return None

            if state.first_breach is None:
                state.first_breach = now

            if (now - state.first_breach).total_seconds() >= rule.duration:
                state.status = AlertStatus.ACTIVE
                state.last_fired = now
                message = format_alert_message(rule, value)
                self.logger.info(f"Alert fired: {message}")
                return AlertFired(rule=rule, value=value, timestamp=now, message=message)
            return None

        if state.active:
            state.reset()
            message = format_alert_message(rule, value, resolved=True)
            self.logger.info(f"Alert resolved: {message}")
            return AlertResolved(rule=rule, value=value, timestamp=now, message=message)

        state.first_breach = None
        return None

    def _validate(self, rule: AlertRule):
        problem = None
        if rule.metric_key is None:
            problem = f"unknown metric key '{rule.metric}'"
        elif rule.comparison is None:
            problem = f"unknown operator '{rule.operator}'"

        if problem and rule.id not in self._reported_invalid:
            self._reported_invalid.add(rule.id)
            self.logger.warning(f"Alert rule {rule.id} ({rule.name}) has {problem}; it will never fire")

    def get_active_alerts(self) -> List[AlertFired]:
        with self._lock:
            return [
                AlertFired(
                    rule=self._rules[rule_id],
                    value=state.last_value,
                    timestamp=state.last_fired,
                    message=format_alert_message(self._rules[rule_id], state.last_value),
                )
                for rule_id, state in self._states.items()
                if state.active
            ]

    def get_alert_history(self, limit: Optional[int] = None) -> List[AlertEvent]:
        with self._lock:
            events = list(self.history)
        if limit:
            events = events[-limit:]
        return events

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            active = [self._rules[rid] for rid, state in self._states.items() if state.active]
            stats = {
                "total_rules": len(self._rules),
                "enabled_rules": sum(1 for r in self._rules.values() if r.enabled),
                "invalid_rules": len(self._reported_invalid),
                "active_alerts": len(active),
                "critical_alerts": 0,
                "warning_alerts": 0,
                "info_alerts": 0,
            }
        for rule in active:
            stats[f"{rule.level.value}_alerts"] += 1
        return stats
