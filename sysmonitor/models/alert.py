import operator as _op
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Union
from datetime import datetime
from enum import Enum


class AlertLevel(Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertStatus(Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"


class MetricKey(Enum):
    CPU = "cpu"
    MEMORY = "memory"
    DISK = "disk"
    NETWORK = "network"
    PROCESSES = "processes"

    @classmethod
    def parse(cls, value: str) -> Optional["MetricKey"]:
        return _METRIC_ALIASES.get(str(value).strip().lower())


_METRIC_ALIASES = {
    "cpu": MetricKey.CPU,
    "cpu.usage": MetricKey.CPU,
    "memory": MetricKey.MEMORY,
    "memory.used_percent": MetricKey.MEMORY,
    "disk": MetricKey.DISK,
    "disk.used_percent": MetricKey.DISK,
    "network": MetricKey.NETWORK,
    "network.throughput": MetricKey.NETWORK,
    "processes": MetricKey.PROCESSES,
    "processes.count": MetricKey.PROCESSES,
}


class Operator(Enum):
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    EQ = "="
    NE = "!="

    @classmethod
    def parse(cls, value: str) -> Optional["Operator"]:
        value = str(value).strip()
        if value == "==":
            value = "="
        try:
            return cls(value)
        except ValueError:
            return None

    @property
    def text(self) -> str:
        return _OPERATOR_TEXT[self]

    def apply(self, value: float, threshold: float) -> bool:
        return _OPERATOR_FUNCS[self](value, threshold)


_OPERATOR_FUNCS: Dict[Operator, Callable[[float, float], bool]] = {
    Operator.GT: _op.gt,
    Operator.LT: _op.lt,
    Operator.GE: _op.ge,
    Operator.LE: _op.le,
    Operator.EQ: _op.eq,
    Operator.NE: _op.ne,
}

_OPERATOR_TEXT = {
    Operator.GT: "greater than",
    Operator.LT: "less than",
    Operator.GE: "greater than or equal to",
    Operator.LE: "less than or equal to",
    Operator.EQ: "equal to",
    Operator.NE: "not equal to",
}


@dataclass(frozen=True)
class AlertRule:
    id: str
    name: str
    metric: str
    operator: str
    threshold: float
    duration: float = 0.0
    enabled: bool = True
    level: AlertLevel = AlertLevel.WARNING

    @property
    def metric_key(self) -> Optional[MetricKey]:
        return MetricKey.parse(self.metric)

    @property
    def comparison(self) -> Optional[Operator]:
        return Operator.parse(self.operator)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "metric": self.metric,
            "operator": self.operator,
            "threshold": self.threshold,
            "duration": self.duration,
            "enabled": self.enabled,
            "level": self.level.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AlertRule":
        level = data.get("level")
        actions = data.get("actions") or []
        if level is None and actions:
            level = actions[0].get("level")

        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            metric=str(data["metric"]),
            operator=str(data["operator"]),
            threshold=float(data["threshold"]),
            duration=max(0.0, float(data.get("duration", 0.0))),
            enabled=bool(data.get("enabled", True)),
            level=AlertLevel(level or AlertLevel.WARNING.value),
        )


@dataclass
class AlertState:
    rule_id: str
    status: AlertStatus = AlertStatus.INACTIVE
    first_breach: Optional[datetime] = None
    last_value: Optional[float] = None
    last_fired: Optional[datetime] = None

    @property
    def active(self) -> bool:
        return self.status is AlertStatus.ACTIVE

    def reset(self):
        self.status = AlertStatus.INACTIVE
        self.first_breach = None


@dataclass(frozen=True)
class AlertFired:
    rule: AlertRule
    value: float
    timestamp: datetime
    message: str = ""

    kind = "fired"

    def to_dict(self) -> Dict[str, Any]:
        return _event_dict(self)


@dataclass(frozen=True)
class AlertResolved:
    rule: AlertRule
    value: Optional[float]
    timestamp: datetime
    message: str = ""

    kind = "resolved"

    def to_dict(self) -> Dict[str, Any]:
        return _event_dict(self)


AlertEvent = Union[AlertFired, AlertResolved]


def _event_dict(event: AlertEvent) -> Dict[str, Any]:
    return {
        "type": event.kind,
        "rule_id": event.rule.id,
        "rule_name": event.rule.name,
        "metric": event.rule.metric,
        "level": event.rule.level.value,
        "threshold": event.rule.threshold,
        "value": event.value,
        "message": event.message,
        "timestamp": event.timestamp.isoformat(),
    }


def format_alert_message(rule: AlertRule, value: Optional[float], resolved: bool = False) -> str:
    if resolved:
        if value is None:
            return f"{rule.name}: resolved"
        return f"{rule.name}: resolved at {value:.2f}"
    comparison = rule.comparison
    op_text = comparison.text if comparison else rule.operator
    return f"{rule.name}: current value {value:.2f} {op_text} threshold {rule.threshold:.2f}"
