from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from enum import Enum

from ..models.alert import AlertEvent, AlertLevel, AlertRule


class AlertLevelEnum(str, Enum):
    info = "info"
    warning = "warning"
    critical = "critical"


class AlertRuleModel(BaseModel):
    id: str = Field(..., description="Rule id")
    name: str = Field(..., description="Human readable rule name")
    metric: str = Field(..., description="cpu, memory, disk, network or processes")
    operator: str = Field(..., description="One of > < >= <= = !=")
    threshold: float
    duration: float = Field(0.0, ge=0, description="Seconds the breach must be sustained")
    enabled: bool = True
    level: AlertLevelEnum = AlertLevelEnum.warning

    def to_rule(self) -> AlertRule:
        return AlertRule(
            id=self.id,
            name=self.name,
            metric=self.metric,
            operator=self.operator,
            threshold=self.threshold,
            duration=self.duration,
            enabled=self.enabled,
            level=AlertLevel(self.level.value),
        )

    @classmethod
    def from_rule(cls, rule: AlertRule) -> "AlertRuleModel":
        return cls(**rule.to_dict())


class IntervalUpdate(BaseModel):
    interval_ms: int = Field(..., description="Poll interval in milliseconds, clamped to [500, 60000]")


class AlertEventResponse(BaseModel):
    type: str
    rule_id: str
    rule_name: str
    metric: str
    level: AlertLevelEnum
    threshold: float
    value: Optional[float]
    message: str
    timestamp: datetime

    @classmethod
    def from_event(cls, event: AlertEvent) -> "AlertEventResponse":
        return cls(**event.to_dict())


class PollerStateResponse(BaseModel):
    mode: str
    consecutive_failures: int
    fallback_ticks: int
    last_live_success: Optional[datetime]
    ticks: int
    last_error: Optional[str]


class StatusResponse(BaseModel):
    running: bool
    ready: bool
    snapshot_age: Optional[float]
    interval_ms: int
    fetch_timeout: float
    failure_threshold: int
    probe_interval: int
    auto_refresh: bool
    history_retention_days: int
    poller: PollerStateResponse
    alerts: Dict[str, int]


class ApiResponse(BaseModel):
    success: bool
    message: str
    data: Optional[Any] = None


class RuleListUpdate(BaseModel):
    rules: List[AlertRuleModel]
