import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.exceptions import ConfigurationError
from ..models.alert import AlertLevel, AlertRule
from .logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = "/etc/sysmonitor/config.json"

DEFAULT_INTERVAL_MS = 2000
MIN_INTERVAL_MS = 500
MAX_INTERVAL_MS = 60000
DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_PROBE_INTERVAL = 5
DEFAULT_TIMEOUT_RATIO = 0.8


def clamp_interval_ms(value) -> int:
    try:
        interval = int(float(value))
    except (TypeError, ValueError):
        raise ConfigurationError(f"invalid poll interval: {value!r}")

    clamped = max(MIN_INTERVAL_MS, min(MAX_INTERVAL_MS, interval))
    if clamped != interval:
        logger.warning(f"Poll interval {interval} ms out of range, using {clamped} ms")
    return clamped


def clamp_timeout_ratio(value) -> float:
    ratio = float(value)
    if ratio <= 0 or ratio > DEFAULT_TIMEOUT_RATIO:
        logger.warning(f"Fetch timeout ratio {ratio} out of range, using {DEFAULT_TIMEOUT_RATIO}")
        return DEFAULT_TIMEOUT_RATIO
    return ratio


def default_rules() -> List[AlertRule]:
    return [
        AlertRule(id="cpu-high", name="High CPU usage", metric="cpu", operator=">",
                  threshold=80.0, duration=300, level=AlertLevel.WARNING),
        AlertRule(id="memory-high", name="High memory usage", metric="memory", operator=">",
                  threshold=90.0, duration=300, level=AlertLevel.WARNING),
        AlertRule(id="disk-full", name="Low disk space", metric="disk", operator=">",
                  threshold=95.0, duration=120, level=AlertLevel.CRITICAL),
    ]


def parse_rules(raw_rules: List[Dict[str, Any]]) -> List[AlertRule]:
    rules = []
    for raw in raw_rules:
        try:
            rules.append(AlertRule.from_dict(raw))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error(f"Failed to load alert rule {raw!r}: {e}")
    return rules


@dataclass
class NotificationConfig:
    webhook_enabled: bool = False
    webhook_url: str = ""
    webhook_headers: Dict[str, str] = field(default_factory=dict)

    slack_enabled: bool = False
    slack_webhook_url: str = ""

    timeout: float = 10.0


@dataclass
class MonitorConfig:
    poll_interval_ms: int = DEFAULT_INTERVAL_MS
    failure_threshold: int = DEFAULT_FAILURE_THRESHOLD
    probe_interval: int = DEFAULT_PROBE_INTERVAL
    fetch_timeout_ratio: float = DEFAULT_TIMEOUT_RATIO
    enable_auto_refresh: bool = True

    collect_processes: bool = False
    max_processes: int = 50

    history_retention_days: int = 7
    alert_history_size: int = 500
    synthetic_seed: Optional[int] = None

    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_max_bytes: int = 10 * 1024 * 1024
    log_backup_count: int = 5

    rules: List[AlertRule] = field(default_factory=default_rules)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)

    def __post_init__(self):
        try:
            self.poll_interval_ms = clamp_interval_ms(self.poll_interval_ms)
        except ConfigurationError as e:
            logger.warning(f"{e}; using {DEFAULT_INTERVAL_MS} ms")
            self.poll_interval_ms = DEFAULT_INTERVAL_MS
        self.failure_threshold = max(1, int(self.failure_threshold))
        self.probe_interval = max(1, int(self.probe_interval))
        self.fetch_timeout_ratio = clamp_timeout_ratio(self.fetch_timeout_ratio)
        self.max_processes = max(1, int(self.max_processes))
        self.alert_history_size = max(1, int(self.alert_history_size))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MonitorConfig":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}

        if "rules" in values:
            values["rules"] = parse_rules(values["rules"] or [])

        if "notifications" in values:
            notif_fields = {f.name for f in fields(NotificationConfig)}
            values["notifications"] = NotificationConfig(
                **{k: v for k, v in (values["notifications"] or {}).items() if k in notif_fields}
            )

        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["rules"] = [rule.to_dict() for rule in self.rules]
        return data


def load_config(config_file: Optional[str] = DEFAULT_CONFIG_FILE) -> MonitorConfig:
    user_config: Dict[str, Any] = {}

    try:
        if config_file and Path(config_file).exists():
            with open(config_file, "r") as f:
                user_config = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Could not load config file {config_file}: {e}; using default configuration")
        user_config = {}

    if not isinstance(user_config, dict):
        logger.warning(f"Config file {config_file} does not contain an object; using default configuration")
        user_config = {}

    return MonitorConfig.from_dict(user_config)
