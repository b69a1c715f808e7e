import asyncio
import signal
import sys
from typing import Any, Callable, Dict, Iterable, List, Optional

from .alert_engine import AlertEngine
from .dispatcher import Dispatcher
from .notifier import AlertNotifier
from .poller import Poller
from .snapshot_cache import SnapshotCache
from .sources import LiveSource, MetricSource, SyntheticSource
from .system_monitor import SystemMonitor
from ..models.alert import AlertEvent, AlertFired, AlertRule
from ..models.snapshot import Snapshot
from ..utils.config import DEFAULT_CONFIG_FILE, MonitorConfig, load_config
from ..utils.logging import setup_logging, get_logger


class MonitorDaemon:
    """Owns the single poller / alert engine / snapshot cache of the process.

    Every UI shell or API server talks to one instance of this class.
    """

    def __init__(self, config: Optional[MonitorConfig] = None,
                 live_source: Optional[MetricSource] = None,
                 synthetic_source: Optional[MetricSource] = None):
        self.config = config or MonitorConfig()
        self.logger = get_logger(__name__)

        if live_source is None:
            monitor = SystemMonitor(
                include_processes=self.config.collect_processes,
                max_processes=self.config.max_processes,
            )
            live_source = LiveSource(monitor.collect)

        if synthetic_source is None:
            synthetic_source = SyntheticSource(
                seed=self.config.synthetic_seed,
                include_processes=self.config.collect_processes,
                max_processes=min(self.config.max_processes, 20),
                default_step=self.config.poll_interval_ms / 1000,
            )

        self.cache = SnapshotCache()
        self.engine = AlertEngine(self.config.rules, history_size=self.config.alert_history_size)
        self.dispatcher = Dispatcher()
        self.poller = Poller(
            live=live_source,
            synthetic=synthetic_source,
            cache=self.cache,
            engine=self.engine,
            dispatcher=self.dispatcher,
            interval_ms=self.config.poll_interval_ms,
            failure_threshold=self.config.failure_threshold,
            probe_interval=self.config.probe_interval,
            timeout_ratio=self.config.fetch_timeout_ratio,
        )

        self.notifier = AlertNotifier(self.config.notifications)
        if self.notifier.enabled:
            self.dispatcher.on_alert_event(self.notifier)

        self._refresh_task: Optional[asyncio.Task] = None
        self._closed: Optional[asyncio.Event] = None

    @classmethod
    def from_config_file(cls, config_file: str = DEFAULT_CONFIG_FILE) -> "MonitorDaemon":
        config = load_config(config_file)
        setup_logging(
            log_level=config.log_level,
            log_file=config.log_file,
            max_bytes=config.log_max_bytes,
            backup_count=config.log_backup_count,
        )
        return cls(config)

    def on_snapshot(self, handler: Callable[[Snapshot], Any]) -> Callable[[], None]:
        return self.dispatcher.on_snapshot(handler)

    def on_alert_event(self, handler: Callable[[AlertEvent], Any]) -> Callable[[], None]:
        return self.dispatcher.on_alert_event(handler)

    def get_current_snapshot(self) -> Snapshot:
        return self.cache.read()

    @property
    def running(self) -> bool:
        return self.poller.running

    def start(self):
        if not self.config.enable_auto_refresh:
            if self._refresh_task is None or self._refresh_task.done():
                self.logger.info("Auto refresh disabled, performing a single refresh")
                self._refresh_task = asyncio.get_running_loop().create_task(self.refresh())
            return

        if self.poller.running:
            return

        self.logger.info("Starting monitor daemon...")
        self.poller.start()

    def stop(self):
        if self._closed is not None:
            self._closed.set()

        if not self.poller.running:
            return

        self.logger.info("Stopping monitor daemon...")
        self.poller.stop()

    async def wait_closed(self):
        await self.poller.wait_closed()
        if self._refresh_task is not None:
            await self._refresh_task
        await self.dispatcher.drain(timeout=self.config.notifications.timeout)

    async def refresh(self) -> Snapshot:
        return await self.poller.tick()

    def set_interval(self, interval_ms) -> int:
        self.config.poll_interval_ms = self.poller.set_interval(interval_ms)
        return self.config.poll_interval_ms

    def get_rules(self) -> List[AlertRule]:
        return self.engine.rules

    async def set_rules(self, rules: Iterable[AlertRule]) -> List[AlertEvent]:
        events = self.engine.set_rules(rules)
        self.config.rules = self.engine.rules
        await self._publish(events)
        return events

    async def add_rule(self, rule: AlertRule) -> List[AlertEvent]:
        events = self.engine.add_rule(rule)
        self.config.rules = self.engine.rules
        await self._publish(events)
        return events

    async def update_rule(self, rule: AlertRule) -> Optional[List[AlertEvent]]:
        if rule.id not in {existing.id for existing in self.engine.rules}:
            return None
        return await self.add_rule(rule)

    async def remove_rule(self, rule_id: str) -> bool:
        if rule_id not in {rule.id for rule in self.engine.rules}:
            return False
        events = self.engine.remove_rule(rule_id)
        self.config.rules = self.engine.rules
        await self._publish(events)
        return True

    async def _publish(self, events: List[AlertEvent]):
        for event in events:
            await self.dispatcher.publish_event(event)

    def get_active_alerts(self) -> List[AlertFired]:
        return self.engine.get_active_alerts()

    def get_alert_history(self, limit: Optional[int] = None) -> List[AlertEvent]:
        return self.engine.get_alert_history(limit)

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self.poller.running,
            "ready": self.cache.ready,
            "snapshot_age": self.cache.age(),
            "interval_ms": self.poller.interval_ms,
            "fetch_timeout": self.poller.fetch_timeout,
            "failure_threshold": self.poller.failure_threshold,
            "probe_interval": self.poller.probe_interval,
            "auto_refresh": self.config.enable_auto_refresh,
            "history_retention_days": self.config.history_retention_days,
            "poller": self.poller.state.to_dict(),
            "alerts": self.engine.get_statistics(),
        }

    def _install_signal_handlers(self):
        loop = asyncio.get_running_loop()

        def signal_handler(signum, frame=None):
            self.logger.info(f"Received signal {signum}, shutting down...")
            loop.call_soon_threadsafe(self.stop)

        for signum in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(signum, signal_handler, signum)
            except (NotImplementedError, RuntimeError):
                signal.signal(signum, signal_handler)

    async def run(self):
        self._closed = asyncio.Event()
        self._install_signal_handlers()
        self.start()

        if self.config.enable_auto_refresh:
            await self.poller.wait_closed()
        else:
            await self._closed.wait()

        await self._cleanup()

    async def _cleanup(self):
        self.logger.info("Cleaning up...")
        if self._refresh_task is not None and not self._refresh_task.done():
            await self._refresh_task
        await self.dispatcher.drain(timeout=self.config.notifications.timeout)
        self.poller.close()


def main():
    import argparse

    parser = argparse.ArgumentParser(description="System metrics polling and alerting daemon")
    parser.add_argument("-c", "--config", default=DEFAULT_CONFIG_FILE,
                        help="Configuration file path")
    parser.add_argument("-i", "--interval", type=int, default=None,
                        help="Poll interval in milliseconds (overrides the config file)")

    args = parser.parse_args()

    daemon = MonitorDaemon.from_config_file(args.config)
    if args.interval is not None:
        daemon.set_interval(args.interval)

    try:
        asyncio.run(daemon.run())
    except KeyboardInterrupt:
        daemon.stop()
        sys.exit(0)


if __name__ == "__main__":
    main()
