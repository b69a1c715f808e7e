import asyncio
from typing import Any, Dict

import aiohttp

from ..models.alert import AlertEvent, AlertFired, AlertLevel
from ..utils.config import NotificationConfig
from ..utils.logging import get_logger

SLACK_COLORS = {
    AlertLevel.INFO: "#36a64f",
    AlertLevel.WARNING: "#ff9500",
    AlertLevel.CRITICAL: "#ff0000",
}
RESOLVED_COLOR = "#2eb886"


def webhook_payload(event: AlertEvent) -> Dict[str, Any]:
    return event.to_dict()


def slack_payload(event: AlertEvent) -> Dict[str, Any]:
    rule = event.rule
    fired = isinstance(event, AlertFired)
    value = f"{event.value:.2f}" if event.value is not None else "n/a"

    return {
        "attachments": [{
            "color": SLACK_COLORS.get(rule.level, "#36a64f") if fired else RESOLVED_COLOR,
            "title": f"[{rule.level.value.upper()}] {rule.name}" if fired else f"[RESOLVED] {rule.name}",
            "text": event.message,
            "fields": [
                {"title": "Metric", "value": rule.metric, "short": True},
                {"title": "Value", "value": value, "short": True},
                {"title": "Threshold", "value": f"{rule.operator} {rule.threshold}", "short": True},
                {"title": "Time", "value": event.timestamp.strftime("%Y-%m-%d %H:%M:%S"), "short": True},
            ],
        }]
    }


class AlertNotifier:
    """Alert-event subscriber that forwards events to webhooks."""

    def __init__(self, config: NotificationConfig):
        self.config = config
        self.logger = get_logger(__name__)

    @property
    def enabled(self) -> bool:
        return (
            (self.config.webhook_enabled and bool(self.config.webhook_url))
            or (self.config.slack_enabled and bool(self.config.slack_webhook_url))
        )

    async def __call__(self, event: AlertEvent):
        await self.notify(event)

    async def notify(self, event: AlertEvent):
        tasks = []

        if self.config.webhook_enabled and self.config.webhook_url:
            tasks.append(self._post(
                "Webhook", self.config.webhook_url, webhook_payload(event), event.rule.id,
                self.config.webhook_headers
            ))

        if self.config.slack_enabled and self.config.slack_webhook_url:
            tasks.append(self._post(
                "Slack", self.config.slack_webhook_url, slack_payload(event), event.rule.id
            ))

        if tasks:
            await asyncio.gather(*tasks)

    async def _post(self, target: str, url: str, payload: Dict[str, Any], rule_id: str,
                    headers: Dict[str, str] = None):
        try:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json=payload, headers=headers or {}) as response:
                    if 200 <= response.status < 300:
                        self.logger.info(f"{target} notification sent for rule {rule_id}")
                    else:
                        self.logger.error(f"{target} notification failed: {response.status}")

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.error(f"Failed to send {target.lower()} notification: {e}")

