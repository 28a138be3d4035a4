"""Webhook alerting for depeg transitions and venue outages."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

import requests

from ..config.settings import MonitoringConfig, get_app_config
from .logger import get_logger


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AlertManager:
    """Posts alerts to Slack and generic webhooks, at most once per key per throttle window."""

    def __init__(
        self,
        config: Optional[MonitoringConfig] = None,
        *,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or get_app_config().monitoring
        self._session = session or requests.Session()
        self._clock = clock
        self._logger = get_logger(__name__)
        self._last_sent: Dict[str, float] = {}

    @property
    def has_targets(self) -> bool:
        return bool(self._config.webhook_urls or self._config.slack_webhook_url)

    def send(
        self,
        message: str,
        *,
        severity: AlertSeverity = AlertSeverity.INFO,
        key: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Dispatch an alert; returns ``False`` when throttled."""

        key = key or message
        now = self._clock()
        last = self._last_sent.get(key)
        if last is not None and now - last < self._config.alert_throttle_seconds:
            self._logger.debug("Alert %s throttled", key)
            return False
        self._last_sent[key] = now
        if self._config.slack_webhook_url:
            self._post(
                str(self._config.slack_webhook_url),
                {"text": f"[{severity.value.upper()}] {message}"},
            )
        payload = {"message": message, "severity": severity.value, "extra": extra or {}}
        for url in self._config.webhook_urls:
            self._post(str(url), payload)
        return True

    def _post(self, url: str, payload: Dict[str, Any]) -> None:
        try:
            response = self._session.post(url, json=payload, timeout=5)
            response.raise_for_status()
        except requests.RequestException as exc:
            self._logger.warning("Failed to send alert to %s: %s", url, exc)


__all__ = ["AlertManager", "AlertSeverity"]
