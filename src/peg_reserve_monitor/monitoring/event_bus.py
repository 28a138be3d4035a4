"""Internal event bus for peg transitions and venue health."""

from __future__ import annotations

import asyncio
import inspect
import logging
import queue
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Union

from .alerts import AlertManager, AlertSeverity
from .metrics import MetricsRegistry


class EventType(str, Enum):
    DEPEG_STARTED = "depeg_started"
    DEPEG_RECOVERED = "depeg_recovered"
    VENUE_UNAVAILABLE = "venue_unavailable"
    VENUE_RECOVERED = "venue_recovered"
    TICK_FAILED = "tick_failed"
    CONFIG_UPDATED = "config_updated"
    HEALTH = "health"


class EventSeverity(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


_ALERTABLE = frozenset({EventSeverity.WARNING, EventSeverity.ERROR, EventSeverity.CRITICAL})


@dataclass(slots=True)
class Event:
    type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    severity: EventSeverity = EventSeverity.INFO
    correlation_id: Optional[str] = None
    labels: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity.value,
            "correlation_id": self.correlation_id,
            "labels": self.labels,
        }


Subscriber = Callable[[Event], Union[None, Any]]


class EventBus:
    """Threaded event bus that fans out events to subscribers, listeners and alerts.

    ``publish`` never blocks the caller; a daemon worker dispatches in order.
    """

    def __init__(self, history_size: int = 500) -> None:
        self._queue: "queue.Queue[Event]" = queue.Queue()
        self._subscribers: Dict[Optional[EventType], List[Subscriber]] = defaultdict(list)
        self._listeners: List["queue.SimpleQueue[Event]"] = []
        self._history: Deque[Event] = deque(maxlen=history_size)
        self._lock = threading.RLock()
        self._logger = logging.getLogger(__name__)
        self._metrics: Optional[MetricsRegistry] = None
        self._alerts: Optional[AlertManager] = None
        self._worker = threading.Thread(target=self._run, name="event-bus", daemon=True)
        self._worker.start()

    def attach_metrics(self, registry: Optional[MetricsRegistry]) -> None:
        self._metrics = registry

    def attach_alert_manager(self, manager: Optional[AlertManager]) -> None:
        self._alerts = manager

    def set_history_size(self, size: int) -> None:
        with self._lock:
            self._history = deque(self._history, maxlen=max(1, size))

    def subscribe(self, event_type: Optional[EventType], handler: Subscriber) -> None:
        """Register a handler for one event type, or for every event with ``None``."""

        with self._lock:
            self._subscribers[event_type].append(handler)

    def create_listener(self) -> "queue.SimpleQueue[Event]":
        listener: "queue.SimpleQueue[Event]" = queue.SimpleQueue()
        with self._lock:
            self._listeners.append(listener)
        return listener

    def remove_listener(self, listener: "queue.SimpleQueue[Event]") -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def publish(
        self,
        event_type: Union[EventType, str],
        payload: Optional[Dict[str, Any]] = None,
        *,
        severity: EventSeverity = EventSeverity.INFO,
        correlation_id: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        if isinstance(event_type, str):
            try:
                event_type = EventType(event_type)
            except ValueError as exc:
                raise ValueError(f"Unsupported event type: {event_type}") from exc
        self._queue.put(
            Event(
                type=event_type,
                payload=dict(payload or {}),
                severity=severity,
                correlation_id=correlation_id,
                labels=dict(labels or {}),
            )
        )

    def history(self, limit: int = 100) -> List[Event]:
        with self._lock:
            return list(self._history)[-limit:]

    def flush(self, timeout: float = 1.0) -> bool:
        """Best-effort wait for the queue to drain."""

        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self._queue.unfinished_tasks == 0:
                return True
            time.sleep(0.01)
        return self._queue.unfinished_tasks == 0

    def reset(self) -> None:
        """Clear subscribers, listeners and history. Intended for tests."""

        self.flush()
        with self._lock:
            self._subscribers.clear()
            self._listeners.clear()
            self._history.clear()
        self._metrics = None
        self._alerts = None

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            try:
                self._dispatch(event)
            except Exception:
                self._logger.exception("Failed to dispatch event %s", event.type.value)
            finally:
                self._queue.task_done()

    def _dispatch(self, event: Event) -> None:
        with self._lock:
            self._history.append(event)
            handlers = list(self._subscribers.get(event.type, [])) + list(
                self._subscribers.get(None, [])
            )
            listeners = list(self._listeners)
        if self._metrics:
            self._metrics.increment(f"events_{event.type.value}")
        self._trigger_alerts(event)
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    asyncio.run(result)
            except Exception:
                self._logger.exception(
                    "Event handler %s failed for %s",
                    getattr(handler, "__name__", handler),
                    event.type.value,
                )
        for listener in listeners:
            listener.put_nowait(event)

    def _trigger_alerts(self, event: Event) -> None:
        if not self._alerts or event.severity not in _ALERTABLE:
            return
        summary = event.payload.get("message") or event.payload
        venue = event.payload.get("venue", "")
        self._alerts.send(
            f"{event.type.value.upper()}: {summary}",
            severity=AlertSeverity(event.severity.value),
            key=f"{event.type.value}:{venue}",
            extra=event.payload,
        )


EVENT_BUS = EventBus()


__all__ = [
    "EVENT_BUS",
    "Event",
    "EventBus",
    "EventSeverity",
    "EventType",
]
