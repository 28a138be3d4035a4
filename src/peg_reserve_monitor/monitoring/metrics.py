"""Thread-safe metrics registry exported in Prometheus text format."""

from __future__ import annotations

import math
import re
import threading
from collections import defaultdict, deque
from statistics import mean
from typing import Deque, Dict, List, Mapping, MutableMapping, Sequence

_METRIC_SANITIZE_RE = re.compile(r"[^a-zA-Z0-9_:]")
_LABEL_SANITIZE_RE = re.compile(r"[^a-zA-Z0-9_]")

METRIC_PREFIX = "peg_monitor_"


def _sanitize_metric_name(name: str) -> str:
    sanitized = _METRIC_SANITIZE_RE.sub("_", name)
    if not sanitized:
        return "_"
    if sanitized[0].isdigit():
        sanitized = f"_{sanitized}"
    return sanitized


def _sanitize_label(value: str) -> str:
    return _LABEL_SANITIZE_RE.sub("_", value)


class MetricsRegistry:
    """Counters, gauges, bounded histograms and labelled gauge families.

    Names are stored as given and prefixed with ``METRIC_PREFIX`` on export.
    """

    def __init__(self, *, max_hist_samples: int = 1024) -> None:
        self._lock = threading.RLock()
        self._counters: MutableMapping[str, float] = defaultdict(float)
        self._gauges: MutableMapping[str, float] = {}
        self._histograms: MutableMapping[str, Deque[float]] = defaultdict(
            lambda: deque(maxlen=max_hist_samples)
        )
        self._mappings: MutableMapping[str, Dict[str, float]] = {}

    def increment(self, name: str, amount: float = 1.0) -> None:
        with self._lock:
            self._counters[name] += amount

    def get(self, name: str) -> float:
        with self._lock:
            return self._counters.get(name, 0.0)

    def gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name] = float(value)

    def get_gauge(self, name: str) -> float:
        with self._lock:
            return self._gauges.get(name, 0.0)

    def observe(self, name: str, value: float) -> None:
        with self._lock:
            self._histograms[name].append(float(value))

    def set_mapping(self, name: str, values: Mapping[str, float]) -> None:
        """Replace a labelled gauge family, e.g. per-venue depeg bps."""

        with self._lock:
            self._mappings[name] = {str(key): float(val) for key, val in values.items()}

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            counters = dict(self._counters)
            gauges = dict(self._gauges)
            histograms = {key: _histogram_stats(values) for key, values in self._histograms.items()}
            mappings = {key: dict(value) for key, value in self._mappings.items()}
        return {
            "counters": counters,
            "gauges": gauges,
            "histograms": histograms,
            "mappings": mappings,
        }

    def export_prometheus(self) -> str:
        snap = self.snapshot()
        lines: List[str] = []
        for name, value in sorted(snap["counters"].items()):
            metric = _sanitize_metric_name(METRIC_PREFIX + name)
            lines.append(f"# TYPE {metric} counter")
            lines.append(f"{metric} {value}")
        for name, value in sorted(snap["gauges"].items()):
            metric = _sanitize_metric_name(METRIC_PREFIX + name)
            lines.append(f"# TYPE {metric} gauge")
            lines.append(f"{metric} {value}")
        for name, family in sorted(snap["mappings"].items()):
            metric = _sanitize_metric_name(METRIC_PREFIX + name)
            lines.append(f"# TYPE {metric} gauge")
            for label, value in sorted(family.items()):
                lines.append(f'{metric}{{key="{_sanitize_label(label)}"}} {value}')
        for name, stats in sorted(snap["histograms"].items()):
            if not stats:
                continue
            metric = _sanitize_metric_name(METRIC_PREFIX + name)
            lines.append(f"# TYPE {metric} summary")
            for quantile, key in (("0.5", "p50"), ("0.9", "p90"), ("0.99", "p99")):
                lines.append(f'{metric}{{quantile="{quantile}"}} {stats[key]}')
            lines.append(f"{metric}_count {stats['count']}")
            lines.append(f"{metric}_sum {stats['sum']}")
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._mappings.clear()


def _histogram_stats(values: Sequence[float]) -> Dict[str, float]:
    data = sorted(values)
    if not data:
        return {}
    return {
        "count": float(len(data)),
        "sum": float(sum(data)),
        "avg": mean(data),
        "p50": _percentile(data, 0.5),
        "p90": _percentile(data, 0.9),
        "p99": _percentile(data, 0.99),
    }


def _percentile(data: Sequence[float], percentile: float) -> float:
    index = max(int(math.ceil(percentile * len(data))) - 1, 0)
    return float(data[min(index, len(data) - 1)])


METRICS = MetricsRegistry()


__all__ = ["METRICS", "METRIC_PREFIX", "MetricsRegistry"]
