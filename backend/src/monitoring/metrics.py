from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)


def _series_key(name: str, tags: dict[str, str] | None) -> tuple[str, tuple[tuple[str, str], ...]]:
    return name, tuple(sorted((tags or {}).items()))


def _prometheus_name(name: str) -> str:
    return name.replace(".", "_").replace("-", "_")


@dataclass
class HistogramStats:
    count: int = 0
    total: float = 0.0
    min: float | None = None
    max: float | None = None

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.min = value if self.min is None else min(self.min, value)
        self.max = value if self.max is None else max(self.max, value)

    @property
    def mean(self) -> float:
        return self.total / self.count if self.count else 0.0


class MetricsService:
    """In-process IMetricsSink: tagged counters and histograms, exportable as Prometheus text.

    Recording never raises; a metrics failure must not affect the caller.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[tuple[str, tuple[tuple[str, str], ...]], int] = defaultdict(int)
        self._histograms: dict[str, HistogramStats] = defaultdict(HistogramStats)

    def increment_counter(self, name: str, tags: dict[str, str] | None = None) -> None:
        try:
            with self._lock:
                self._counters[_series_key(name, tags)] += 1
        except Exception as exc:  # noqa: BLE001
            logger.warning("metric_record_failed", metric=name, error=str(exc))

    def record_histogram(self, name: str, value: float) -> None:
        try:
            with self._lock:
                self._histograms[name].observe(float(value))
        except Exception as exc:  # noqa: BLE001
            logger.warning("metric_record_failed", metric=name, error=str(exc))

    def get_counter(self, name: str, tags: dict[str, str] | None = None) -> int:
        with self._lock:
            if tags is not None:
                return self._counters.get(_series_key(name, tags), 0)
            return sum(v for (n, _), v in self._counters.items() if n == name)

    def get_histogram(self, name: str) -> HistogramStats | None:
        with self._lock:
            return self._histograms.get(name)

    def snapshot(self) -> dict[str, dict[str, float]]:
        with self._lock:
            counters: dict[str, float] = {}
            for (name, tags), value in self._counters.items():
                label = ",".join(f"{k}={v}" for k, v in tags)
                counters[f"{name}{{{label}}}" if label else name] = value
            histograms = {
                name: stats.mean for name, stats in self._histograms.items()
            }
        return {"counters": counters, "histograms": histograms}

    def export_prometheus(self) -> str:
        lines: list[str] = []
        with self._lock:
            seen: set[str] = set()
            for (name, tags), value in sorted(self._counters.items()):
                metric = _prometheus_name(name)
                if metric not in seen:
                    lines.append(f"# TYPE {metric} counter")
                    seen.add(metric)
                labels = ",".join(f'{k}="{v}"' for k, v in tags)
                lines.append(f"{metric}{{{labels}}} {value}" if labels else f"{metric} {value}")

            for name, stats in sorted(self._histograms.items()):
                metric = _prometheus_name(name)
                lines.append(f"# TYPE {metric} summary")
                lines.append(f"{metric}_count {stats.count}")
                lines.append(f"{metric}_sum {stats.total}")
        return "\n".join(lines) + "\n" if lines else ""

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
