"""Timing and counter collection for provisioning runs."""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from typing import Dict, Any, Iterator, List


class MetricsCollector:
    """
    Collects phase timings and counters for one run.

    Thread-safe: fetch workers record into the same collector.
    """

    def __init__(self):
        self._start_time = time.monotonic()
        self._timers: Dict[str, float] = {}
        self._metrics: Dict[str, List[float]] = defaultdict(list)
        self._counters: Dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()

    def start_timer(self, name: str) -> None:
        """Start a named timer."""
        with self._lock:
            self._timers[name] = time.monotonic()

    def stop_timer(self, name: str) -> float:
        """
        Stop a named timer and return elapsed time.

        Raises:
            KeyError: If timer was not started
        """
        with self._lock:
            if name not in self._timers:
                raise KeyError(f"Timer '{name}' was not started")
            elapsed = time.monotonic() - self._timers.pop(name)
            self._metrics[f"{name}_duration"].append(elapsed)
        return elapsed

    @contextmanager
    def timed(self, name: str) -> Iterator[None]:
        """Time the enclosed block under ``name``."""
        self.start_timer(name)
        try:
            yield
        finally:
            self.stop_timer(name)

    def record_metric(self, name: str, value: float) -> None:
        with self._lock:
            self._metrics[name].append(value)

    def increment_counter(self, name: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[name] += amount

    def get_counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def get_metric(self, name: str) -> List[float]:
        with self._lock:
            return list(self._metrics.get(name, []))

    def durations(self) -> Dict[str, float]:
        """Total seconds spent per timer name."""
        with self._lock:
            return {
                name[: -len("_duration")]: sum(values)
                for name, values in self._metrics.items()
                if name.endswith("_duration")
            }

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            summary: Dict[str, Any] = {
                "total_elapsed": time.monotonic() - self._start_time,
                "counters": dict(self._counters),
                "metrics": {},
            }
            for name, values in self._metrics.items():
                if values:
                    summary["metrics"][name] = {
                        "count": len(values),
                        "sum": sum(values),
                        "avg": sum(values) / len(values),
                        "min": min(values),
                        "max": max(values),
                    }
        return summary
