from __future__ import annotations

import threading
import time
from collections import defaultdict
from typing import Dict, Optional


_lock = threading.Lock()
_counters: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
_latencies: Dict[str, Dict[str, Dict[str, float]]] = defaultdict(dict)


def increment(metric: str, label: str, value: int = 1) -> None:
    with _lock:
        _counters[metric][label] += value


def observe_latency(metric: str, label: str, duration_seconds: float) -> None:
    with _lock:
        stats = _latencies[metric].setdefault(label, {"count": 0, "sum": 0.0, "max": 0.0})
        stats["count"] += 1
        stats["sum"] += duration_seconds
        stats["max"] = max(stats["max"], duration_seconds)


def counter_value(metric: str, label: str) -> int:
    with _lock:
        return _counters.get(metric, {}).get(label, 0)


def snapshot() -> Dict[str, Dict]:
    with _lock:
        counters_copy = {name: dict(values) for name, values in _counters.items()}
        latencies_copy = {
            name: {label: dict(stats) for label, stats in labels.items()}
            for name, labels in _latencies.items()
        }
    return {"counters": counters_copy, "latencies": latencies_copy}


def reset() -> None:
    with _lock:
        _counters.clear()
        _latencies.clear()


class Timer:
    """Records elapsed wall time under ``metric``/``label`` when stopped."""

    def __init__(self, metric: str, label: str) -> None:
        self.metric = metric
        self.label = label
        self.start = time.perf_counter()
        self.elapsed: Optional[float] = None

    def stop(self, label: Optional[str] = None) -> float:
        self.elapsed = time.perf_counter() - self.start
        observe_latency(self.metric, label or self.label, self.elapsed)
        return self.elapsed

    def __enter__(self) -> "Timer":
        return self

    def __exit__(self, exc_type, exc, traceback) -> None:
        if self.elapsed is None:
            self.stop("failed" if exc_type else None)
