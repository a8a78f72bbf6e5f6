"""
Switchboard Metrics — in-process counters and latency histograms.

One collector per application context; nothing global.

Usage:
    metrics = MetricsCollector()
    metrics.inc("llm.requests", labels={"provider": "ollama"})
    metrics.observe("llm.latency_ms", 812.4, labels={"provider": "ollama"})
    metrics.snapshot()
"""

from __future__ import annotations

import time
from collections import defaultdict, deque


class MetricsCollector:
    """Counters plus rolling-window histograms."""

    HISTOGRAM_MAX_SAMPLES = 1000

    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        self._histograms: dict[str, deque[float]] = defaultdict(
            lambda: deque(maxlen=self.HISTOGRAM_MAX_SAMPLES)
        )
        self._started_at = time.time()

    def inc(self, name: str, value: int = 1, labels: dict | None = None) -> None:
        self._counters[self._key(name, labels)] += value

    def observe(self, name: str, value: float, labels: dict | None = None) -> None:
        """Record one observation; the oldest sample falls off a full window."""
        self._histograms[self._key(name, labels)].append(value)

    def count(self, name: str, labels: dict | None = None) -> int:
        return self._counters.get(self._key(name, labels), 0)

    def snapshot(self) -> dict:
        """Counters and histogram summaries (count/min/max/p50/p95), JSON-ready."""
        histograms: dict[str, dict] = {}
        for key, samples in self._histograms.items():
            if not samples:
                continue
            ordered = sorted(samples)
            n = len(ordered)
            histograms[key] = {
                "count": n,
                "min": ordered[0],
                "max": ordered[-1],
                "p50": ordered[n // 2],
                "p95": ordered[min(int(n * 0.95), n - 1)],
            }
        return {
            "uptime_seconds": round(time.time() - self._started_at, 1),
            "counters": dict(self._counters),
            "histograms": histograms,
        }

    def _key(self, name: str, labels: dict | None) -> str:
        """``"llm.requests{provider=ollama}"``"""
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"
