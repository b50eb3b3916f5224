"""Component timing for simulation runs.

Disabled monitors cost one attribute check per ``track`` call.

Usage:
    perf = PerfMonitor(enabled=True)
    with perf.track("step"):
        pop.step()
    logger.info(perf.report())
"""

from __future__ import annotations

import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Optional


@dataclass
class ComponentStats:
    """Wall-clock totals for one named component."""
    total_time: float = 0.0
    call_count: int = 0
    max_time: float = 0.0

    @property
    def mean_time(self) -> float:
        return self.total_time / self.call_count if self.call_count else 0.0

    def add(self, elapsed: float) -> None:
        self.total_time += elapsed
        self.call_count += 1
        if elapsed > self.max_time:
            self.max_time = elapsed


class PerfMonitor:
    """Per-component wall-clock monitor (weather, stepping, bookkeeping)."""

    def __init__(self, enabled: bool = False):
        self.enabled = enabled
        self._stats: Dict[str, ComponentStats] = defaultdict(ComponentStats)
        self._start_time: Optional[float] = None
        self._total_time = 0.0

    def start(self) -> None:
        if self.enabled:
            self._start_time = time.perf_counter()

    def stop(self) -> None:
        if self.enabled and self._start_time is not None:
            self._total_time = time.perf_counter() - self._start_time

    @contextmanager
    def track(self, component: str):
        """Time the enclosed block under ``component``."""
        if not self.enabled:
            yield
            return
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self._stats[component].add(time.perf_counter() - t0)

    def get_stats(self) -> Dict[str, ComponentStats]:
        return dict(self._stats)

    def _total(self) -> float:
        return self._total_time or sum(s.total_time for s in self._stats.values())

    def summary(self) -> dict:
        """JSON-ready breakdown sorted by total time."""
        total = self._total()
        out = {}
        for name, s in sorted(self._stats.items(), key=lambda kv: -kv[1].total_time):
            out[name] = {
                'total_s': round(s.total_time, 4),
                'calls': s.call_count,
                'mean_ms': round(s.mean_time * 1000.0, 3),
                'max_ms': round(s.max_time * 1000.0, 3),
                'pct': round(100.0 * s.total_time / total, 1) if total > 0 else 0.0,
            }
        out['_total_s'] = round(total, 4)
        return out

    def report(self, title: str = "Run timing") -> str:
        rows = [f"{title}", f"{'component':<14}{'total s':>10}{'calls':>8}{'%':>7}"]
        for name, s in self.summary().items():
            if name.startswith('_'):
                continue
            rows.append(f"{name:<14}{s['total_s']:>10.3f}{s['calls']:>8}{s['pct']:>6.1f}%")
        rows.append(f"{'total':<14}{self._total():>10.3f}")
        return "\n".join(rows)
