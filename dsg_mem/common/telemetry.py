# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Thread-safe per-layer update counters."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Iterable

_log = logging.getLogger(__name__)


@dataclass
class UpdateStats:
    """Accumulated update statistics for one layer."""

    passes: int = 0
    nodes_updated: int = 0
    nodes_merged: int = 0
    duration_ms_sum: float = 0.0
    last_nodes: int = 0

    def update(self, *, updated: int, merged: int, num_nodes: int, duration_ms: float) -> None:
        """Add one pass."""

        if updated < 0 or merged < 0 or num_nodes < 0:
            _log.warning("Ignoring negative update counts for telemetry")
            return
        self.passes += 1
        self.nodes_updated += updated
        self.nodes_merged += merged
        self.duration_ms_sum += max(0.0, duration_ms)
        self.last_nodes = num_nodes

    def snapshot(self) -> Dict[str, int | float]:
        """Return counters with the average pass duration."""

        avg = (self.duration_ms_sum / self.passes) if self.passes else 0.0
        return {
            "passes": self.passes,
            "nodes_updated": self.nodes_updated,
            "nodes_merged": self.nodes_merged,
            "avg_duration_ms": avg,
            "last_nodes": self.last_nodes,
        }


class UpdateRegistry:
    """Container for per-layer :class:`UpdateStats`."""

    def __init__(self, names: Iterable[str] = ()) -> None:
        self._lock = threading.Lock()
        self._stats: Dict[str, UpdateStats] = {name: UpdateStats() for name in names}

    def get(self, name: str) -> UpdateStats:
        """Return (creating on first use) stats for ``name``."""

        with self._lock:
            return self._stats.setdefault(name, UpdateStats())

    def record(self, name: str, **metrics: int | float) -> None:
        with self._lock:
            self._stats.setdefault(name, UpdateStats()).update(**metrics)

    def reset(self) -> None:
        with self._lock:
            for key in self._stats:
                self._stats[key] = UpdateStats()

    def all_snapshots(self) -> Dict[str, Dict[str, int | float]]:
        with self._lock:
            return {k: v.snapshot() for k, v in self._stats.items()}


__all__ = ["UpdateStats", "UpdateRegistry"]
