"""Performance table: observed cost, latency and quality per backend model.

Entries are append-only per ``backend/model`` key and trimmed to the most recent
``max_history_per_key``. Every appended entry carries a running average over
the latest ``aggregation_window`` observations, so its ``sample_size`` reflects
how many observations it summarizes.
"""

from __future__ import annotations

import threading
from collections import deque
from datetime import datetime
from typing import Callable, Iterable

from ..core.config import LearningConfig
from ..core.logger import get_logger
from .base import PerformanceHistoryEntry
from .catalog import SEED_OBSERVATIONS, BaselineObservation

logger = get_logger("routing.performance")


def make_key(backend: str, model: str) -> str:
    return f"{backend}/{model}"


class PerformanceTable:
    """Keyed, bounded history of backend performance."""

    def __init__(
        self,
        config: LearningConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config or LearningConfig()
        self._clock = clock
        self._lock = threading.RLock()
        self._history: dict[str, deque[PerformanceHistoryEntry]] = {}

    def _entries(self, key: str) -> deque[PerformanceHistoryEntry]:
        entries = self._history.get(key)
        if entries is None:
            entries = deque(maxlen=self.config.max_history_per_key)
            self._history[key] = entries
        return entries

    def append(self, entry: PerformanceHistoryEntry) -> None:
        """Append a prepared entry under its key, evicting the oldest beyond the limit."""
        with self._lock:
            self._entries(entry.key).append(entry)

    def record(
        self,
        backend: str,
        model: str,
        cost: float,
        response_time_ms: float,
        quality: float,
        success: bool = True,
    ) -> PerformanceHistoryEntry:
        """Fold one observation into the key's running average and append the result.

        Returns:
            The appended entry
        """
        key = make_key(backend, model)
        success_value = 1.0 if success else 0.0

        with self._lock:
            entries = self._entries(key)
            previous = entries[-1] if entries else None

            if previous is None:
                entry = PerformanceHistoryEntry(
                    backend=backend,
                    model=model,
                    avg_cost=cost,
                    avg_response_time=response_time_ms,
                    quality_score=quality,
                    success_rate=success_value,
                    last_updated=self._clock(),
                    sample_size=1,
                )
            else:
                n = min(previous.sample_size + 1, self.config.aggregation_window)
                entry = PerformanceHistoryEntry(
                    backend=backend,
                    model=model,
                    avg_cost=previous.avg_cost + (cost - previous.avg_cost) / n,
                    avg_response_time=previous.avg_response_time
                    + (response_time_ms - previous.avg_response_time) / n,
                    quality_score=previous.quality_score + (quality - previous.quality_score) / n,
                    success_rate=previous.success_rate
                    + (success_value - previous.success_rate) / n,
                    last_updated=self._clock(),
                    sample_size=n,
                )
            entries.append(entry)

        logger.debug(
            "Recorded performance for %s (cost=%.5f, latency=%.0fms, quality=%.2f, n=%d)",
            key,
            cost,
            response_time_ms,
            quality,
            entry.sample_size,
        )
        return entry

    def seed(self, observations: Iterable[BaselineObservation] = SEED_OBSERVATIONS) -> None:
        """Replace the history of each observed key with a single aggregated entry."""
        now = self._clock()
        with self._lock:
            for obs in observations:
                entries = self._entries(make_key(obs.backend, obs.model))
                entries.clear()
                entries.append(
                    PerformanceHistoryEntry(
                        backend=obs.backend,
                        model=obs.model,
                        avg_cost=obs.avg_cost,
                        avg_response_time=obs.avg_response_time,
                        quality_score=obs.quality_score,
                        success_rate=obs.success_rate,
                        last_updated=now,
                        sample_size=obs.sample_size,
                    )
                )
        logger.debug("Seeded performance table with baseline observations")

    def get_history(self, backend: str, model: str) -> list[PerformanceHistoryEntry]:
        with self._lock:
            return list(self._history.get(make_key(backend, model), ()))

    def keys(self) -> list[str]:
        with self._lock:
            return [key for key, entries in self._history.items() if entries]

    def latest(self) -> list[PerformanceHistoryEntry]:
        """Most recent entry of every key."""
        with self._lock:
            return [entries[-1] for entries in self._history.values() if entries]

    def clear(self) -> None:
        with self._lock:
            self._history.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(len(entries) for entries in self._history.values())

    def __repr__(self) -> str:
        return f"<PerformanceTable keys={len(self.keys())}, entries={len(self)}>"
