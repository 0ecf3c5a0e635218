"""Tests for the performance table."""

from __future__ import annotations

import pytest

from route_intelligence.core.config import LearningConfig
from route_intelligence.routing.base import PerformanceHistoryEntry
from route_intelligence.routing.catalog import SEED_OBSERVATIONS
from route_intelligence.routing.performance import PerformanceTable, make_key


class TestPerformanceTable:
    """Tests for PerformanceTable."""

    def test_first_observation(self, clock):
        """Test the first observation is stored as a single-sample entry."""
        table = PerformanceTable(clock=clock)

        entry = table.record("openai", "gpt-4o", 0.01, 1500.0, 0.8)

        assert entry.sample_size == 1
        assert entry.avg_cost == 0.01
        assert entry.last_updated == clock.now
        assert table.get_history("openai", "gpt-4o") == [entry]

    def test_running_average(self, clock):
        """Test later observations fold into a running average."""
        table = PerformanceTable(clock=clock)

        table.record("openai", "gpt-4o", 0.01, 1000.0, 0.8)
        entry = table.record("openai", "gpt-4o", 0.03, 3000.0, 0.6, success=False)

        assert entry.sample_size == 2
        assert entry.avg_cost == pytest.approx(0.02)
        assert entry.avg_response_time == pytest.approx(2000.0)
        assert entry.quality_score == pytest.approx(0.7)
        assert entry.success_rate == pytest.approx(0.5)

    def test_aggregation_window_caps_sample_size(self, clock):
        """Test the sample size never exceeds the aggregation window."""
        table = PerformanceTable(LearningConfig(aggregation_window=3), clock=clock)

        for _ in range(6):
            entry = table.record("google", "gemini-pro", 0.001, 1000.0, 0.8)

        assert entry.sample_size == 3
        assert [e.sample_size for e in table.get_history("google", "gemini-pro")] == [
            1,
            2,
            3,
            3,
            3,
            3,
        ]

    def test_history_is_bounded(self, clock):
        """Test that the oldest entries are evicted beyond the per-key limit."""
        table = PerformanceTable(LearningConfig(max_history_per_key=4), clock=clock)

        for i in range(10):
            table.record("openai", "gpt-4", 0.01 * (i + 1), 1000.0, 0.9)

        assert len(table.get_history("openai", "gpt-4")) == 4

    def test_seed(self, clock):
        """Test seeding stores one aggregated entry per baseline observation."""
        table = PerformanceTable(clock=clock)
        table.seed()

        assert len(table) == len(SEED_OBSERVATIONS)
        history = table.get_history("openai", "gpt-4o-mini")
        assert len(history) == 1
        assert history[0].sample_size == 10
        assert history[0].success_rate == 0.95

    def test_append_and_keys(self, clock):
        """Test manual appends and key listing."""
        table = PerformanceTable(clock=clock)
        table.append(
            PerformanceHistoryEntry(backend="anthropic", model="claude-3-haiku-20240307")
        )

        assert table.keys() == ["anthropic/claude-3-haiku-20240307"]
        assert len(table.latest()) == 1

    def test_clear(self, clock):
        """Test clear removes every key."""
        table = PerformanceTable(clock=clock)
        table.seed()
        table.clear()

        assert len(table) == 0
        assert table.keys() == []

    def test_make_key(self):
        """Test the backend/model key format."""
        assert make_key("openai", "gpt-4o") == "openai/gpt-4o"
