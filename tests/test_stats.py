# Copyright (c) Syntropy Systems
"""Tests for sample statistics and batch sizing."""

import math

import pytest

from winnow.errors import HostDataError
from winnow.stats import (
    ScenarioStats,
    StatsTracker,
    calc_batch_sizes,
    collect_replication_values,
)


class TestScenarioStats:
    """Tests for ScenarioStats."""

    def test_from_values(self):
        """Mean and unbiased variance of raw values."""
        stats = ScenarioStats.from_values([1.0, 2.0, 3.0])

        assert stats.mean == pytest.approx(2.0)
        assert stats.variance == pytest.approx(1.0)
        assert stats.sample_count == 3
        assert stats.batch_size == 1

    def test_single_value_has_zero_variance(self):
        """One value gives a mean but no spread."""
        stats = ScenarioStats.from_values([4.0])
        assert stats.variance == 0.0

    def test_empty_rejected(self):
        """Statistics of nothing are an error."""
        with pytest.raises(ValueError, match="empty"):
            ScenarioStats.from_values([])

    def test_invalid_fields_rejected(self):
        """Counts below one and negative variances are rejected."""
        with pytest.raises(ValueError):
            ScenarioStats(mean=0.0, variance=1.0, sample_count=0)
        with pytest.raises(ValueError):
            ScenarioStats(mean=0.0, variance=-1.0, sample_count=2)

    def test_with_mean_keeps_variance(self):
        """Refreshing the mean leaves variance and batch size alone."""
        stats = ScenarioStats(mean=1.0, variance=2.0, sample_count=20, batch_size=7)
        updated = stats.with_mean(3.0, 27)

        assert updated.mean == 3.0
        assert updated.sample_count == 27
        assert updated.variance == 2.0
        assert updated.batch_size == 7


class TestStatsTracker:
    """Tests for StatsTracker."""

    def test_update_and_lookup(self):
        """Tracked scenarios can be read back."""
        tracker = StatsTracker()
        stats = ScenarioStats.from_values([1.0, 2.0])
        tracker.update("a", stats)

        assert tracker["a"] == stats
        assert "a" in tracker
        assert len(tracker) == 1
        assert list(tracker) == ["a"]

    def test_discarded_never_tracked_again(self):
        """An eliminated scenario cannot come back."""
        tracker = StatsTracker()
        tracker.update("a", ScenarioStats.from_values([1.0, 2.0]))
        tracker.discard("a")

        assert tracker.get("a") is None
        with pytest.raises(ValueError, match="eliminated"):
            tracker.update("a", ScenarioStats.from_values([1.0, 2.0]))


class TestCollectReplicationValues:
    """Tests for reading per-replication values from the host."""

    def test_shape_and_values(self, fake_context):
        """Rows are scenarios, columns replications 1..n."""
        ctx = fake_context({"a": lambda r: float(r), "b": 5.0})
        for scenario in ctx.scenarios:
            scenario.replications_completed = 3

        values = collect_replication_values(ctx, ctx.scenarios, ctx.responses[0], 3)

        assert values.shape == (2, 3)
        assert values[0].tolist() == [1.0, 2.0, 3.0]
        assert values[1].tolist() == [5.0, 5.0, 5.0]

    def test_missing_value(self, fake_context):
        """A missing value names the scenario and replication."""
        ctx = fake_context({"a": lambda r: None if r == 2 else 1.0})
        ctx["a"].replications_completed = 3

        with pytest.raises(HostDataError, match="replication 2"):
            collect_replication_values(ctx, ctx.scenarios, ctx.responses[0], 3)

    def test_nan_value(self, fake_context):
        """NaN counts as missing."""
        ctx = fake_context({"a": math.nan})
        ctx["a"].replications_completed = 1

        with pytest.raises(HostDataError):
            collect_replication_values(ctx, ctx.scenarios, ctx.responses[0], 1)


class TestCalcBatchSizes:
    """Tests for GSP batch sizing."""

    def test_proportional_to_noise(self):
        """Noisier scenarios get larger batches."""
        assert calc_batch_sizes([4.0, 1.0], [1.0, 1.0], 10) == [14, 7]

    def test_run_time_weights(self):
        """Slower scenarios get smaller batches."""
        assert calc_batch_sizes([4.0, 4.0], [4.0, 1.0], 10) == [7, 14]

    def test_total_at_least_default(self):
        """Rounding up never shrinks the total below default * k."""
        variances = [0.3, 2.5, 9.0, 0.01, 1.0]
        sizes = calc_batch_sizes(variances, [1.0] * 5, 50)

        assert sum(sizes) >= 50 * len(variances)
        assert all(size >= 1 for size in sizes)

    def test_zero_variance(self):
        """Noise-free scenarios all get the default batch."""
        assert calc_batch_sizes([0.0, 0.0, 0.0], [1.0, 1.0, 1.0], 50) == [50, 50, 50]

    def test_mixed_zero_variance(self):
        """A noise-free scenario still gets a batch of at least one."""
        sizes = calc_batch_sizes([0.0, 4.0], [1.0, 1.0], 10)
        assert sizes == [1, 20]

    def test_length_mismatch(self):
        """Variances and weights must line up."""
        with pytest.raises(ValueError):
            calc_batch_sizes([1.0, 2.0], [1.0], 10)

    def test_empty(self):
        """No scenarios, no batches."""
        assert calc_batch_sizes([], [], 10) == []
