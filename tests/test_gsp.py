# Copyright (c) Syntropy Systems
"""Tests for the Good Selection Procedure."""

import pytest

from winnow.errors import ConfigurationError
from winnow.models.experiment import Guarantee, Objective, ProcedureParameters
from winnow.procedures.gsp import (
    GSPProcedure,
    ScreeningConstants,
    group_best,
    grouped_screening,
    partition_groups,
    screen_group,
    survives,
)
from winnow.stats import ScenarioStats

CONSTANTS = ScreeningConstants(n1=20, rbar=5, eta=1.0)


def make_gsp(rinott_fn=None, eta_fn=None, **values):
    values.setdefault("indifference_zone", 1.0)
    params = ProcedureParameters.build(**values)
    kwargs = {}
    if rinott_fn is not None:
        kwargs["rinott_fn"] = rinott_fn
    if eta_fn is not None:
        kwargs["eta_fn"] = eta_fn
    return GSPProcedure(params, **kwargs)


def stats(mean, variance=1.0, count=20, batch=1):
    return ScenarioStats(mean=mean, variance=variance, sample_count=count, batch_size=batch)


class TestSurvives:
    """Tests for the pairwise comparison."""

    def test_clearly_worse_eliminated(self):
        """A mean far behind is screened out."""
        assert not survives(stats(0.0), stats(10.0), Objective.MAXIMIZE, CONSTANTS)
        assert survives(stats(10.0), stats(0.0), Objective.MAXIMIZE, CONSTANTS)

    def test_minimize(self):
        """With minimize the higher mean is the one eliminated."""
        assert not survives(stats(10.0), stats(0.0), Objective.MINIMIZE, CONSTANTS)
        assert survives(stats(0.0), stats(10.0), Objective.MINIMIZE, CONSTANTS)

    def test_equal_means_survive(self):
        """Ties never eliminate."""
        assert survives(stats(5.0), stats(5.0), Objective.MAXIMIZE, CONSTANTS)

    def test_small_difference_survives(self):
        """A gap inside the noise is not enough."""
        assert survives(stats(4.9, 25.0), stats(5.0, 25.0), Objective.MAXIMIZE, CONSTANTS)

    def test_zero_variance(self):
        """Without noise the sign of the difference decides."""
        assert not survives(stats(1.0, 0.0), stats(2.0, 0.0), Objective.MAXIMIZE, CONSTANTS)
        assert survives(stats(2.0, 0.0), stats(2.0, 0.0), Objective.MAXIMIZE, CONSTANTS)


class TestGrouping:
    """Tests for grouped screening."""

    def test_small_sets_in_one_group(self):
        """At or below the threshold everything is one group."""
        names = [f"s{i}" for i in range(100)]
        assert partition_groups(names) == [names]

    def test_round_robin(self):
        """Above the threshold names are dealt into isqrt(k) groups."""
        names = [f"s{i}" for i in range(121)]
        groups = partition_groups(names)

        assert len(groups) == 11
        assert all(len(g) == 11 for g in groups)
        assert groups[0][:3] == ["s0", "s11", "s22"]
        assert sorted(n for g in groups for n in g) == sorted(names)

    def test_group_best_tie_keeps_first(self):
        """Earlier entries win ties."""
        group = [("a", stats(1.0)), ("b", stats(1.0)), ("c", stats(0.5))]
        assert group_best(group, Objective.MAXIMIZE) == "a"
        assert group_best(group, Objective.MINIMIZE) == "c"

    def test_screen_group_is_pure(self):
        """Screening a group reports its best and its losers."""
        group = [("a", stats(10.0, 0.0)), ("b", stats(1.0, 0.0))]
        result = screen_group(group, [], Objective.MAXIMIZE, CONSTANTS)

        assert result.best == "a"
        assert result.eliminated == frozenset({"b"})

    def test_leaders_screen_across_groups(self):
        """A single strong scenario eliminates members of every group."""
        candidates = [(f"s{i}", stats(0.0, 0.0)) for i in range(120)]
        candidates.append(("star", stats(100.0, 0.0)))

        eliminated = grouped_screening(candidates, Objective.MAXIMIZE, CONSTANTS, workers=4)

        assert "star" not in eliminated
        assert len(eliminated) == 120

    def test_single_group_matches_direct_screen(self):
        """Below the threshold grouped screening is plain screening."""
        candidates = [("a", stats(10.0, 0.0)), ("b", stats(1.0, 0.0)), ("c", stats(10.0, 0.0))]

        eliminated = grouped_screening(candidates, Objective.MAXIMIZE, CONSTANTS)

        assert eliminated == frozenset({"b"})


class TestGSPProcedure:
    """Tests for running GSP against a host."""

    def test_constant_scenarios(self, fake_context):
        """Noise-free scenarios are settled by the first screen."""
        ctx = fake_context({"a": 10.0, "b": 5.0, "c": 7.0})

        outcome = make_gsp().run(ctx)

        assert outcome.guarantee is Guarantee.SELECTED
        assert outcome.best == "a"
        assert sorted(ctx.deactivated()) == ["b", "c"]
        assert ctx["a"].replications_required == 20
        assert outcome.waves == 1

    def test_minimize(self, fake_context):
        """With minimize the lowest mean is selected."""
        ctx = fake_context({"a": 10.0, "b": 5.0, "c": 7.0}, objective=Objective.MINIMIZE)

        outcome = make_gsp().run(ctx)

        assert outcome.best == "b"

    def test_noisy_winner_after_stage_three(self, fake_context):
        """Close noisy scenarios reach stage 3 and the best mean wins."""
        ctx = fake_context(
            {
                "a": lambda r: 10.2 + (-1) ** r,
                "b": lambda r: 10.0 - (-1) ** r,
            }
        )

        outcome = make_gsp(
            rinott_fn=lambda k, pstar, dof: 10.0,
            eta_fn=lambda n1, alpha, k: 50.0,
            replication_limit=200,
            batch_size=10,
            rbar=2,
        ).run(ctx)

        assert outcome.guarantee is Guarantee.SELECTED
        assert outcome.best == "a"
        assert ctx.deactivated() == ["b"]
        # stage 1, two stage-2 rounds, stage 3
        assert outcome.waves == 4

    def test_rinott_void(self, fake_context):
        """A Rinott size above the limit caps the request and voids the guarantee."""
        ctx = fake_context(
            {
                "a": lambda r: 0.0 if r % 2 else 100.0,
                "b": lambda r: 1.0 if r % 2 else 99.0,
            }
        )

        outcome = make_gsp(
            rinott_fn=lambda k, pstar, dof: 3.0,
            replication_limit=20,
        ).run(ctx)

        assert outcome.guarantee is Guarantee.RINOTT_VOID
        assert not outcome.guaranteed
        assert outcome.best == "a"
        assert ctx.deactivated() == []
        assert ctx["a"].replications_required == 20
        assert ctx["b"].replications_required == 20

    def test_injected_constants(self, fake_context):
        """eta and h are computed once from n1, alpha / 2 and the initial k."""
        calls = []

        def fake_eta(n1, alpha, k):
            calls.append(("eta", n1, alpha, k))
            return 1.0

        def fake_rinott(k, pstar, dof):
            calls.append(("rinott", k, pstar, dof))
            return 1.0

        ctx = fake_context({"a": 10.0, "b": 5.0, "c": 7.0})
        make_gsp(rinott_fn=fake_rinott, eta_fn=fake_eta, confidence_level=0.9).run(ctx)

        assert calls == [
            ("eta", 20, pytest.approx(0.05), 3),
            ("rinott", 3, pytest.approx(0.95), 19),
        ]

    def test_limit_below_first_stage(self, fake_context):
        """The limit must leave room for the first stage."""
        ctx = fake_context({"a": 10.0, "b": 5.0})

        with pytest.raises(ConfigurationError, match="first-stage"):
            make_gsp(replication_limit=15).run(ctx)
        assert ctx.submissions == []

    def test_cancellation(self, fake_context):
        """Cancellation during stage 1 changes no active flags."""
        ctx = fake_context({"a": 10.0, "b": 5.0}, cancel_after=5)

        outcome = make_gsp().run(ctx)

        assert outcome.guarantee is Guarantee.CANCELED
        assert ctx.deactivated() == []
        # Only the stage-1 wave was ever submitted
        assert outcome.waves == 1
        assert len(ctx.submissions) == 40
