"""Tests for area-of-effect strike evaluation, validation and execution."""

from __future__ import annotations

import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from src.core.config import EngineConfig
from src.core.errors import InvalidParameterError, OutOfBoundsError
from src.core.grid import Grid, TruthField
from src.decision.strike import StrikeEvaluator, aoe_cells, aoe_max, aoe_sum, diamond_kernel


def uniform_grid(width: int = 5, height: int = 5, p: float = 0.5, infra: float = 0.05) -> Grid:
    return Grid(
        posterior=np.full((height, width), p),
        hostile_prior_field=np.full((height, width), p),
        infra_prior=np.full((height, width), infra),
    )


def random_grid(seed: int, width: int, height: int) -> Grid:
    rng = np.random.default_rng(seed)
    return Grid(
        posterior=rng.uniform(0.01, 0.99, (height, width)),
        hostile_prior_field=rng.uniform(0.0, 1.0, (height, width)),
        infra_prior=rng.uniform(0.0, 0.2, (height, width)),
    )


@pytest.fixture
def evaluator() -> StrikeEvaluator:
    return StrikeEvaluator(EngineConfig(seed="strike"))


# ---------------------------------------------------------------------------
# Area of effect
# ---------------------------------------------------------------------------

class TestAreaOfEffect:

    def test_interior_diamond(self) -> None:
        cells = aoe_cells(2, 2, 1, 5, 5)
        assert sorted(cells) == [(1, 2), (2, 1), (2, 2), (2, 3), (3, 2)]

    def test_corner_is_clipped_not_wrapped(self) -> None:
        assert sorted(aoe_cells(0, 0, 1, 5, 5)) == [(0, 0), (0, 1), (1, 0)]

    def test_radius_zero_is_centre_only(self) -> None:
        assert aoe_cells(3, 1, 0, 5, 5) == [(3, 1)]

    def test_radius_two_cell_count(self) -> None:
        assert len(aoe_cells(4, 4, 2, 9, 9)) == 13
        assert diamond_kernel(2).sum() == 13

    def test_negative_radius(self) -> None:
        with pytest.raises(InvalidParameterError):
            aoe_cells(0, 0, -1, 5, 5)

    def test_aoe_sum_on_stack(self) -> None:
        stack = np.ones((3, 4, 4))
        sums = aoe_sum(stack, 1)
        assert sums.shape == (3, 4, 4)
        assert sums[0, 0, 0] == 3.0
        assert sums[2, 1, 1] == 5.0

    def test_aoe_max(self) -> None:
        values = np.zeros((5, 5))
        values[2, 3] = 0.4
        out = aoe_max(values, 1)
        assert out[2, 2] == pytest.approx(0.4)
        assert out[0, 0] == 0.0


# ---------------------------------------------------------------------------
# Expected value
# ---------------------------------------------------------------------------

class TestStrikeEV:

    def test_interior_value(self, evaluator: StrikeEvaluator) -> None:
        outcome = evaluator.calculate_strike_ev(uniform_grid(), 2, 2)
        assert outcome.expected_hostiles_hit == pytest.approx(2.5)
        assert outcome.expected_infra_hit == pytest.approx(0.25)
        assert outcome.expected_value == pytest.approx(250.0 - 50.0 - 50.0)
        assert len(outcome.affected_cells) == 5

    def test_corner_value(self, evaluator: StrikeEvaluator) -> None:
        outcome = evaluator.calculate_strike_ev(uniform_grid(), 0, 0)
        assert outcome.expected_value == pytest.approx(150.0 - 30.0 - 50.0)

    def test_collateral_risk_is_max_cell(self, evaluator: StrikeEvaluator) -> None:
        grid = uniform_grid()
        grid.infra_prior[2, 3] = 0.3
        assert evaluator.calculate_strike_ev(grid, 2, 2).collateral_risk == pytest.approx(0.3)

    def test_out_of_bounds(self, evaluator: StrikeEvaluator) -> None:
        with pytest.raises(OutOfBoundsError):
            evaluator.calculate_strike_ev(uniform_grid(), 5, 0)

    @given(
        seed=st.integers(min_value=0, max_value=10_000),
        width=st.integers(min_value=1, max_value=8),
        height=st.integers(min_value=1, max_value=8),
        radius=st.integers(min_value=0, max_value=3),
    )
    @settings(max_examples=40, deadline=None)
    def test_heatmap_matches_per_cell_ev(
        self, seed: int, width: int, height: int, radius: int
    ) -> None:
        evaluator = StrikeEvaluator(EngineConfig(seed="strike"))
        grid = random_grid(seed, width, height)
        heatmap = evaluator.generate_ev_heatmap(grid, radius)
        for x, y in grid.coordinates():
            expected = evaluator.calculate_strike_ev(grid, x, y, radius).expected_value
            assert heatmap[y, x] == pytest.approx(expected, abs=1e-9)

    def test_collateral_heatmap_matches_per_cell(self, evaluator: StrikeEvaluator) -> None:
        grid = random_grid(7, 6, 4)
        heatmap = evaluator.collateral_heatmap(grid)
        for x, y in grid.coordinates():
            assert heatmap[y, x] == pytest.approx(
                evaluator.calculate_strike_ev(grid, x, y).infra_hit_probability
            )

    def test_optimal_strike(self, evaluator: StrikeEvaluator) -> None:
        grid = uniform_grid(p=0.1)
        grid.posterior[3, 1] = 0.95
        x, y, ev = evaluator.find_optimal_strike(grid, radius=0)
        assert (x, y) == (1, 3)
        assert ev == pytest.approx(
            evaluator.calculate_strike_ev(grid, 1, 3, radius=0).expected_value
        )

    def test_optimal_strike_breaks_ties_row_major(self, evaluator: StrikeEvaluator) -> None:
        grid = uniform_grid()
        x, y, _ = evaluator.find_optimal_strike(grid)
        assert (x, y) == (1, 1)


# ---------------------------------------------------------------------------
# Validation and execution
# ---------------------------------------------------------------------------

class TestValidation:

    def test_approved(self, evaluator: StrikeEvaluator) -> None:
        verdict = evaluator.validate_strike(uniform_grid(), 2, 2)
        assert verdict.allowed and not verdict.requires_confirmation
        assert verdict.reason == "Strike approved"

    def test_collateral_block(self, evaluator: StrikeEvaluator) -> None:
        grid = uniform_grid()
        grid.infra_prior[2, 2] = 0.25
        verdict = evaluator.validate_strike(grid, 2, 2)
        assert not verdict.allowed
        assert verdict.requires_confirmation
        assert "collateral" in verdict.reason

    def test_budget_block(self, evaluator: StrikeEvaluator) -> None:
        verdict = evaluator.validate_strike(uniform_grid(), 2, 2, remaining_budget=10)
        assert not verdict.allowed
        assert not verdict.requires_confirmation

    def test_negative_ev_needs_confirmation(self, evaluator: StrikeEvaluator) -> None:
        verdict = evaluator.validate_strike(uniform_grid(p=0.01), 2, 2)
        assert verdict.allowed
        assert verdict.requires_confirmation
        assert verdict.outcome.expected_value < 0


class TestExecution:

    def make_truth(self) -> TruthField:
        hostile = np.zeros((4, 4), dtype=bool)
        infra = np.zeros((4, 4), dtype=bool)
        hostile[1, 1] = hostile[1, 2] = hostile[3, 3] = True
        infra[0, 1] = True
        return TruthField(
            hostile_field=np.full((4, 4), 0.25),
            infra_field=np.full((4, 4), 0.05),
            hostile_truth=hostile,
            infra_truth=infra,
        )

    def test_scores_and_neutralises(self, evaluator: StrikeEvaluator) -> None:
        truth = self.make_truth()
        result = evaluator.execute_strike(truth, 1, 1)
        assert result.hostiles_hit == 2
        assert result.infra_hit == 1
        assert result.net_points == pytest.approx(200.0 - 200.0 - 50.0)
        assert not truth.has_hostile(1, 1) and not truth.has_hostile(2, 1)
        assert truth.has_hostile(3, 3)
        assert truth.has_infrastructure(1, 0)

    def test_second_strike_finds_nothing(self, evaluator: StrikeEvaluator) -> None:
        truth = self.make_truth()
        evaluator.execute_strike(truth, 1, 1)
        assert evaluator.execute_strike(truth, 1, 1).hostiles_hit == 0

    def test_out_of_bounds(self, evaluator: StrikeEvaluator) -> None:
        with pytest.raises(OutOfBoundsError):
            evaluator.execute_strike(self.make_truth(), 0, 4)
