"""Tests for the nested-simulation value-of-information estimator.

Grids are kept at 5x5 with a handful of samples so that full sweeps stay
fast.
"""

from __future__ import annotations

import numpy as np
import pytest

from src.core.config import EngineConfig
from src.core.errors import InvalidParameterError, OutOfBoundsError
from src.core.grid import Grid, ReconRecord, TruthField
from src.core.rng import create_sub_rng
from src.decision.strike import StrikeEvaluator
from src.decision.voi import ValueOfInformationEstimator
from src.sensors.sensor_model import ContextModifiers, SensorModel, SensorSpec, SensorType

SEED = "voi-test"


def make_grid(p: float = 0.25) -> Grid:
    return Grid(
        posterior=np.full((5, 5), p),
        hostile_prior_field=np.full((5, 5), p),
        infra_prior=np.full((5, 5), 0.05),
    )


def dominated_grid() -> Grid:
    """Strong cluster around the centre; the corner cannot change the best strike."""
    grid = make_grid(p=0.01)
    for x, y in [(2, 2), (1, 2), (3, 2), (2, 1), (2, 3)]:
        grid.posterior[y, x] = 0.9
    return grid


def crisp_sensor_model() -> SensorModel:
    """Drone with fixed 0.9 / 0.1 rates and cost 10 in every context."""
    spec = SensorSpec(
        name="Crisp drone",
        description="Context-free drone",
        base_tpr=0.9,
        base_fpr=0.1,
        base_cost=10,
        tpr_modifiers=ContextModifiers(),
        fpr_modifiers=ContextModifiers(),
        cost_modifiers=ContextModifiers(),
    )
    return SensorModel({SensorType.DRONE: spec})


def contested_grid() -> Grid:
    """Two close single-cell strikes; a reading on either can flip the best one."""
    grid = Grid(
        posterior=np.full((5, 5), 0.001),
        hostile_prior_field=np.full((5, 5), 0.001),
        infra_prior=np.zeros((5, 5)),
    )
    grid.posterior[1, 1] = 0.6
    grid.posterior[3, 3] = 0.55
    return grid


def record(turn: int) -> ReconRecord:
    return ReconRecord("drone", False, turn, 0.8, 0.2, 0.6, "open terrain", 0.25, 0.1)


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(seed=SEED, grid_width=5, grid_height=5, voi_samples=6)


@pytest.fixture
def estimator(config: EngineConfig) -> ValueOfInformationEstimator:
    return ValueOfInformationEstimator(config)


# ---------------------------------------------------------------------------
# Single candidate
# ---------------------------------------------------------------------------

class TestEstimate:

    def test_deterministic(self, estimator: ValueOfInformationEstimator) -> None:
        grid = make_grid()
        a = estimator.estimate(grid, 2, 2, SensorType.DRONE)
        b = estimator.estimate(grid, 2, 2, SensorType.DRONE)
        assert a == b
        assert a.num_samples == 6

    def test_grid_not_modified(self, estimator: ValueOfInformationEstimator) -> None:
        grid = make_grid()
        before = grid.posterior.copy()
        estimator.estimate(grid, 1, 3, "sigint")
        np.testing.assert_array_equal(grid.posterior, before)

    def test_baseline_is_best_strike(
        self, config: EngineConfig, estimator: ValueOfInformationEstimator
    ) -> None:
        grid = dominated_grid()
        analysis = estimator.estimate(grid, 0, 0, "drone")
        _, _, best = StrikeEvaluator(config).find_optimal_strike(grid)
        assert analysis.current_ev == pytest.approx(best)

    def test_irrelevant_cell_has_zero_value(self, estimator: ValueOfInformationEstimator) -> None:
        analysis = estimator.estimate(dominated_grid(), 4, 4, "drone")
        assert analysis.value_of_information == pytest.approx(0.0, abs=1e-9)
        assert analysis.net_voi == pytest.approx(-analysis.recon_cost)

    def test_cost_from_cell_context(self, estimator: ValueOfInformationEstimator) -> None:
        analysis = estimator.estimate(make_grid(), 3, 1, "ground")
        model = SensorModel()
        context = model.generate_context(create_sub_rng(SEED, "voi-context-3-1"))
        expected = model.effective_performance("ground", context).effective_cost
        assert analysis.recon_cost == expected
        assert analysis.net_voi == pytest.approx(analysis.value_of_information - expected)

    def test_truth_conditioned_is_deterministic(
        self, estimator: ValueOfInformationEstimator
    ) -> None:
        grid = make_grid()
        a = estimator.estimate(grid, 2, 2, "drone", true_presence=True)
        b = estimator.estimate(grid, 2, 2, "drone", true_presence=True)
        assert a == b

    def test_sample_count_override(self, estimator: ValueOfInformationEstimator) -> None:
        assert estimator.estimate(make_grid(), 0, 0, "drone", num_samples=2).num_samples == 2

    def test_invalid_sample_count(self, estimator: ValueOfInformationEstimator) -> None:
        with pytest.raises(InvalidParameterError):
            estimator.estimate(make_grid(), 0, 0, "drone", num_samples=0)

    def test_out_of_bounds(self, estimator: ValueOfInformationEstimator) -> None:
        with pytest.raises(OutOfBoundsError):
            estimator.estimate(make_grid(), 5, 5, "drone")

    def test_unknown_sensor(self, estimator: ValueOfInformationEstimator) -> None:
        with pytest.raises(InvalidParameterError, match="satellite"):
            estimator.estimate(make_grid(), 1, 1, "satellite")

    def test_failure_returned_as_value(self, estimator: ValueOfInformationEstimator) -> None:
        outcome = estimator.evaluate_candidate(make_grid(), -1, 0, "drone")
        assert not outcome.ok
        assert outcome.analysis is None
        assert "outside" in outcome.error


# ---------------------------------------------------------------------------
# Sweeps
# ---------------------------------------------------------------------------

class TestSweep:

    def test_covers_every_cell(self, estimator: ValueOfInformationEstimator) -> None:
        outcomes = estimator.sweep(make_grid(), "drone", num_samples=2)
        assert len(outcomes) == 25
        assert all(o.ok for o in outcomes)
        assert [(o.x, o.y) for o in outcomes][:3] == [(0, 0), (1, 0), (2, 0)]

    def test_skips_heavily_reconnoitred_cells(
        self, estimator: ValueOfInformationEstimator
    ) -> None:
        grid = make_grid()
        grid.append_recon(0, 0, record(0))
        grid.append_recon(0, 0, record(1))
        grid.append_recon(1, 0, record(1))
        outcomes = estimator.sweep(grid, "drone", current_turn=1, num_samples=2)
        coords = {(o.x, o.y) for o in outcomes}
        assert (0, 0) not in coords
        assert (1, 0) in coords

    def test_old_readings_do_not_count(self, estimator: ValueOfInformationEstimator) -> None:
        grid = make_grid()
        grid.append_recon(0, 0, record(0))
        grid.append_recon(0, 0, record(1))
        outcomes = estimator.sweep(grid, "drone", current_turn=6, num_samples=2)
        assert len(outcomes) == 25

    def test_truth_drives_conditioning(self, estimator: ValueOfInformationEstimator) -> None:
        grid = make_grid()
        truth = TruthField(
            hostile_field=np.full((5, 5), 0.25),
            infra_field=np.full((5, 5), 0.05),
            hostile_truth=np.ones((5, 5), dtype=bool),
            infra_truth=np.zeros((5, 5), dtype=bool),
        )
        outcomes = estimator.sweep(grid, "drone", num_samples=3, truth=truth)
        centre = next(o for o in outcomes if (o.x, o.y) == (2, 2))
        direct = estimator.estimate(grid, 2, 2, "drone", num_samples=3, true_presence=True)
        assert centre.analysis == direct

    def test_unknown_sensor_raises_once(self, estimator: ValueOfInformationEstimator) -> None:
        with pytest.raises(InvalidParameterError):
            estimator.sweep(make_grid(), "satellite", num_samples=2)

    def test_heatmap_non_negative(self, estimator: ValueOfInformationEstimator) -> None:
        heatmap = estimator.generate_voi_heatmap(make_grid(), "drone", num_samples=2)
        assert heatmap.shape == (5, 5)
        assert np.all(heatmap >= 0.0)

    def test_optimal_recon_is_positive_or_none(
        self, estimator: ValueOfInformationEstimator
    ) -> None:
        best = estimator.find_optimal_recon(make_grid(), "drone", num_samples=3)
        if best is not None:
            x, y, value = best
            assert value > 0
            heatmap = estimator.generate_voi_heatmap(make_grid(), "drone", num_samples=3)
            assert heatmap[y, x] == pytest.approx(heatmap.max())

    def test_no_candidate_when_all_skipped(
        self, estimator: ValueOfInformationEstimator
    ) -> None:
        grid = make_grid()
        for x, y in grid.coordinates():
            grid.append_recon(x, y, record(2))
            grid.append_recon(x, y, record(3))
        assert estimator.sweep(grid, "drone", current_turn=3) == []
        assert estimator.find_optimal_recon(grid, "drone", current_turn=3) is None
        assert not estimator.generate_voi_heatmap(grid, "drone", current_turn=3).any()


# ---------------------------------------------------------------------------
# Decision-relevant reconnaissance
# ---------------------------------------------------------------------------

class TestContestedStrike:
    """Strike values 100 at (1, 1) and 50 at (3, 3); every other cell is hopeless."""

    @pytest.fixture
    def contested(self) -> ValueOfInformationEstimator:
        config = EngineConfig(
            seed=SEED,
            grid_width=5,
            grid_height=5,
            hostile_value=1000,
            strike_cost=500,
            strike_radius=0,
            voi_samples=20,
        )
        return ValueOfInformationEstimator(config, crisp_sensor_model())

    def test_baseline(self, contested: ValueOfInformationEstimator) -> None:
        analysis = contested.estimate(contested_grid(), 3, 3, "drone")
        assert analysis.current_ev == pytest.approx(100.0)
        assert analysis.recon_cost == 10

    def test_pivotal_cells_are_worth_a_look(
        self, contested: ValueOfInformationEstimator
    ) -> None:
        best = contested.find_optimal_recon(contested_grid(), "drone")
        assert best is not None
        x, y, value = best
        assert (x, y) in {(1, 1), (3, 3)}
        assert value > 0
        direct = contested.estimate(contested_grid(), x, y, "drone")
        assert direct.net_voi == pytest.approx(value)

    def test_hopeless_cells_only_pay_the_cost(
        self, contested: ValueOfInformationEstimator
    ) -> None:
        analysis = contested.estimate(contested_grid(), 0, 4, "drone")
        assert analysis.value_of_information == pytest.approx(0.0)
        assert analysis.net_voi == pytest.approx(-10.0)

    def test_heatmap_marks_only_pivotal_cells(
        self, contested: ValueOfInformationEstimator
    ) -> None:
        heatmap = contested.generate_voi_heatmap(contested_grid(), "drone")
        positive = {(int(x), int(y)) for y, x in zip(*np.nonzero(heatmap))}
        assert positive == {(1, 1), (3, 3)}

    def test_single_reading_is_self_normalised(
        self, contested: ValueOfInformationEstimator
    ) -> None:
        # One reading on (3, 3): positive lifts it to 11/12 (EV 416.7), negative
        # leaves (1, 1) best at 100. The weight cancels out of the mean.
        analysis = contested.estimate(contested_grid(), 3, 3, "drone", num_samples=1)
        outcomes = (1000 * 11 / 12 - 500, 100.0)
        assert min(abs(analysis.expected_ev_after_recon - v) for v in outcomes) < 1e-6
