"""Tests for the belief grid, truth field and error taxonomy."""

from __future__ import annotations

import math

import numpy as np
import pytest

from src.core.errors import (
    EngineError,
    InvalidParameterError,
    NumericalDegenerateError,
    OutOfBoundsError,
)
from src.core.grid import PROB_MAX, PROB_MIN, Grid, ReconRecord, clamp_probability


def make_grid(width: int = 4, height: int = 3, p: float = 0.25) -> Grid:
    return Grid(
        posterior=np.full((height, width), p),
        hostile_prior_field=np.full((height, width), p),
        infra_prior=np.full((height, width), 0.05),
    )


def make_record(turn: int, sensor: str = "drone") -> ReconRecord:
    return ReconRecord(
        sensor=sensor,
        result=True,
        turn=turn,
        effective_tpr=0.8,
        effective_fpr=0.2,
        confidence=0.7,
        context_summary="open terrain",
        prior_probability=0.25,
        posterior_probability=0.57,
    )


class TestClampProbability:

    def test_scalar(self) -> None:
        assert clamp_probability(0.0) == PROB_MIN
        assert clamp_probability(1.0) == PROB_MAX
        assert clamp_probability(0.4) == 0.4

    def test_nan_maps_to_half(self) -> None:
        assert clamp_probability(math.nan) == 0.5

    def test_array(self) -> None:
        out = clamp_probability(np.array([-1.0, 0.3, 2.0, np.nan]))
        np.testing.assert_allclose(out, [PROB_MIN, 0.3, PROB_MAX, 0.5])


class TestGrid:

    def test_geometry(self) -> None:
        grid = make_grid(4, 3)
        assert (grid.width, grid.height, grid.shape) == (4, 3, (3, 4))
        assert list(grid.coordinates())[:5] == [(0, 0), (1, 0), (2, 0), (3, 0), (0, 1)]

    def test_posterior_clamped_on_construction(self) -> None:
        grid = Grid(
            posterior=np.array([[0.0, 1.0]]),
            hostile_prior_field=np.zeros((1, 2)),
            infra_prior=np.zeros((1, 2)),
        )
        np.testing.assert_allclose(grid.posterior, [[PROB_MIN, PROB_MAX]])

    def test_shape_mismatch_rejected(self) -> None:
        with pytest.raises(InvalidParameterError):
            Grid(
                posterior=np.zeros((2, 2)),
                hostile_prior_field=np.zeros((2, 3)),
                infra_prior=np.zeros((2, 2)),
            )

    def test_empty_rejected(self) -> None:
        with pytest.raises(InvalidParameterError):
            Grid(posterior=np.zeros((0, 0)), hostile_prior_field=np.zeros((0, 0)),
                 infra_prior=np.zeros((0, 0)))

    @pytest.mark.parametrize("x,y", [(-1, 0), (0, -1), (4, 0), (0, 3)])
    def test_out_of_bounds(self, x: int, y: int) -> None:
        grid = make_grid(4, 3)
        assert not grid.in_bounds(x, y)
        with pytest.raises(OutOfBoundsError):
            grid.require_in_bounds(x, y)
        with pytest.raises(IndexError):
            grid.cell(x, y)

    def test_cell_view(self) -> None:
        grid = make_grid()
        grid.set_posterior(1, 2, 0.9)
        grid.append_recon(1, 2, make_record(0))
        cell = grid.cell(1, 2)
        assert cell.posterior_probability == pytest.approx(0.9)
        assert cell.infra_prior_probability == pytest.approx(0.05)
        assert len(cell.recon_history) == 1

    def test_set_posterior_clamps(self) -> None:
        grid = make_grid()
        grid.set_posterior(0, 0, 1.5)
        assert grid.posterior[0, 0] == PROB_MAX

    def test_recent_recon_count_window(self) -> None:
        grid = make_grid()
        for turn, sensor in [(0, "drone"), (3, "drone"), (4, "sigint"), (5, "drone")]:
            grid.append_recon(2, 1, make_record(turn, sensor))
        assert grid.recent_recon_count(2, 1, current_turn=5, window=3) == 3
        assert grid.recent_recon_count(2, 1, current_turn=5, window=3, sensor="drone") == 2
        assert grid.recent_recon_count(2, 1, current_turn=5, window=1) == 1
        assert grid.recent_recon_count(0, 0, current_turn=5, window=3) == 0

    def test_copy_is_independent(self) -> None:
        grid = make_grid()
        clone = grid.copy()
        clone.set_posterior(0, 0, 0.9)
        clone.append_recon(0, 0, make_record(1))
        assert grid.posterior[0, 0] == pytest.approx(0.25)
        assert grid.recon_history[0][0] == []


class TestErrors:

    def test_hierarchy(self) -> None:
        assert issubclass(InvalidParameterError, EngineError)
        assert issubclass(OutOfBoundsError, EngineError)
        assert issubclass(NumericalDegenerateError, ArithmeticError)

    def test_out_of_bounds_message(self) -> None:
        err = OutOfBoundsError(5, -1, 4, 3)
        assert str(err) == "Cell (5, -1) is outside the 4x3 grid."
        assert (err.x, err.y, err.width, err.height) == (5, -1, 4, 3)
