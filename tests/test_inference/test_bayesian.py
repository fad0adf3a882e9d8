"""Tests for odds-space updating and spatial diffusion."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from src.core.config import DiffusionConfig
from src.core.errors import OutOfBoundsError
from src.core.grid import PROB_MAX, PROB_MIN
from src.inference.bayesian import (
    BayesianUpdater,
    apply_spatial_diffusion,
    likelihood_ratio,
    odds_to_probability,
    probability_to_odds,
    update_posterior,
)


@dataclass(frozen=True)
class FakeReading:
    result: bool
    effective_tpr: float = 0.8
    effective_fpr: float = 0.2


# ---------------------------------------------------------------------------
# Single-cell updates
# ---------------------------------------------------------------------------

class TestUpdatePosterior:
    """Closed-form odds updates."""

    def test_positive_reading_from_even_prior(self) -> None:
        assert update_posterior(0.5, True, 0.8, 0.2) == pytest.approx(0.8)

    def test_negative_reading_from_even_prior(self) -> None:
        assert update_posterior(0.5, False, 0.8, 0.2) == pytest.approx(0.2)

    def test_informative_sensor_moves_belief_in_reading_direction(self) -> None:
        assert update_posterior(0.25, True, 0.9, 0.1) > 0.25
        assert update_posterior(0.25, False, 0.9, 0.1) < 0.25

    def test_uninformative_sensor_leaves_belief(self) -> None:
        assert update_posterior(0.3, True, 0.4, 0.4) == pytest.approx(0.3)

    def test_likelihood_ratios(self) -> None:
        assert likelihood_ratio(True, 0.8, 0.2) == pytest.approx(4.0)
        assert likelihood_ratio(False, 0.8, 0.2) == pytest.approx(0.25)

    def test_odds_round_trip(self) -> None:
        assert odds_to_probability(probability_to_odds(0.37)) == pytest.approx(0.37)

    def test_degenerate_odds(self) -> None:
        assert odds_to_probability(math.inf) == PROB_MAX
        assert odds_to_probability(-3.0) == PROB_MIN
        assert odds_to_probability(math.nan) == PROB_MIN

    @given(
        prior=st.floats(min_value=0.0, max_value=1.0),
        result=st.booleans(),
        tpr=st.floats(min_value=0.0, max_value=1.0),
        fpr=st.floats(min_value=0.0, max_value=1.0),
    )
    @settings(max_examples=300, deadline=None)
    def test_posterior_stays_clamped(
        self, prior: float, result: bool, tpr: float, fpr: float
    ) -> None:
        posterior = update_posterior(prior, result, tpr, fpr)
        assert math.isfinite(posterior)
        assert PROB_MIN <= posterior <= PROB_MAX


# ---------------------------------------------------------------------------
# Diffusion
# ---------------------------------------------------------------------------

class TestDiffusion:
    """Neighbourhood propagation of log-odds changes."""

    def test_locality_and_monotone_decay(self) -> None:
        config = DiffusionConfig(kernel_size=2, diffusion_strength=0.3, distance_decay=1.5)
        posterior = np.full((7, 7), 0.25)
        out = apply_spatial_diffusion(posterior.copy(), 3, 3, 0.8, config)
        change = out - 0.25

        assert change[3, 3] == 0.0
        # Cells outside the 5x5 window are untouched.
        assert np.all(change[0, :] == 0.0) and np.all(change[:, 6] == 0.0)
        assert change[3, 4] > change[4, 4] > change[3, 5] > change[5, 5] > 0.0

    def test_negative_reading_lowers_neighbours(self) -> None:
        config = DiffusionConfig()
        out = apply_spatial_diffusion(np.full((3, 3), 0.5), 1, 1, 0.1, config)
        assert out[0, 0] < 0.5
        assert out[1, 1] == 0.5

    def test_zero_strength_is_noop(self) -> None:
        config = DiffusionConfig(diffusion_strength=0.0)
        posterior = np.full((5, 5), 0.25)
        out = apply_spatial_diffusion(posterior.copy(), 2, 2, 0.9, config)
        np.testing.assert_array_equal(out, posterior)

    def test_mutates_and_returns_owned_buffer(self) -> None:
        buffer = np.full((4, 4), 0.25)
        out = apply_spatial_diffusion(buffer, 0, 0, 0.9, DiffusionConfig())
        assert out is buffer
        assert buffer[1, 1] > 0.25

    def test_edge_cell_skips_missing_neighbours(self) -> None:
        out = apply_spatial_diffusion(np.full((2, 2), 0.25), 0, 0, 0.9, DiffusionConfig())
        assert out.shape == (2, 2)
        assert np.all(out[[0, 1, 1], [1, 0, 1]] > 0.25)

    def test_out_of_bounds(self) -> None:
        with pytest.raises(OutOfBoundsError):
            apply_spatial_diffusion(np.full((3, 3), 0.25), 3, 0, 0.9, DiffusionConfig())


class TestBayesianUpdater:

    def test_apply_sets_centre_and_diffuses(self) -> None:
        updater = BayesianUpdater(DiffusionConfig())
        buffer = np.full((3, 3), 0.5)
        out, posterior = updater.apply(buffer, 1, 1, FakeReading(result=True))
        assert posterior == pytest.approx(0.8)
        assert out[1, 1] == pytest.approx(0.8)
        assert 0.5 < out[0, 1] < 0.8

    def test_apply_out_of_bounds(self) -> None:
        with pytest.raises(OutOfBoundsError):
            BayesianUpdater().apply(np.full((3, 3), 0.5), -1, 0, FakeReading(result=True))
