"""Latent spatial fields and ground-truth sampling.

The hostile field theta(x, y) is produced in four steps:

1. zero-mean Gaussian noise with standard deviation ``noise_scale``;
2. Gaussian smoothing with sigma ``smoothing_sigma`` (correlation length);
3. a bias of ``logit(hostile_base_probability)``;
4. a logistic transform with slope ``logistic_steepness``.

The infrastructure field is the base rate with small multiplicative
Gaussian jitter.  Ground truth is one Bernoulli draw per cell from each
field, taken from a dedicated ``sampling`` sub-stream so that truth never
shares entropy with field synthesis.

Typical usage::

    generator = SpatialFieldGenerator(SpatialFieldConfig())
    truth = generator.generate_truth_field(14, 14, seed="daily-2024-05-01")
    grid = create_grid(truth, BetaPriorConfig())
"""

from __future__ import annotations

import math

import numpy as np
from loguru import logger
from numpy.typing import NDArray

from src.core.config import BetaPriorConfig, SpatialFieldConfig
from src.core.errors import InvalidParameterError
from src.core.grid import PROB_MAX, PROB_MIN, Grid, TruthField
from src.core.rng import SeededRNG, create_sub_rng

# JUSTIFIED: 10 % relative jitter keeps infrastructure near its base rate
# while still giving the collateral gate some spatial variation.
_INFRA_JITTER_STD: float = 0.1


class SpatialFieldGenerator:
    """Synthesises smoothed latent probability fields and ground truth.

    Args:
        config: Spatial field hyper-parameters.
    """

    def __init__(self, config: SpatialFieldConfig | None = None) -> None:
        self.config = config or SpatialFieldConfig()
        logger.info(
            "SpatialFieldGenerator initialised: sigma={}, base={}, infra={}",
            self.config.smoothing_sigma,
            self.config.hostile_base_probability,
            self.config.infra_base_probability,
        )

    def hostile_field(self, width: int, height: int, rng: SeededRNG) -> NDArray[np.float64]:
        """Generate theta(x, y), a spatially correlated field in ``(0, 1)``."""
        cfg = self.config
        noise = rng.gaussian_field(width, height, 0.0, cfg.noise_scale)
        smoothed = rng.smooth_field(noise, cfg.smoothing_sigma)

        base = cfg.hostile_base_probability
        biased = smoothed + math.log(base / (1.0 - base))
        return rng.logistic_transform(biased, cfg.logistic_steepness)

    def infrastructure_field(
        self, width: int, height: int, rng: SeededRNG
    ) -> NDArray[np.float64]:
        """Base rate with independent per-cell jitter, clamped to (0, 1)."""
        base = self.config.infra_base_probability
        field = np.empty((height, width), dtype=np.float64)
        for y in range(height):
            for x in range(width):
                variation = rng.normal(0.0, _INFRA_JITTER_STD)
                field[y, x] = min(PROB_MAX, max(PROB_MIN, base + variation * base))
        return field

    @staticmethod
    def sample_truth(
        hostile_field: NDArray[np.float64],
        infra_field: NDArray[np.float64],
        rng: SeededRNG,
    ) -> tuple[NDArray[np.bool_], NDArray[np.bool_]]:
        """Independent Bernoulli draw per cell from each field."""
        if hostile_field.shape != infra_field.shape:
            raise InvalidParameterError(
                f"Field shapes differ: {hostile_field.shape} vs {infra_field.shape}"
            )
        height, width = hostile_field.shape
        hostile_truth = np.zeros((height, width), dtype=bool)
        infra_truth = np.zeros((height, width), dtype=bool)
        for y in range(height):
            for x in range(width):
                hostile_truth[y, x] = rng.bernoulli(hostile_field[y, x])
                infra_truth[y, x] = rng.bernoulli(infra_field[y, x])
        return hostile_truth, infra_truth

    def generate_truth_field(self, width: int, height: int, seed: str) -> TruthField:
        """Generate the complete truth field for an episode seed.

        Each step draws from its own sub-stream (``hostiles``,
        ``infrastructure``, ``sampling``).
        """
        if width <= 0 or height <= 0:
            raise InvalidParameterError(
                f"Grid dimensions must be positive; got {width}x{height}"
            )

        hostile = self.hostile_field(width, height, create_sub_rng(seed, "hostiles"))
        infra = self.infrastructure_field(
            width, height, create_sub_rng(seed, "infrastructure")
        )
        hostile_truth, infra_truth = self.sample_truth(
            hostile, infra, create_sub_rng(seed, "sampling")
        )

        logger.debug(
            "Truth field {}x{}: {} hostiles, {} infrastructure cells (mean theta={:.3f})",
            width,
            height,
            int(hostile_truth.sum()),
            int(infra_truth.sum()),
            float(hostile.mean()),
        )
        return TruthField(
            hostile_field=hostile,
            infra_field=infra,
            hostile_truth=hostile_truth,
            infra_truth=infra_truth,
        )


# ---------------------------------------------------------------------------
# Priors and grid construction
# ---------------------------------------------------------------------------

def initialize_beta_priors(
    width: int,
    height: int,
    config: BetaPriorConfig,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Prior belief grids set to the Beta means ``alpha / (alpha + beta)``."""
    hostile = np.full((height, width), config.hostile_mean, dtype=np.float64)
    infra = np.full((height, width), config.infra_mean, dtype=np.float64)
    return hostile, infra


def create_grid(truth: TruthField, beta_config: BetaPriorConfig) -> Grid:
    """Build the initial belief grid for an episode.

    Posterior beliefs start at the hostile Beta prior mean; theta(x, y) and
    the infrastructure field are copied in as static per-cell priors.
    """
    height, width = truth.shape
    hostile_priors, _ = initialize_beta_priors(width, height, beta_config)
    return Grid(
        posterior=hostile_priors,
        hostile_prior_field=truth.hostile_field.copy(),
        infra_prior=truth.infra_field.copy(),
    )


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------

def spatial_correlation(
    field_a: NDArray[np.float64],
    field_b: NDArray[np.float64],
) -> float:
    """Pearson correlation between two equally shaped fields.

    Returns 0.0 when either field is constant.
    """
    a = np.asarray(field_a, dtype=np.float64).ravel()
    b = np.asarray(field_b, dtype=np.float64).ravel()
    if a.shape != b.shape:
        raise InvalidParameterError(
            f"Fields must have the same size ({a.size} != {b.size})"
        )

    da = a - a.mean()
    db = b - b.mean()
    denominator = math.sqrt(float(np.dot(da, da)) * float(np.dot(db, db)))
    if denominator == 0:
        return 0.0
    return float(np.dot(da, db)) / denominator


def spatial_accuracy(
    posterior_field: NDArray[np.float64],
    truth_field: NDArray[np.float64],
    threshold: float = 0.5,
) -> float:
    """Fraction of cells where thresholded belief matches thresholded truth."""
    predicted = np.asarray(posterior_field, dtype=np.float64) > threshold
    actual = np.asarray(truth_field, dtype=np.float64) > threshold
    if predicted.shape != actual.shape:
        raise InvalidParameterError(
            f"Fields must have the same shape ({predicted.shape} != {actual.shape})"
        )
    if predicted.size == 0:
        return 0.0
    return float(np.mean(predicted == actual))
