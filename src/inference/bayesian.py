"""Odds-space Bayesian updating with spatial diffusion.

A reading with effective rates (TPR, FPR) multiplies the prior odds by the
likelihood ratio::

    positive reading:  LR = TPR / FPR
    negative reading:  LR = (1 - TPR) / (1 - FPR)

Probabilities are clamped to ``[0.001, 0.999]`` on the way into and out of
odds space so a single corrupted cell cannot produce infinities.

After the target cell is updated, a decayed fraction of its log-odds change
is added to each neighbour within ``kernel_size`` (Chebyshev window) with
weight ``diffusion_strength * exp(-euclidean_distance / distance_decay)``.
This is a cheap stand-in for correlated terrain evidence.

Typical usage::

    updater = BayesianUpdater(DiffusionConfig())
    posterior = updater.update(grid.posterior[y, x], reading)
    grid.posterior = updater.diffuse(grid.posterior, x, y, posterior)
"""

from __future__ import annotations

import math
from typing import Protocol

import numpy as np
from loguru import logger
from numpy.typing import NDArray

from src.core.config import DiffusionConfig
from src.core.errors import OutOfBoundsError
from src.core.grid import PROB_MAX, PROB_MIN, clamp_probability


class Evidence(Protocol):
    """Anything carrying a binary result and the rates it was drawn with."""

    result: bool
    effective_tpr: float
    effective_fpr: float


def probability_to_odds(p: float) -> float:
    clamped = clamp_probability(p)
    return clamped / (1.0 - clamped)


def odds_to_probability(odds: float) -> float:
    if odds != odds or odds < 0:  # NaN or negative
        odds = 0.0
    if math.isinf(odds):
        return PROB_MAX
    return clamp_probability(odds / (1.0 + odds))


def log_odds(p: float) -> float:
    return math.log(probability_to_odds(p))


def likelihood_ratio(result: bool, tpr: float, fpr: float) -> float:
    """Ratio ``P(reading | hostile) / P(reading | no hostile)``."""
    tpr = min(PROB_MAX, max(PROB_MIN, tpr))
    fpr = min(PROB_MAX, max(PROB_MIN, fpr))
    if result:
        return tpr / fpr
    return (1.0 - tpr) / (1.0 - fpr)


def update_posterior(prior: float, result: bool, tpr: float, fpr: float) -> float:
    """Posterior ``P(hostile)`` after a single reading."""
    return odds_to_probability(probability_to_odds(prior) * likelihood_ratio(result, tpr, fpr))


def update_posterior_odds(prior: float, reading: Evidence) -> float:
    """Posterior after *reading*; see :func:`update_posterior`."""
    return update_posterior(prior, reading.result, reading.effective_tpr, reading.effective_fpr)


def apply_spatial_diffusion(
    owned_posterior: NDArray[np.float64],
    x: int,
    y: int,
    updated_probability: float,
    config: DiffusionConfig,
) -> NDArray[np.float64]:
    """Spread a belief change at ``(x, y)`` into its neighbourhood.

    The caller hands over ownership of *owned_posterior*: it is mutated in
    place and returned.  Pass a copy if the buffer is shared.  The centre
    cell itself is left untouched; the log-odds delta is measured against
    its current (pre-update) value.

    Args:
        owned_posterior: ``(height, width)`` posterior buffer.
        x: Column of the updated cell.
        y: Row of the updated cell.
        updated_probability: New belief for the centre cell.
        config: Diffusion kernel parameters.

    Returns:
        The same array object, with neighbours updated.

    Raises:
        OutOfBoundsError: If ``(x, y)`` lies outside the buffer.
    """
    height, width = owned_posterior.shape
    if not (0 <= x < width and 0 <= y < height):
        raise OutOfBoundsError(x, y, width, height)

    delta = log_odds(updated_probability) - log_odds(float(owned_posterior[y, x]))
    if delta == 0.0 or config.diffusion_strength == 0.0:
        return owned_posterior

    k = config.kernel_size
    for dy in range(-k, k + 1):
        for dx in range(-k, k + 1):
            if dx == 0 and dy == 0:
                continue
            nx, ny = x + dx, y + dy
            if not (0 <= nx < width and 0 <= ny < height):
                continue

            distance = math.sqrt(dx * dx + dy * dy)
            weight = config.diffusion_strength * math.exp(-distance / config.distance_decay)
            neighbour = log_odds(float(owned_posterior[ny, nx])) + delta * weight
            owned_posterior[ny, nx] = odds_to_probability(math.exp(neighbour))

    return owned_posterior


class BayesianUpdater:
    """Per-cell odds-space updates plus neighbourhood diffusion.

    Args:
        diffusion: Diffusion kernel parameters.
    """

    def __init__(self, diffusion: DiffusionConfig | None = None) -> None:
        self.diffusion = diffusion or DiffusionConfig()
        logger.debug(
            "BayesianUpdater initialised: kernel={}, strength={}, decay={}",
            self.diffusion.kernel_size,
            self.diffusion.diffusion_strength,
            self.diffusion.distance_decay,
        )

    @staticmethod
    def update(prior: float, reading: Evidence) -> float:
        return update_posterior_odds(prior, reading)

    def diffuse(
        self,
        owned_posterior: NDArray[np.float64],
        x: int,
        y: int,
        updated_probability: float,
    ) -> NDArray[np.float64]:
        return apply_spatial_diffusion(
            owned_posterior, x, y, updated_probability, self.diffusion
        )

    def apply(
        self,
        owned_posterior: NDArray[np.float64],
        x: int,
        y: int,
        reading: Evidence,
    ) -> tuple[NDArray[np.float64], float]:
        """Update ``(x, y)`` from *reading* and diffuse the change.

        Returns:
            Tuple of the mutated buffer and the centre cell's new belief.
        """
        height, width = owned_posterior.shape
        if not (0 <= x < width and 0 <= y < height):
            raise OutOfBoundsError(x, y, width, height)

        prior = float(owned_posterior[y, x])
        posterior = self.update(prior, reading)
        owned_posterior = self.diffuse(owned_posterior, x, y, posterior)
        owned_posterior[y, x] = posterior
        logger.debug(
            "Cell ({}, {}) {} reading: {:.3f} -> {:.3f}",
            x,
            y,
            "positive" if reading.result else "negative",
            prior,
            posterior,
        )
        return owned_posterior, posterior
