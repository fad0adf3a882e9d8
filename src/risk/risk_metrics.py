"""Risk metrics of strike outcomes over Monte Carlo worlds.

For a strike at ``(x, y)`` with radius ``r`` each sampled world yields a
net value::

    net = hostile_value * hostiles_hit - infra_penalty * infra_hit - strike_cost

and the distribution of ``net`` over worlds is summarised by mean,
population variance, CVaR at 95 % and 99 % (mean of the worst 5 % / 1 %,
never fewer than one sample), extremes, probability of loss and expected
shortfall (mean of the negative outcomes only).

Because AoE counts are a diamond-kernel correlation, the outcome of every
candidate centre in every world is computed in one pass over the
``(n, h, w)`` sample stack; heatmaps then reduce along the sample axis.

Typical usage::

    evaluator = RiskEvaluator(config)
    batch = evaluator.sampler("policy", 50).sample(grid)
    metrics = evaluator.evaluate_strike_risk(4, 7, batch)
    utility = evaluator.risk_averse_utility(metrics)
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
import polars as pl
from loguru import logger
from numpy.typing import NDArray

from src.core.config import EngineConfig, MonteCarloConfig
from src.core.errors import InvalidParameterError, OutOfBoundsError
from src.core.grid import Grid
from src.decision.strike import aoe_sum
from src.risk.monte_carlo import MonteCarloWorldSampler, SampledWorld, WorldBatch

# JUSTIFIED: tail fractions for CVaR95 / CVaR99.
_TAIL_95 = 0.05
_TAIL_99 = 0.01


@dataclass(frozen=True)
class RiskMetrics:
    """Summary of a distribution of strike outcomes.

    Attributes:
        expected_value: Sample mean.
        variance: Population variance.
        standard_deviation: ``sqrt(variance)``.
        cvar95: Mean of the worst 5 % of outcomes.
        cvar99: Mean of the worst 1 % of outcomes.
        worst_case: Smallest outcome.
        best_case: Largest outcome.
        probability_of_loss: Fraction of outcomes below zero.
        expected_shortfall: Mean of the negative outcomes (0 if none).
        num_samples: Number of outcomes summarised.
    """

    expected_value: float
    variance: float
    standard_deviation: float
    cvar95: float
    cvar99: float
    worst_case: float
    best_case: float
    probability_of_loss: float
    expected_shortfall: float
    num_samples: int


def _to_array(data: pl.Series | NDArray[np.float64] | list[float]) -> NDArray[np.float64]:
    if isinstance(data, pl.Series):
        return data.to_numpy().astype(np.float64)
    return np.asarray(data, dtype=np.float64)


def _tail_count(n: int, fraction: float) -> int:
    return max(1, int(math.floor(fraction * n)))


def compute_risk_metrics(outcomes: pl.Series | NDArray[np.float64] | list[float]) -> RiskMetrics:
    """Summarise a 1-D array of outcomes.

    Raises:
        InvalidParameterError: If *outcomes* is empty or not finite.
    """
    arr = _to_array(outcomes)
    if arr.size == 0:
        raise InvalidParameterError("Cannot compute risk metrics of an empty outcome set")
    if not np.all(np.isfinite(arr)):
        raise InvalidParameterError("Outcomes must be finite")

    ordered = np.sort(arr)
    n = ordered.size
    mean = float(arr.mean())
    variance = float(np.mean((arr - mean) ** 2))
    losses = arr[arr < 0]

    return RiskMetrics(
        expected_value=mean,
        variance=variance,
        standard_deviation=math.sqrt(variance),
        cvar95=float(ordered[: _tail_count(n, _TAIL_95)].mean()),
        cvar99=float(ordered[: _tail_count(n, _TAIL_99)].mean()),
        worst_case=float(ordered[0]),
        best_case=float(ordered[-1]),
        probability_of_loss=losses.size / n,
        expected_shortfall=float(losses.mean()) if losses.size else 0.0,
        num_samples=n,
    )


def weighted_expected_value(
    outcomes: NDArray[np.float64],
    weights: NDArray[np.float64],
) -> float:
    """Self-normalised importance-weighted mean.

    Raises:
        InvalidParameterError: On mismatched lengths or non-positive total weight.
    """
    values = _to_array(outcomes)
    w = _to_array(weights)
    if values.shape != w.shape:
        raise InvalidParameterError(
            f"outcomes and weights must have the same shape ({values.shape} != {w.shape})"
        )
    total = float(w.sum())
    if not total > 0:
        raise InvalidParameterError("Importance weights must have a positive total")
    return float(np.dot(values, w) / total)


class RiskEvaluator:
    """Distributional strike evaluation over sampled worlds.

    Args:
        config: Engine configuration (reward, penalty, cost, lambda, seed).
    """

    def __init__(self, config: EngineConfig) -> None:
        self.config = config
        logger.info(
            "RiskEvaluator initialised: lambda={}, heatmap_samples={}",
            config.risk_aversion,
            config.heatmap_samples,
        )

    def sampler(
        self,
        label: str,
        num_samples: int,
        use_importance_sampling: bool = False,
    ) -> MonteCarloWorldSampler:
        """Sampler on the sub-seed ``f"{config.seed}-{label}"``."""
        return MonteCarloWorldSampler(
            MonteCarloConfig(
                num_samples=num_samples,
                seed=f"{self.config.seed}-{label}",
                use_importance_sampling=use_importance_sampling,
            )
        )

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def outcome_stack(self, batch: WorldBatch, radius: int) -> NDArray[np.float64]:
        """Net strike value for every centre in every world, ``(n, h, w)``."""
        cfg = self.config
        hostiles = aoe_sum(batch.hostile.astype(np.float64), radius)
        infra = aoe_sum(batch.infra.astype(np.float64), radius)
        return cfg.hostile_value * hostiles - cfg.infra_penalty * infra - cfg.strike_cost

    def strike_outcomes(
        self,
        center_x: int,
        center_y: int,
        worlds: WorldBatch | list[SampledWorld],
        radius: int | None = None,
    ) -> NDArray[np.float64]:
        """Per-world net value of one strike.

        Raises:
            OutOfBoundsError: If the centre is off the sampled grid.
        """
        batch = worlds if isinstance(worlds, WorldBatch) else WorldBatch.from_worlds(worlds)
        radius = self.config.strike_radius if radius is None else radius
        _, height, width = batch.hostile.shape
        if not (0 <= center_x < width and 0 <= center_y < height):
            raise OutOfBoundsError(center_x, center_y, width, height)
        return self.outcome_stack(batch, radius)[:, center_y, center_x]

    def evaluate_strike_risk(
        self,
        center_x: int,
        center_y: int,
        worlds: WorldBatch | list[SampledWorld],
        radius: int | None = None,
    ) -> RiskMetrics:
        return compute_risk_metrics(self.strike_outcomes(center_x, center_y, worlds, radius))

    def risk_averse_utility(self, metrics: RiskMetrics, risk_aversion: float | None = None) -> float:
        """``EV - lambda * |CVaR95|``."""
        lam = self.config.risk_aversion if risk_aversion is None else risk_aversion
        return metrics.expected_value - lam * abs(metrics.cvar95)

    def focused_expected_value(
        self,
        grid: Grid,
        center_x: int,
        center_y: int,
        radius: int | None = None,
        num_samples: int | None = None,
    ) -> float:
        """Importance-sampled EV of one strike, focused on its own AoE."""
        radius = self.config.strike_radius if radius is None else radius
        n = self.config.heatmap_samples if num_samples is None else num_samples
        batch = self.sampler("focus", n, use_importance_sampling=True).sample_importance(
            grid, center_x, center_y, radius
        )
        outcomes = self.strike_outcomes(center_x, center_y, batch, radius)
        return weighted_expected_value(outcomes, batch.importance_weight)

    # ------------------------------------------------------------------
    # Heatmaps
    # ------------------------------------------------------------------

    def risk_averse_heatmap(
        self,
        grid: Grid,
        radius: int | None = None,
        risk_aversion: float | None = None,
    ) -> NDArray[np.float64]:
        """Risk-averse utility per strike centre (sub-seed ``-risk``)."""
        radius = self.config.strike_radius if radius is None else radius
        batch = self.sampler("risk", self.config.heatmap_samples).sample(grid)
        return self.utility_map(batch, radius, risk_aversion)

    def variance_heatmap(self, grid: Grid, radius: int | None = None) -> NDArray[np.float64]:
        """Outcome standard deviation per strike centre (sub-seed ``-variance``)."""
        stack = self._heatmap_stack(grid, "variance", self.config.heatmap_samples, radius)
        return stack.std(axis=0)

    def loss_risk_heatmap(self, grid: Grid, radius: int | None = None) -> NDArray[np.float64]:
        """Probability of a net loss per strike centre (sub-seed ``-loss``)."""
        stack = self._heatmap_stack(grid, "loss", self.config.policy_samples, radius)
        return (stack < 0).mean(axis=0)

    def utility_map(
        self,
        batch: WorldBatch,
        radius: int,
        risk_aversion: float | None = None,
    ) -> NDArray[np.float64]:
        """Risk-averse utility of every centre for an already drawn batch."""
        stack = self.outcome_stack(batch, radius)
        lam = self.config.risk_aversion if risk_aversion is None else risk_aversion
        return stack.mean(axis=0) - lam * np.abs(_cvar_along_samples(stack, _TAIL_95))

    def _heatmap_stack(
        self,
        grid: Grid,
        label: str,
        num_samples: int,
        radius: int | None,
    ) -> NDArray[np.float64]:
        radius = self.config.strike_radius if radius is None else radius
        batch = self.sampler(label, num_samples).sample(grid)
        logger.debug("Built {} heatmap from {} worlds", label, num_samples)
        return self.outcome_stack(batch, radius)


def _cvar_along_samples(stack: NDArray[np.float64], fraction: float) -> NDArray[np.float64]:
    k = _tail_count(stack.shape[0], fraction)
    return np.sort(stack, axis=0)[:k].mean(axis=0)
