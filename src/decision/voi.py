"""Nested-simulation value of information for reconnaissance.

For a candidate cell the estimator

1. computes the best strike EV over the whole grid (baseline);
2. draws ``num_samples`` hypothetical readings with the sensor's effective
   TPR/FPR in the cell's context;
3. for each, updates only the candidate cell's belief, recomputes the best
   strike EV over the hypothetical grid, and accumulates a weighted
   average with weight equal to the probability of the drawn reading;
4. reports ``VOI = weighted average - baseline`` and
   ``net VOI = VOI - effective recon cost``.

The average is a likelihood-weighted mean over readings that were already
drawn from their predictive distribution, so the probability of each
reading enters twice.  It is not a pre-posterior expectation: it leans
toward the likelier reading, and VOI can come out slightly negative where
a true expected value of information never would.

Hidden-state conditioning: when the caller passes the cell's true state,
readings are drawn conditioned on it (the behaviour the game loop has
always used).  Without it, each sample first draws the hidden state from
the current belief, which keeps ground truth out of the estimate.

A naive sweep costs ``O(cells^2 * samples)``; callers bound the sample
count and skip heavily reconnoitred cells.

Typical usage::

    estimator = ValueOfInformationEstimator(config)
    analysis = estimator.estimate(grid, 3, 5, SensorType.DRONE, num_samples=20)
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
from loguru import logger
from numpy.typing import NDArray

from src.core.config import EngineConfig
from src.core.errors import EngineError, InvalidParameterError, NumericalDegenerateError
from src.core.grid import Grid, TruthField
from src.core.rng import create_sub_rng
from src.decision.strike import aoe_sum
from src.inference.bayesian import update_posterior
from src.sensors.sensor_model import SensorModel, SensorType


@dataclass(frozen=True)
class VOIAnalysis:
    """Value-of-information estimate for one candidate cell.

    Attributes:
        current_ev: Best strike EV on the unchanged grid.
        expected_ev_after_recon: Weighted mean of hypothetical best EVs.
        value_of_information: ``expected_ev_after_recon - current_ev``.
        recon_cost: Effective sensor cost in the cell's context.
        net_voi: ``value_of_information - recon_cost``.
        num_samples: Hypothetical readings drawn.
    """

    current_ev: float
    expected_ev_after_recon: float
    value_of_information: float
    recon_cost: float
    net_voi: float
    num_samples: int


@dataclass(frozen=True)
class CandidateOutcome:
    """Success-or-failure result for one candidate in a sweep."""

    x: int
    y: int
    analysis: VOIAnalysis | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.analysis is not None


class ValueOfInformationEstimator:
    """Estimates how much a reconnaissance action improves the next strike.

    Args:
        config: Engine configuration.
        sensor_model: Sensor model used for contexts and readings.
    """

    def __init__(
        self,
        config: EngineConfig,
        sensor_model: SensorModel | None = None,
    ) -> None:
        self.config = config
        self.sensor_model = sensor_model or SensorModel()
        logger.info(
            "ValueOfInformationEstimator initialised: samples={}, radius={}",
            config.voi_samples,
            config.strike_radius,
        )

    # ------------------------------------------------------------------
    # Single candidate
    # ------------------------------------------------------------------

    def estimate(
        self,
        grid: Grid,
        x: int,
        y: int,
        sensor: SensorType | str,
        num_samples: int | None = None,
        radius: int | None = None,
        true_presence: bool | None = None,
    ) -> VOIAnalysis:
        """Estimate the (net) value of reconnoitring ``(x, y)``.

        Args:
            grid: Belief grid snapshot; not modified.
            x: Candidate column.
            y: Candidate row.
            sensor: Sensor to be used.
            num_samples: Hypothetical readings; defaults to
                ``config.voi_samples``.
            radius: Strike radius; defaults to ``config.strike_radius``.
            true_presence: Hidden state to condition readings on, or
                ``None`` to draw it from the current belief.

        Returns:
            A :class:`VOIAnalysis`.

        Raises:
            OutOfBoundsError: If ``(x, y)`` is off the grid.
            InvalidParameterError: If *num_samples* is not positive or
                *sensor* is unknown.
            NumericalDegenerateError: If the estimate is not finite.
        """
        grid.require_in_bounds(x, y)
        n = self.config.voi_samples if num_samples is None else num_samples
        if n <= 0:
            raise InvalidParameterError(f"num_samples must be positive; got {n}")
        radius = self.config.strike_radius if radius is None else radius
        sensor = SensorType.parse(sensor)
        seed = self.config.seed

        static_term = (
            -self.config.infra_penalty * aoe_sum(grid.infra_prior, radius)
            - self.config.strike_cost
        )
        current_ev = self._best_ev(grid.posterior, static_term, radius)

        context = self.sensor_model.generate_context(
            create_sub_rng(seed, f"voi-context-{x}-{y}")
        )
        performance = self.sensor_model.effective_performance(sensor, context)
        tpr, fpr = performance.effective_tpr, performance.effective_fpr
        sample_rng = create_sub_rng(seed, f"voi-sample-{x}-{y}-{sensor.value}")

        prior = float(grid.posterior[y, x])
        hypothetical = grid.posterior.copy()
        weighted_sum = 0.0
        weight_total = 0.0

        for _ in range(n):
            if true_presence is None:
                present = sample_rng.bernoulli(prior)
                p_positive = prior * tpr + (1.0 - prior) * fpr
            else:
                present = true_presence
                p_positive = tpr if present else fpr

            reading = self.sensor_model.simulate_reading(sensor, present, context, sample_rng)
            hypothetical[y, x] = update_posterior(prior, reading.result, tpr, fpr)
            best_after = self._best_ev(hypothetical, static_term, radius)

            weight = p_positive if reading.result else 1.0 - p_positive
            weighted_sum += best_after * weight
            weight_total += weight

        if weight_total <= 0 or not math.isfinite(weighted_sum):
            raise NumericalDegenerateError(
                f"Degenerate VOI estimate at ({x}, {y}): weight total {weight_total}"
            )

        expected_after = weighted_sum / weight_total
        voi = expected_after - current_ev
        return VOIAnalysis(
            current_ev=current_ev,
            expected_ev_after_recon=expected_after,
            value_of_information=voi,
            recon_cost=float(performance.effective_cost),
            net_voi=voi - performance.effective_cost,
            num_samples=n,
        )

    def evaluate_candidate(
        self,
        grid: Grid,
        x: int,
        y: int,
        sensor: SensorType | str,
        num_samples: int | None = None,
        radius: int | None = None,
        true_presence: bool | None = None,
    ) -> CandidateOutcome:
        """Like :meth:`estimate` but returns failures as a value."""
        try:
            analysis = self.estimate(grid, x, y, sensor, num_samples, radius, true_presence)
        except EngineError as exc:
            return CandidateOutcome(x=x, y=y, error=str(exc))
        return CandidateOutcome(x=x, y=y, analysis=analysis)

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    def sweep(
        self,
        grid: Grid,
        sensor: SensorType | str,
        current_turn: int = 0,
        num_samples: int | None = None,
        radius: int | None = None,
        truth: TruthField | None = None,
    ) -> list[CandidateOutcome]:
        """Evaluate every cell not reconnoitred twice in the recent window.

        Failed candidates are kept in the list (``ok`` is ``False``) so that
        callers can report them; rankings filter on ``ok``.

        Raises:
            InvalidParameterError: If *sensor* is unknown.
        """
        sensor = SensorType.parse(sensor)
        window = self.config.recent_turn_window
        outcomes: list[CandidateOutcome] = []
        for x, y in grid.coordinates():
            if grid.recent_recon_count(x, y, current_turn, window) >= 2:
                continue
            presence = truth.has_hostile(x, y) if truth is not None else None
            outcomes.append(
                self.evaluate_candidate(grid, x, y, sensor, num_samples, radius, presence)
            )

        failed = [o for o in outcomes if not o.ok]
        if failed:
            logger.warning(
                "Skipped {} VOI candidate(s) with degenerate estimates, first: {}",
                len(failed),
                failed[0].error,
            )
        return outcomes

    def generate_voi_heatmap(
        self,
        grid: Grid,
        sensor: SensorType | str,
        current_turn: int = 0,
        num_samples: int | None = None,
        radius: int | None = None,
        truth: TruthField | None = None,
    ) -> NDArray[np.float64]:
        """Non-negative net VOI per cell; skipped or failed cells are 0."""
        heatmap = np.zeros(grid.shape, dtype=np.float64)
        for outcome in self.sweep(grid, sensor, current_turn, num_samples, radius, truth):
            if outcome.ok:
                heatmap[outcome.y, outcome.x] = max(0.0, outcome.analysis.net_voi)
        return heatmap

    def find_optimal_recon(
        self,
        grid: Grid,
        sensor: SensorType | str,
        current_turn: int = 0,
        num_samples: int | None = None,
        radius: int | None = None,
        truth: TruthField | None = None,
    ) -> tuple[int, int, float] | None:
        """Best ``(x, y, net_voi)``, or ``None`` if no candidate is positive."""
        best: tuple[int, int, float] | None = None
        for outcome in self.sweep(grid, sensor, current_turn, num_samples, radius, truth):
            if not outcome.ok:
                continue
            value = outcome.analysis.net_voi
            if value > 0 and (best is None or value > best[2]):
                best = (outcome.x, outcome.y, value)
        return best

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _best_ev(
        self,
        posterior: NDArray[np.float64],
        static_term: NDArray[np.float64],
        radius: int,
    ) -> float:
        heatmap = self.config.hostile_value * aoe_sum(posterior, radius) + static_term
        return float(np.max(heatmap))
