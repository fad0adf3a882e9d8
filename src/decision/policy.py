"""Policy advisor: ranked action recommendations from the decision engine.

Three independent policies each scan the whole grid and keep a best
candidate plus up to three runner-ups:

* **greedy EV**: arg-max of the closed-form strike EV;
* **risk averse**: arg-max of ``EV - lambda * |CVaR95|`` over a fresh,
  smaller Monte Carlo draw (sub-seed ``-policy``);
* **recon VOI**: arg-max of net value of information over cells not
  reconnoitred twice or more in the recent-turn window.

Each returns its own frozen record type; :class:`PolicyRecommendations`
bundles exactly one of each.  Confidence values are display heuristics
scaled by the magnitude of the recommended value, not statistical
intervals.

Typical usage::

    advisor = PolicyAdvisor(config)
    recs = advisor.recommend_all(grid, remaining_budget=600, current_turn=3)
    if recs.greedy_ev.action == "strike":
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Literal, Union

import numpy as np
from loguru import logger
from numpy.typing import NDArray

from src.core.config import EngineConfig
from src.core.grid import Grid, TruthField
from src.decision.strike import StrikeEvaluator
from src.decision.voi import ValueOfInformationEstimator
from src.risk.risk_metrics import RiskEvaluator
from src.sensors.sensor_model import SensorModel, SensorType

Action = Literal["strike", "recon", "wait"]

# JUSTIFIED: three runner-ups are what the decision panel can show.
MAX_ALTERNATIVES = 3
# JUSTIFIED: with two or fewer turns left a recon cannot pay off.
URGENT_TURNS_REMAINING = 2
# JUSTIFIED: recon is preferred once its value reaches 30 % of the best
# immediate strike.
RECON_TO_STRIKE_RATIO = 0.3


@dataclass(frozen=True)
class Alternative:
    x: int
    y: int
    value: float


@dataclass(frozen=True)
class _Recommendation:
    action: Action
    value: float
    confidence: float
    reasoning: str
    x: int | None = None
    y: int | None = None
    alternatives: tuple[Alternative, ...] = ()


@dataclass(frozen=True)
class GreedyEVRecommendation(_Recommendation):
    radius: int | None = None
    kind: Literal["greedy_ev"] = "greedy_ev"


@dataclass(frozen=True)
class RiskAverseRecommendation(_Recommendation):
    radius: int | None = None
    risk_aversion: float = 0.0
    kind: Literal["risk_averse"] = "risk_averse"


@dataclass(frozen=True)
class ReconVOIRecommendation(_Recommendation):
    sensor: SensorType | None = None
    kind: Literal["recon_voi"] = "recon_voi"


PolicyRecommendation = Union[
    GreedyEVRecommendation, RiskAverseRecommendation, ReconVOIRecommendation
]


@dataclass(frozen=True)
class PolicyRecommendations:
    """One recommendation per policy."""

    greedy_ev: GreedyEVRecommendation
    risk_averse: RiskAverseRecommendation
    recon_voi: ReconVOIRecommendation

    def __iter__(self) -> Iterator[PolicyRecommendation]:
        yield self.greedy_ev
        yield self.risk_averse
        yield self.recon_voi


@dataclass(frozen=True)
class ActionRecommendation:
    """Single combined next action under time and budget pressure."""

    action: Action
    expected_value: float
    confidence: float
    reasoning: str
    x: int | None = None
    y: int | None = None
    sensor: SensorType | None = None
    radius: int | None = None


def rank_candidates(values: NDArray[np.float64]) -> list[Alternative]:
    """All finite cells of a heatmap sorted by value, ties in row-major order."""
    _, width = values.shape
    flat = values.ravel()
    order = np.argsort(-flat, kind="stable")
    ranked: list[Alternative] = []
    for index in order:
        value = float(flat[index])
        if not np.isfinite(value):
            continue
        y, x = divmod(int(index), width)
        ranked.append(Alternative(x=x, y=y, value=value))
    return ranked


def runner_ups(ranked: list[Alternative]) -> tuple[Alternative, ...]:
    """Profitable candidates after the best, at most :data:`MAX_ALTERNATIVES`."""
    return tuple([a for a in ranked[1:] if a.value > 0][:MAX_ALTERNATIVES])


class PolicyAdvisor:
    """Composes strike, risk and VOI evaluators into recommendations.

    Args:
        config: Engine configuration.
        sensor_model: Sensor model shared with the VOI estimator.
    """

    def __init__(self, config: EngineConfig, sensor_model: SensorModel | None = None) -> None:
        self.config = config
        self.strike_evaluator = StrikeEvaluator(config)
        self.voi_estimator = ValueOfInformationEstimator(config, sensor_model)
        self.risk_evaluator = RiskEvaluator(config)

    # ------------------------------------------------------------------
    # Individual policies
    # ------------------------------------------------------------------

    def greedy_ev(
        self,
        grid: Grid,
        remaining_budget: float,
        radius: int | None = None,
    ) -> GreedyEVRecommendation:
        radius = self.config.strike_radius if radius is None else radius
        if self.config.strike_cost > remaining_budget:
            return GreedyEVRecommendation(
                action="wait",
                value=0.0,
                confidence=0.6,
                reasoning="Insufficient budget for a strike",
            )

        ranked = rank_candidates(self.strike_evaluator.generate_ev_heatmap(grid, radius))
        if ranked and ranked[0].value > 0:
            best = ranked[0]
            return GreedyEVRecommendation(
                action="strike",
                x=best.x,
                y=best.y,
                radius=radius,
                value=best.value,
                confidence=min(0.9, 0.5 + best.value / 100.0),
                reasoning=f"Highest expected value strike: +{best.value:.0f} points",
                alternatives=runner_ups(ranked),
            )

        return GreedyEVRecommendation(
            action="wait",
            value=0.0,
            confidence=0.6,
            reasoning="No profitable strikes available",
        )

    def risk_averse(
        self,
        grid: Grid,
        remaining_budget: float,
        risk_aversion: float | None = None,
        radius: int | None = None,
    ) -> RiskAverseRecommendation:
        radius = self.config.strike_radius if radius is None else radius
        lam = self.config.risk_aversion if risk_aversion is None else risk_aversion
        if self.config.strike_cost > remaining_budget:
            return RiskAverseRecommendation(
                action="wait",
                value=0.0,
                confidence=0.5,
                reasoning="Insufficient budget for a strike",
                risk_aversion=lam,
            )

        batch = self.risk_evaluator.sampler("policy", self.config.policy_samples).sample(grid)
        utility = self.risk_evaluator.utility_map(batch, radius, lam)
        ranked = rank_candidates(utility)
        if ranked and ranked[0].value > 0:
            best = ranked[0]
            return RiskAverseRecommendation(
                action="strike",
                x=best.x,
                y=best.y,
                radius=radius,
                risk_aversion=lam,
                value=best.value,
                confidence=min(0.9, 0.4 + best.value / 50.0),
                reasoning=f"Risk-adjusted optimal strike: +{best.value:.0f} utility (lambda={lam})",
                alternatives=runner_ups(ranked),
            )

        return RiskAverseRecommendation(
            action="wait",
            value=0.0,
            confidence=0.5,
            reasoning="No risk-acceptable strikes available",
            risk_aversion=lam,
        )

    def recon_voi(
        self,
        grid: Grid,
        remaining_budget: float,
        sensor: SensorType | str = SensorType.DRONE,
        current_turn: int = 0,
        radius: int | None = None,
        truth: TruthField | None = None,
    ) -> ReconVOIRecommendation:
        sensor = SensorType.parse(sensor)
        outcomes = self.voi_estimator.sweep(
            grid,
            sensor,
            current_turn=current_turn,
            radius=radius,
            truth=truth,
        )
        affordable = [
            Alternative(o.x, o.y, o.analysis.net_voi)
            for o in outcomes
            if o.ok and o.analysis.recon_cost <= remaining_budget
        ]
        # Stable sort keeps row-major order among equal values.
        ranked = sorted(affordable, key=lambda a: -a.value)

        if ranked and ranked[0].value > 0:
            best = ranked[0]
            return ReconVOIRecommendation(
                action="recon",
                x=best.x,
                y=best.y,
                sensor=sensor,
                value=best.value,
                confidence=min(0.8, 0.4 + best.value / 20.0),
                reasoning=f"Highest information value: +{best.value:.0f} net VOI",
                alternatives=runner_ups(ranked),
            )

        return ReconVOIRecommendation(
            action="wait",
            value=0.0,
            confidence=0.3,
            reasoning="No valuable reconnaissance opportunities",
            sensor=sensor,
        )

    # ------------------------------------------------------------------
    # Combined views
    # ------------------------------------------------------------------

    def recommend_all(
        self,
        grid: Grid,
        remaining_budget: float,
        current_turn: int = 0,
        sensor: SensorType | str = SensorType.DRONE,
        risk_aversion: float | None = None,
        truth: TruthField | None = None,
    ) -> PolicyRecommendations:
        """Greedy-EV, risk-averse and recon-VOI recommendations together."""
        recs = PolicyRecommendations(
            greedy_ev=self.greedy_ev(grid, remaining_budget),
            risk_averse=self.risk_averse(grid, remaining_budget, risk_aversion),
            recon_voi=self.recon_voi(
                grid, remaining_budget, sensor, current_turn, truth=truth
            ),
        )
        for rec in recs:
            logger.info(
                "{} -> {} at ({}, {}) value={:.1f} confidence={:.2f}",
                rec.kind,
                rec.action,
                rec.x,
                rec.y,
                rec.value,
                rec.confidence,
            )
        return recs

    def recommend_action(
        self,
        grid: Grid,
        remaining_budget: float,
        current_turn: int,
        sensor: SensorType | str = SensorType.DRONE,
        truth: TruthField | None = None,
    ) -> ActionRecommendation:
        """Pick one of strike, recon or wait.

        Strikes win under time pressure (two or fewer turns left) or when
        recon is unaffordable.  Otherwise recon is chosen when its best net
        VOI exceeds 30 % of the best strike EV.
        """
        sensor = SensorType.parse(sensor)
        radius = self.config.strike_radius
        strike = self.strike_evaluator.find_optimal_strike(grid, radius)
        can_strike = remaining_budget >= self.config.strike_cost
        can_recon = remaining_budget >= self.config.recon_cost
        urgent = self.config.max_turns - current_turn <= URGENT_TURNS_REMAINING

        def strike_rec(confidence: float, reasoning: str) -> ActionRecommendation:
            x, y, ev = strike
            return ActionRecommendation(
                action="strike",
                x=x,
                y=y,
                radius=radius,
                expected_value=ev,
                confidence=confidence,
                reasoning=reasoning,
            )

        if (urgent or not can_recon) and strike and can_strike and strike[2] > 0:
            reason = "Time pressure: execute best strike" if urgent else (
                "Limited budget: execute available strike"
            )
            return strike_rec(0.8, reason)

        recon = None
        if can_recon:
            recon = self.voi_estimator.find_optimal_recon(
                grid, sensor, current_turn, radius=radius, truth=truth
            )

        def recon_rec(confidence: float, reasoning: str) -> ActionRecommendation:
            x, y, voi = recon
            return ActionRecommendation(
                action="recon",
                x=x,
                y=y,
                sensor=sensor,
                expected_value=voi,
                confidence=confidence,
                reasoning=reasoning,
            )

        if recon and strike and can_strike:
            if recon[2] > strike[2] * RECON_TO_STRIKE_RATIO:
                return recon_rec(0.7, "Information gathering will improve future decisions")
            return strike_rec(0.8, "Immediate strike has better expected value than reconnaissance")

        if recon:
            return recon_rec(0.6, "Gather more information before acting")
        if strike and can_strike:
            return strike_rec(0.6, "Execute available strike opportunity")

        return ActionRecommendation(
            action="wait",
            expected_value=0.0,
            confidence=0.5,
            reasoning="Insufficient budget or no profitable actions available",
        )
