"""Area-of-effect strike evaluation over the belief grid.

For a strike centred at ``(x, y)`` with Manhattan radius ``r`` the area of
effect (AoE) is every grid cell with ``|dx| + |dy| <= r``; cells outside
the grid are dropped, never wrapped.  The closed-form expected value is::

    EV = hostile_value * sum(P(hostile) over AoE)
       - infra_penalty * sum(P(infra) over AoE)
       - strike_cost

The collateral-risk signal is the largest single-cell infrastructure
probability in the AoE, a conservative bound used to gate strikes against
``collateral_threshold``.

Full-grid heatmaps use a zero-padded correlation with a diamond kernel,
which is numerically the same sum as the per-cell evaluation.

Typical usage::

    evaluator = StrikeEvaluator(config)
    outcome = evaluator.calculate_strike_ev(grid, 4, 7)
    heatmap = evaluator.generate_ev_heatmap(grid)
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
from loguru import logger
from numpy.typing import NDArray
from scipy import ndimage

from src.core.config import EngineConfig
from src.core.errors import InvalidParameterError, OutOfBoundsError
from src.core.grid import Grid, TruthField


def aoe_cells(
    center_x: int,
    center_y: int,
    radius: int,
    width: int,
    height: int,
) -> list[tuple[int, int]]:
    """In-bounds ``(x, y)`` cells within Manhattan distance *radius*."""
    if radius < 0:
        raise InvalidParameterError(f"Strike radius must be non-negative; got {radius}")

    cells: list[tuple[int, int]] = []
    for dy in range(-radius, radius + 1):
        for dx in range(-radius, radius + 1):
            if abs(dx) + abs(dy) > radius:
                continue
            x, y = center_x + dx, center_y + dy
            if 0 <= x < width and 0 <= y < height:
                cells.append((x, y))
    return cells


def diamond_kernel(radius: int) -> NDArray[np.float64]:
    """``(2r+1, 2r+1)`` indicator of the Manhattan ball of radius *r*."""
    if radius < 0:
        raise InvalidParameterError(f"Strike radius must be non-negative; got {radius}")
    offsets = np.arange(-radius, radius + 1)
    return (np.abs(offsets)[:, None] + np.abs(offsets)[None, :] <= radius).astype(np.float64)


def aoe_sum(values: NDArray[np.float64], radius: int) -> NDArray[np.float64]:
    """Sum of *values* over each cell's AoE (out-of-grid cells count zero).

    Works on 2-D ``(h, w)`` arrays and on stacks ``(n, h, w)``.
    """
    kernel = diamond_kernel(radius)
    if values.ndim == 3:
        kernel = kernel[None, :, :]
    return ndimage.correlate(values.astype(np.float64), kernel, mode="constant", cval=0.0)


def aoe_max(values: NDArray[np.float64], radius: int) -> NDArray[np.float64]:
    """Maximum of non-negative *values* over each cell's AoE."""
    footprint = diamond_kernel(radius).astype(bool)
    return ndimage.maximum_filter(values, footprint=footprint, mode="constant", cval=0.0)


@dataclass(frozen=True)
class StrikeOutcome:
    """Closed-form expected outcome of a strike."""

    center: tuple[int, int]
    radius: int
    expected_hostiles_hit: float
    expected_infra_hit: float
    infra_hit_probability: float
    expected_reward: float
    expected_penalty: float
    cost: float
    expected_value: float
    affected_cells: list[tuple[int, int]] = field(default_factory=list)

    @property
    def collateral_risk(self) -> float:
        return self.infra_hit_probability


@dataclass(frozen=True)
class StrikeValidation:
    allowed: bool
    requires_confirmation: bool
    reason: str
    outcome: StrikeOutcome


@dataclass(frozen=True)
class StrikeCellResult:
    x: int
    y: int
    was_hostile: bool
    was_infra: bool


@dataclass(frozen=True)
class StrikeResult:
    """Realised outcome of a strike against ground truth."""

    hostiles_hit: int
    infra_hit: int
    total_reward: float
    total_penalty: float
    net_points: float
    affected_cells: list[StrikeCellResult]


class StrikeEvaluator:
    """Expected value and collateral risk of area-of-effect strikes.

    Args:
        config: Engine configuration (reward, penalty, cost, threshold).
    """

    def __init__(self, config: EngineConfig) -> None:
        self.config = config

    # ------------------------------------------------------------------
    # Single strike
    # ------------------------------------------------------------------

    def calculate_strike_ev(
        self,
        grid: Grid,
        center_x: int,
        center_y: int,
        radius: int | None = None,
    ) -> StrikeOutcome:
        """Closed-form expected outcome of one strike.

        Raises:
            OutOfBoundsError: If the centre lies outside the grid.
        """
        radius = self.config.strike_radius if radius is None else radius
        grid.require_in_bounds(center_x, center_y)
        cells = aoe_cells(center_x, center_y, radius, grid.width, grid.height)

        hostiles = 0.0
        infra = 0.0
        max_infra = 0.0
        for x, y in cells:
            hostiles += float(grid.posterior[y, x])
            p_infra = float(grid.infra_prior[y, x])
            infra += p_infra
            max_infra = max(max_infra, p_infra)

        reward = hostiles * self.config.hostile_value
        penalty = infra * self.config.infra_penalty
        cost = self.config.strike_cost

        return StrikeOutcome(
            center=(center_x, center_y),
            radius=radius,
            expected_hostiles_hit=hostiles,
            expected_infra_hit=infra,
            infra_hit_probability=max_infra,
            expected_reward=reward,
            expected_penalty=penalty,
            cost=cost,
            expected_value=reward - penalty - cost,
            affected_cells=cells,
        )

    # ------------------------------------------------------------------
    # Heatmaps
    # ------------------------------------------------------------------

    def ev_heatmap_from_arrays(
        self,
        posterior: NDArray[np.float64],
        infra_prior: NDArray[np.float64],
        radius: int,
    ) -> NDArray[np.float64]:
        cfg = self.config
        return (
            cfg.hostile_value * aoe_sum(posterior, radius)
            - cfg.infra_penalty * aoe_sum(infra_prior, radius)
            - cfg.strike_cost
        )

    def generate_ev_heatmap(self, grid: Grid, radius: int | None = None) -> NDArray[np.float64]:
        """Strike EV with every cell as candidate centre, shape ``(h, w)``."""
        radius = self.config.strike_radius if radius is None else radius
        return self.ev_heatmap_from_arrays(grid.posterior, grid.infra_prior, radius)

    def collateral_heatmap(self, grid: Grid, radius: int | None = None) -> NDArray[np.float64]:
        """Max single-cell infrastructure probability per candidate centre."""
        radius = self.config.strike_radius if radius is None else radius
        return aoe_max(grid.infra_prior, radius)

    def find_optimal_strike(
        self, grid: Grid, radius: int | None = None
    ) -> tuple[int, int, float] | None:
        """Arg-max of the EV heatmap as ``(x, y, ev)``; first cell on ties."""
        heatmap = self.generate_ev_heatmap(grid, radius)
        finite = np.where(np.isfinite(heatmap), heatmap, -np.inf)
        index = int(np.argmax(finite))
        y, x = divmod(index, grid.width)
        best = float(finite[y, x])
        if best == -np.inf:
            return None
        return x, y, best

    # ------------------------------------------------------------------
    # Validation and execution
    # ------------------------------------------------------------------

    def validate_strike(
        self,
        grid: Grid,
        center_x: int,
        center_y: int,
        radius: int | None = None,
        remaining_budget: float | None = None,
    ) -> StrikeValidation:
        """Gate a proposed strike on collateral risk, budget and EV sign."""
        outcome = self.calculate_strike_ev(grid, center_x, center_y, radius)
        threshold = self.config.collateral_threshold
        budget = self.config.initial_budget if remaining_budget is None else remaining_budget

        if outcome.infra_hit_probability > threshold:
            logger.warning(
                "Strike at ({}, {}) exceeds collateral threshold: {:.3f} > {:.3f}",
                center_x,
                center_y,
                outcome.infra_hit_probability,
                threshold,
            )
            return StrikeValidation(
                allowed=False,
                requires_confirmation=True,
                reason=(
                    f"High collateral risk: {outcome.infra_hit_probability * 100:.1f}% > "
                    f"{threshold * 100:.1f}% threshold"
                ),
                outcome=outcome,
            )

        if outcome.cost > budget:
            return StrikeValidation(
                allowed=False,
                requires_confirmation=False,
                reason=f"Insufficient budget: strike costs {outcome.cost:.0f}",
                outcome=outcome,
            )

        if outcome.expected_value < 0:
            return StrikeValidation(
                allowed=True,
                requires_confirmation=True,
                reason=f"Negative expected value: {outcome.expected_value:.0f} points",
                outcome=outcome,
            )

        return StrikeValidation(
            allowed=True, requires_confirmation=False, reason="Strike approved", outcome=outcome
        )

    def execute_strike(
        self,
        truth: TruthField,
        center_x: int,
        center_y: int,
        radius: int | None = None,
    ) -> StrikeResult:
        """Resolve a strike against ground truth.

        Hostiles inside the AoE are marked neutralised in *truth*;
        infrastructure hits are counted but left in place.

        Raises:
            OutOfBoundsError: If the centre lies outside the truth grid.
        """
        radius = self.config.strike_radius if radius is None else radius
        height, width = truth.shape
        if not (0 <= center_x < width and 0 <= center_y < height):
            raise OutOfBoundsError(center_x, center_y, width, height)

        details: list[StrikeCellResult] = []
        hostiles_hit = 0
        infra_hit = 0
        for x, y in aoe_cells(center_x, center_y, radius, width, height):
            was_hostile = truth.has_hostile(x, y)
            was_infra = truth.has_infrastructure(x, y)
            if was_hostile:
                hostiles_hit += 1
                truth.hostile_truth[y, x] = False
            if was_infra:
                infra_hit += 1
            details.append(StrikeCellResult(x, y, was_hostile, was_infra))

        reward = hostiles_hit * self.config.hostile_value
        penalty = infra_hit * self.config.infra_penalty
        result = StrikeResult(
            hostiles_hit=hostiles_hit,
            infra_hit=infra_hit,
            total_reward=reward,
            total_penalty=penalty,
            net_points=reward - penalty - self.config.strike_cost,
            affected_cells=details,
        )
        logger.info(
            "Strike at ({}, {}) r={}: {} hostiles, {} infrastructure, net {:.0f}",
            center_x,
            center_y,
            radius,
            hostiles_hit,
            infra_hit,
            result.net_points,
        )
        return result
