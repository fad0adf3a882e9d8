"""Belief grid, ground-truth field and reconnaissance records.

The grid stores per-cell quantities as ``(height, width)`` numpy arrays
indexed ``[y, x]``.  The surrounding application owns the long-lived grid
and hands the engine snapshots; the engine never resizes one.

Posterior beliefs are always kept inside ``[PROB_MIN, PROB_MAX]`` so that
odds-space arithmetic stays finite.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator

import numpy as np
from numpy.typing import NDArray

from src.core.errors import InvalidParameterError, OutOfBoundsError

# JUSTIFIED: odds at 0.001 / 0.999 stay within ~[1e-3, 1e3], well inside
# float64 range after any realistic chain of likelihood ratios.
PROB_MIN: float = 0.001
PROB_MAX: float = 0.999


def clamp_probability(p: float | NDArray[np.float64]) -> float | NDArray[np.float64]:
    """Clamp a probability (or array of them) into ``[PROB_MIN, PROB_MAX]``."""
    if isinstance(p, np.ndarray):
        return np.clip(np.nan_to_num(p, nan=0.5), PROB_MIN, PROB_MAX)
    if p != p:  # NaN
        return 0.5
    return min(PROB_MAX, max(PROB_MIN, float(p)))


@dataclass(frozen=True)
class ReconRecord:
    """One past sensor reading stored in a cell's history.

    Attributes:
        sensor: Sensor type key (``"drone"``, ``"sigint"``, ``"ground"``).
        result: ``True`` for a positive detection.
        turn: Turn index at which the reading was taken.
        effective_tpr: True-positive rate actually used.
        effective_fpr: False-positive rate actually used.
        confidence: Display confidence of the reading.
        context_summary: Human-readable description of the context.
        prior_probability: Belief before the reading.
        posterior_probability: Belief after the reading.
    """

    sensor: str
    result: bool
    turn: int
    effective_tpr: float
    effective_fpr: float
    confidence: float
    context_summary: str
    prior_probability: float
    posterior_probability: float


@dataclass(frozen=True)
class Cell:
    """Read-only view of a single grid cell."""

    x: int
    y: int
    posterior_probability: float
    hostile_prior_field: float
    infra_prior_probability: float
    recon_history: tuple[ReconRecord, ...] = ()


@dataclass
class Grid:
    """Rectangular belief grid.

    Attributes:
        posterior: Current ``P(hostile)`` per cell.
        hostile_prior_field: Static latent field theta(x, y); analytics only.
        infra_prior: Static infrastructure probability per cell.
        recon_history: Append-only reading history, indexed ``[y][x]``.
    """

    posterior: NDArray[np.float64]
    hostile_prior_field: NDArray[np.float64]
    infra_prior: NDArray[np.float64]
    recon_history: list[list[list[ReconRecord]]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.posterior = np.asarray(self.posterior, dtype=np.float64)
        self.hostile_prior_field = np.asarray(self.hostile_prior_field, dtype=np.float64)
        self.infra_prior = np.asarray(self.infra_prior, dtype=np.float64)

        if self.posterior.ndim != 2 or self.posterior.size == 0:
            raise InvalidParameterError(
                f"posterior must be a non-empty 2-D array; got shape {self.posterior.shape}"
            )
        for name in ("hostile_prior_field", "infra_prior"):
            shape = getattr(self, name).shape
            if shape != self.posterior.shape:
                raise InvalidParameterError(
                    f"{name} shape {shape} does not match posterior shape "
                    f"{self.posterior.shape}"
                )

        self.posterior = np.asarray(clamp_probability(self.posterior))
        if not self.recon_history:
            self.recon_history = [[[] for _ in range(self.width)] for _ in range(self.height)]

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    @property
    def width(self) -> int:
        return int(self.posterior.shape[1])

    @property
    def height(self) -> int:
        return int(self.posterior.shape[0])

    @property
    def shape(self) -> tuple[int, int]:
        return (self.height, self.width)

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def require_in_bounds(self, x: int, y: int) -> None:
        """Raise :class:`OutOfBoundsError` unless ``(x, y)`` is on the grid."""
        if not self.in_bounds(x, y):
            raise OutOfBoundsError(x, y, self.width, self.height)

    def coordinates(self) -> Iterator[tuple[int, int]]:
        """Iterate ``(x, y)`` pairs in row-major order."""
        for y in range(self.height):
            for x in range(self.width):
                yield x, y

    # ------------------------------------------------------------------
    # Cell access
    # ------------------------------------------------------------------

    def cell(self, x: int, y: int) -> Cell:
        self.require_in_bounds(x, y)
        return Cell(
            x=x,
            y=y,
            posterior_probability=float(self.posterior[y, x]),
            hostile_prior_field=float(self.hostile_prior_field[y, x]),
            infra_prior_probability=float(self.infra_prior[y, x]),
            recon_history=tuple(self.recon_history[y][x]),
        )

    def set_posterior(self, x: int, y: int, probability: float) -> None:
        self.require_in_bounds(x, y)
        self.posterior[y, x] = clamp_probability(probability)

    def append_recon(self, x: int, y: int, record: ReconRecord) -> None:
        self.require_in_bounds(x, y)
        self.recon_history[y][x].append(record)

    def recent_recon_count(
        self,
        x: int,
        y: int,
        current_turn: int,
        window: int,
        sensor: str | None = None,
    ) -> int:
        """Number of readings at ``(x, y)`` in the last *window* turns."""
        earliest = current_turn - window + 1
        return sum(
            1
            for record in self.recon_history[y][x]
            if record.turn >= earliest and (sensor is None or record.sensor == sensor)
        )

    def copy(self) -> Grid:
        """Deep copy; the returned grid shares no mutable state."""
        return Grid(
            posterior=self.posterior.copy(),
            hostile_prior_field=self.hostile_prior_field.copy(),
            infra_prior=self.infra_prior.copy(),
            recon_history=[[list(h) for h in row] for row in self.recon_history],
        )


@dataclass
class TruthField:
    """Latent fields and sampled ground truth for one episode.

    Attributes:
        hostile_field: theta(x, y) before sampling.
        infra_field: Infrastructure probability field.
        hostile_truth: Sampled hostile presence.
        infra_truth: Sampled infrastructure presence.
    """

    hostile_field: NDArray[np.float64]
    infra_field: NDArray[np.float64]
    hostile_truth: NDArray[np.bool_]
    infra_truth: NDArray[np.bool_]

    @property
    def shape(self) -> tuple[int, int]:
        return tuple(self.hostile_field.shape)  # type: ignore[return-value]

    def has_hostile(self, x: int, y: int) -> bool:
        return bool(self.hostile_truth[y, x])

    def has_infrastructure(self, x: int, y: int) -> bool:
        return bool(self.infra_truth[y, x])
