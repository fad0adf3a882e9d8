"""One reconnaissance action applied to a belief grid.

Stream labels are fixed so that a replay with the same seed and action
sequence reproduces every context, reading and posterior bit for bit:

* context for cell ``(x, y)``: ``"{seed}-context-{x}-{y}"``
* reading on turn ``t`` with sensor ``s``: ``"{seed}-recon-{t}-{x}-{y}-{s}"``

Budget accounting is left to the caller; the effective cost is returned so
it can be charged.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from src.core.grid import Grid, ReconRecord
from src.core.rng import create_sub_rng
from src.inference.bayesian import BayesianUpdater
from src.sensors.sensor_model import (
    EffectivePerformance,
    SensorContext,
    SensorModel,
    SensorReading,
    SensorType,
)


@dataclass(frozen=True)
class ReconOutcome:
    reading: SensorReading
    performance: EffectivePerformance
    prior_probability: float
    posterior_probability: float

    @property
    def cost(self) -> int:
        return self.performance.effective_cost


def cell_context(seed: str, x: int, y: int, sensor_model: SensorModel | None = None) -> SensorContext:
    """Deterministic operating context of cell ``(x, y)`` for an episode."""
    model = sensor_model or SensorModel()
    return model.generate_context(create_sub_rng(seed, f"context-{x}-{y}"))


def perform_recon(
    grid: Grid,
    x: int,
    y: int,
    sensor: SensorType | str,
    turn: int,
    seed: str,
    true_presence: bool,
    updater: BayesianUpdater | None = None,
    sensor_model: SensorModel | None = None,
) -> ReconOutcome:
    """Observe ``(x, y)`` and fold the reading into *grid* in place.

    Diffusion is applied against the pre-update belief of the target cell,
    then the target cell is set and a :class:`ReconRecord` appended.

    Args:
        grid: Belief grid owned by the caller; mutated.
        x: Target column.
        y: Target row.
        sensor: Sensor type.
        turn: Current turn index (part of the reading stream label).
        seed: Episode seed.
        true_presence: Whether a hostile is actually present (from the
            caller's truth field).
        updater: Bayesian updater; a default one is used when omitted.
        sensor_model: Sensor model; a default one is used when omitted.

    Returns:
        The reading, effective performance and before/after beliefs.

    Raises:
        OutOfBoundsError: If ``(x, y)`` is off the grid.
        InvalidParameterError: If *sensor* is unknown.
    """
    grid.require_in_bounds(x, y)
    sensor = SensorType.parse(sensor)
    updater = updater or BayesianUpdater()
    sensor_model = sensor_model or SensorModel()

    context = cell_context(seed, x, y, sensor_model)
    performance = sensor_model.effective_performance(sensor, context)
    reading_rng = create_sub_rng(seed, f"recon-{turn}-{x}-{y}-{sensor.value}")
    reading = sensor_model.simulate_reading(sensor, true_presence, context, reading_rng)

    prior = float(grid.posterior[y, x])
    grid.posterior, posterior = updater.apply(grid.posterior, x, y, reading)

    grid.append_recon(
        x,
        y,
        ReconRecord(
            sensor=sensor.value,
            result=reading.result,
            turn=turn,
            effective_tpr=reading.effective_tpr,
            effective_fpr=reading.effective_fpr,
            confidence=reading.confidence,
            context_summary=performance.context_summary,
            prior_probability=prior,
            posterior_probability=posterior,
        ),
    )
    logger.info(
        "Recon {} at ({}, {}) turn {}: {} | {:.3f} -> {:.3f} | cost {}",
        sensor.value,
        x,
        y,
        turn,
        "POSITIVE" if reading.result else "negative",
        prior,
        posterior,
        performance.effective_cost,
    )
    return ReconOutcome(
        reading=reading,
        performance=performance,
        prior_probability=prior,
        posterior_probability=posterior,
    )
