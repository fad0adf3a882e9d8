"""Proper scoring rules and calibration diagnostics for binary beliefs.

Implements the Brier score, log loss, fixed-width calibration buckets and
the Murphy decomposition::

    brier = reliability - resolution + uncertainty

The identity is exact when every prediction in a bucket equals the bucket
average; with spread inside buckets it holds up to the within-bucket
variance term.

Typical usage::

    tracker = RunningCalibration()
    tracker.add_prediction(0.7, True)
    metrics = tracker.metrics()
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np
from loguru import logger

from src.core.errors import InvalidParameterError
from src.core.grid import clamp_probability


def brier_score(prediction: float, actual: bool) -> float:
    outcome = 1.0 if actual else 0.0
    return (prediction - outcome) ** 2


def log_loss(prediction: float, actual: bool) -> float:
    """Negative log-likelihood of the outcome; finite even at p = 0 or 1."""
    p = clamp_probability(prediction)
    return -math.log(p) if actual else -math.log(1.0 - p)


@dataclass
class CalibrationBucket:
    """Predictions whose value falls in ``[min_probability, max_probability)``."""

    min_probability: float
    max_probability: float
    predictions: list[float] = field(default_factory=list)
    outcomes: list[bool] = field(default_factory=list)
    average_prediction: float = 0.0
    actual_rate: float = 0.0
    brier_contribution: float = 0.0

    @property
    def count(self) -> int:
        return len(self.predictions)


@dataclass(frozen=True)
class CalibrationMetrics:
    """Aggregate scores over a set of predictions.

    Attributes:
        brier_score: Mean Brier score (lower is better).
        log_loss: Mean log loss (lower is better).
        calibration_error: Count-weighted mean absolute gap between bucket
            average prediction and bucket hit rate.
        reliability: Murphy reliability term.
        resolution: Murphy resolution term.
        uncertainty: ``base_rate * (1 - base_rate)``.
        buckets: Per-bucket breakdown.
    """

    brier_score: float
    log_loss: float
    calibration_error: float
    reliability: float
    resolution: float
    uncertainty: float
    buckets: list[CalibrationBucket]

    @property
    def total_predictions(self) -> int:
        return sum(b.count for b in self.buckets)


def _validate_lengths(predictions: Sequence[float], outcomes: Sequence[bool]) -> None:
    if len(predictions) != len(outcomes):
        raise InvalidParameterError(
            f"predictions and outcomes must have the same length "
            f"({len(predictions)} != {len(outcomes)})"
        )


def create_calibration_buckets(
    predictions: Sequence[float],
    outcomes: Sequence[bool],
    num_buckets: int = 10,
) -> list[CalibrationBucket]:
    """Assign predictions to ``num_buckets`` equal-width probability bins.

    Raises:
        InvalidParameterError: On mismatched lengths or ``num_buckets < 1``.
    """
    _validate_lengths(predictions, outcomes)
    if num_buckets < 1:
        raise InvalidParameterError(f"num_buckets must be >= 1; got {num_buckets}")

    buckets = [
        CalibrationBucket(min_probability=i / num_buckets, max_probability=(i + 1) / num_buckets)
        for i in range(num_buckets)
    ]

    for prediction, outcome in zip(predictions, outcomes):
        index = min(max(int(math.floor(prediction * num_buckets)), 0), num_buckets - 1)
        buckets[index].predictions.append(float(prediction))
        buckets[index].outcomes.append(bool(outcome))

    for bucket in buckets:
        if bucket.count == 0:
            continue
        preds = np.asarray(bucket.predictions)
        outs = np.asarray(bucket.outcomes, dtype=np.float64)
        bucket.average_prediction = float(preds.mean())
        bucket.actual_rate = float(outs.mean())
        bucket.brier_contribution = float(np.mean((preds - outs) ** 2))

    return buckets


def calculate_calibration_metrics(
    predictions: Sequence[float],
    outcomes: Sequence[bool],
    num_buckets: int = 10,
) -> CalibrationMetrics:
    """Brier score, log loss, calibration error and Murphy decomposition.

    An empty input yields all-zero metrics.

    Raises:
        InvalidParameterError: On mismatched lengths.
    """
    _validate_lengths(predictions, outcomes)
    n = len(predictions)
    if n == 0:
        return CalibrationMetrics(0.0, 0.0, 0.0, 0.0, 0.0, 0.0, [])

    buckets = create_calibration_buckets(predictions, outcomes, num_buckets)

    brier = sum(brier_score(p, o) for p, o in zip(predictions, outcomes)) / n
    loss = sum(log_loss(p, o) for p, o in zip(predictions, outcomes)) / n
    base_rate = sum(1 for o in outcomes if o) / n

    calibration_error = 0.0
    reliability = 0.0
    resolution = 0.0
    total_weight = 0.0
    for bucket in buckets:
        if bucket.count == 0:
            continue
        weight = bucket.count / n
        gap = bucket.average_prediction - bucket.actual_rate
        calibration_error += weight * abs(gap)
        reliability += weight * gap**2
        resolution += weight * (bucket.actual_rate - base_rate) ** 2
        total_weight += weight

    if total_weight > 0:
        calibration_error /= total_weight

    return CalibrationMetrics(
        brier_score=brier,
        log_loss=loss,
        calibration_error=calibration_error,
        reliability=reliability,
        resolution=resolution,
        uncertainty=base_rate * (1.0 - base_rate),
        buckets=buckets,
    )


def calculate_confidence_interval(
    metrics: CalibrationMetrics,
    confidence: float = 0.95,
) -> dict[str, float]:
    """Normal-approximation intervals for the Brier score and log loss."""
    n = metrics.total_predictions
    if n == 0:
        return {"brier_lower": 0.0, "brier_upper": 0.0, "log_loss_lower": 0.0, "log_loss_upper": 0.0}

    # JUSTIFIED: two-sided normal quantiles for 95 % and 99 %.
    z = 1.96 if confidence == 0.95 else 2.576
    brier_se = math.sqrt(max(metrics.brier_score * (1.0 - metrics.brier_score), 0.0) / n)
    log_loss_se = math.sqrt(metrics.log_loss / n)

    return {
        "brier_lower": max(0.0, metrics.brier_score - z * brier_se),
        "brier_upper": min(1.0, metrics.brier_score + z * brier_se),
        "log_loss_lower": max(0.0, metrics.log_loss - z * log_loss_se),
        "log_loss_upper": metrics.log_loss + z * log_loss_se,
    }


class RunningCalibration:
    """Incrementally tracks prediction/outcome pairs over an episode."""

    def __init__(self) -> None:
        self._predictions: list[float] = []
        self._outcomes: list[bool] = []
        self._brier_sum = 0.0
        self._log_loss_sum = 0.0

    def add_prediction(self, prediction: float, actual: bool) -> None:
        self._predictions.append(float(prediction))
        self._outcomes.append(bool(actual))
        self._brier_sum += brier_score(prediction, actual)
        self._log_loss_sum += log_loss(prediction, actual)

    def metrics(self, num_buckets: int = 10) -> CalibrationMetrics:
        return calculate_calibration_metrics(self._predictions, self._outcomes, num_buckets)

    def running_averages(self) -> dict[str, float]:
        """Mean Brier score and log loss without rebuilding buckets."""
        count = len(self._predictions)
        return {
            "brier_score": self._brier_sum / count if count else 0.0,
            "log_loss": self._log_loss_sum / count if count else 0.0,
            "count": float(count),
        }

    def reset(self) -> None:
        self._predictions.clear()
        self._outcomes.clear()
        self._brier_sum = 0.0
        self._log_loss_sum = 0.0
        logger.debug("RunningCalibration reset")

    def raw_data(self) -> tuple[list[float], list[bool]]:
        return list(self._predictions), list(self._outcomes)

    def __len__(self) -> int:
        return len(self._predictions)
