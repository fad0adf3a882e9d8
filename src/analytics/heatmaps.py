"""Heatmap helpers for collaborators that render or export grids.

All heatmaps are ``(height, width)`` float arrays indexed ``[y, x]``.
Normalisation maps values onto ``[0, 1]``; a heatmap with zero range (all
cells equal) normalises to a constant ``0.0`` so that NaN never reaches a
renderer.
"""

from __future__ import annotations

import numpy as np
import polars as pl
from loguru import logger
from numpy.typing import NDArray

from src.core.grid import Grid, clamp_probability


def posterior_heatmap(grid: Grid) -> NDArray[np.float64]:
    return grid.posterior.copy()


def normalize_heatmap(heatmap: NDArray[np.float64]) -> NDArray[np.float64]:
    """Min-max scale *heatmap* onto ``[0, 1]``.

    Non-finite entries are ignored when finding the range and map to 0.

    Args:
        heatmap: 2-D array of raw values.

    Returns:
        A new array of the same shape.
    """
    values = np.asarray(heatmap, dtype=np.float64)
    finite = np.isfinite(values)
    if not finite.all():
        logger.warning("Heatmap has {} non-finite cell(s); mapping them to 0", int((~finite).sum()))
    if not finite.any():
        return np.zeros_like(values)

    low = float(values[finite].min())
    high = float(values[finite].max())
    span = high - low
    if span <= 0:
        return np.zeros_like(values)

    normalised = (values - low) / span
    return np.where(finite, normalised, 0.0)


def heatmap_to_frame(heatmap: NDArray[np.float64], name: str = "value") -> pl.DataFrame:
    """Long-format table with one row per cell: ``x``, ``y``, *name*."""
    values = np.asarray(heatmap, dtype=np.float64)
    height, width = values.shape
    ys, xs = np.divmod(np.arange(height * width), width)
    return pl.DataFrame(
        {
            "x": xs.astype(np.int64),
            "y": ys.astype(np.int64),
            name: values.ravel(),
        }
    )


def belief_entropy(grid: Grid) -> float:
    """Mean binary entropy (bits) of the posterior grid.

    1.0 when every cell sits at 0.5; close to 0 when beliefs are confident.
    """
    p = clamp_probability(grid.posterior)
    entropy = -(p * np.log2(p) + (1.0 - p) * np.log2(1.0 - p))
    return float(entropy.mean())
