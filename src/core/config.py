"""Configuration records for the belief and decision engine.

All records are pydantic models so that values loaded from YAML are
validated at the boundary: a negative cost or a probability outside
``(0, 1)`` fails immediately instead of producing silently wrong numbers
deep inside a heatmap sweep.

Typical usage::

    config = load_engine_config("config/engine.yaml")
    config = EngineConfig(seed="daily-2024-05-01", grid_width=10, grid_height=10)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import BaseModel as PydanticBaseModel, Field, field_validator

from src.core.rng import daily_seed


class SpatialFieldConfig(PydanticBaseModel):
    """Hyper-parameters of the latent hostile/infrastructure fields.

    Attributes:
        noise_scale: Standard deviation of the raw Gaussian noise.
        smoothing_sigma: Gaussian smoothing sigma, i.e. the spatial
            correlation length in cells.
        logistic_steepness: Slope of the final logistic transform.
        hostile_base_probability: Base rate whose logit biases the field.
        infra_base_probability: Infrastructure base rate.
    """

    noise_scale: float = Field(default=1.0, ge=0.0)
    smoothing_sigma: float = Field(default=1.5, ge=0.0)
    logistic_steepness: float = Field(default=1.2, gt=0.0)
    hostile_base_probability: float = Field(default=0.25, gt=0.0, lt=1.0)
    infra_base_probability: float = Field(default=0.05, gt=0.0, lt=1.0)


class BetaPriorConfig(PydanticBaseModel):
    """Beta prior hyper-parameters; the prior belief is the Beta mean."""

    # JUSTIFIED: mean 2 / 8 = 0.25 matches the default hostile base rate.
    hostile_alpha: float = Field(default=2.0, gt=0.0)
    hostile_beta: float = Field(default=6.0, gt=0.0)
    # JUSTIFIED: mean 1 / 20 = 0.05 matches the default infrastructure rate.
    infra_alpha: float = Field(default=1.0, gt=0.0)
    infra_beta: float = Field(default=19.0, gt=0.0)

    @property
    def hostile_mean(self) -> float:
        return self.hostile_alpha / (self.hostile_alpha + self.hostile_beta)

    @property
    def infra_mean(self) -> float:
        return self.infra_alpha / (self.infra_alpha + self.infra_beta)


class DiffusionConfig(PydanticBaseModel):
    """Spatial diffusion of belief updates into neighbouring cells.

    Attributes:
        kernel_size: Neighbourhood radius (1 = 3x3, 2 = 5x5, ...).
        diffusion_strength: Fraction of the log-odds change passed on at
            distance zero.
        distance_decay: Length scale of the ``exp(-d / decay)`` fall-off.
    """

    kernel_size: int = Field(default=1, ge=0)
    diffusion_strength: float = Field(default=0.15, ge=0.0, le=1.0)
    distance_decay: float = Field(default=1.5, gt=0.0)


class MonteCarloConfig(PydanticBaseModel):
    """Settings for one Monte Carlo world-sampling run."""

    num_samples: int = Field(default=100, gt=0)
    seed: str
    use_importance_sampling: bool = False


class EngineConfig(PydanticBaseModel):
    """Top-level configuration record handed to the engine.

    Attributes:
        seed: Episode seed; every random stream is derived from it.
        grid_width: Number of columns.
        grid_height: Number of rows.
        initial_budget: Starting budget (consumed by the caller, recorded
            here so that budget-aware policies see the same numbers).
        max_turns: Episode length.
        hostile_value: Reward per hostile neutralised.
        infra_penalty: Penalty per infrastructure cell hit.
        strike_cost: Fixed cost of a strike.
        recon_cost: Nominal minimum reconnaissance cost.
        collateral_threshold: Maximum tolerated single-cell infrastructure
            probability inside a strike's area of effect.
        risk_aversion: lambda in ``EV - lambda * |CVaR95|``.
        strike_radius: Default Manhattan radius of a strike.
        voi_samples: Hypothetical readings per VOI candidate in sweeps.
        policy_samples: Monte Carlo worlds drawn for the risk-averse policy.
        heatmap_samples: Monte Carlo worlds drawn for risk heatmaps.
        recent_turn_window: Turns counted as "recent" for the recon
            diminishing-returns cutoff.
    """

    seed: str = Field(default_factory=daily_seed)
    grid_width: int = Field(default=14, gt=0)
    grid_height: int = Field(default=14, gt=0)
    initial_budget: float = Field(default=1000.0, ge=0.0)
    max_turns: int = Field(default=10, gt=0)
    hostile_value: float = Field(default=100.0, ge=0.0)
    infra_penalty: float = Field(default=200.0, ge=0.0)
    strike_cost: float = Field(default=50.0, ge=0.0)
    recon_cost: float = Field(default=10.0, ge=0.0)
    collateral_threshold: float = Field(default=0.1, ge=0.0, le=1.0)
    risk_aversion: float = Field(default=0.5, ge=0.0)
    strike_radius: int = Field(default=1, ge=0)
    voi_samples: int = Field(default=20, gt=0)
    policy_samples: int = Field(default=50, gt=0)
    heatmap_samples: int = Field(default=100, gt=0)
    recent_turn_window: int = Field(default=3, gt=0)

    spatial_field: SpatialFieldConfig = Field(default_factory=SpatialFieldConfig)
    beta_priors: BetaPriorConfig = Field(default_factory=BetaPriorConfig)
    diffusion: DiffusionConfig = Field(default_factory=DiffusionConfig)

    model_config = {"frozen": True}

    @field_validator("seed")
    @classmethod
    def _seed_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("seed must be a non-empty string")
        return value


def load_engine_config(
    path: str | Path,
    overrides: dict[str, Any] | None = None,
) -> EngineConfig:
    """Load an :class:`EngineConfig` from a YAML file.

    The file may either hold the fields at top level or nest them under an
    ``engine:`` key.

    Args:
        path: Path to the YAML file.
        overrides: Values applied on top of the file contents (e.g. a seed
            passed on the command line).

    Returns:
        The validated configuration.

    Raises:
        FileNotFoundError: If *path* does not exist.
        pydantic.ValidationError: If a value is out of range.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Engine config not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    data = raw.get("engine", raw)
    if overrides:
        data = {**data, **{k: v for k, v in overrides.items() if v is not None}}

    config = EngineConfig(**data)
    logger.info(
        "Loaded engine config from {} (grid={}x{}, seed={!r})",
        config_path,
        config.grid_width,
        config.grid_height,
        config.seed,
    )
    return config
