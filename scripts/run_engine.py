#!/usr/bin/env python3
"""Run one seeded episode of the belief and decision engine.

Generates a ground-truth world from the seed, builds the initial belief
grid, then alternates recommended actions (recon / strike / wait) until the
turn limit or budget runs out.  Every random draw derives from the seed, so
two runs with the same seed and config print identical episodes.

Usage::

    # Today's daily seed with default config
    python scripts/run_engine.py

    # Fixed seed, write heatmaps as CSV
    python scripts/run_engine.py --seed demo-1 --output-dir out/

    # Only print the policy recommendations for the initial grid
    python scripts/run_engine.py --recommend-only
"""

from __future__ import annotations

import argparse
import signal
import sys
import time
from pathlib import Path
from typing import Any

from loguru import logger

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "engine.yaml"

# Ensure the src package is importable when running as a script.
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from src.analytics.heatmaps import (  # noqa: E402
    belief_entropy,
    heatmap_to_frame,
    normalize_heatmap,
    posterior_heatmap,
)
from src.core.config import EngineConfig, load_engine_config  # noqa: E402
from src.core.grid import Grid, TruthField  # noqa: E402
from src.decision.policy import PolicyAdvisor  # noqa: E402
from src.fields.truth_generation import (  # noqa: E402
    SpatialFieldGenerator,
    create_grid,
    spatial_accuracy,
)
from src.inference.bayesian import BayesianUpdater  # noqa: E402
from src.inference.calibration import RunningCalibration  # noqa: E402
from src.inference.recon import perform_recon  # noqa: E402
from src.sensors.sensor_model import SensorModel, SensorType  # noqa: E402


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

def _configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Configure loguru sinks for console and optional file output.

    Args:
        level: Minimum log level for all sinks.
        log_file: Optional path to a rotating log file.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        ),
        colorize=True,
    )
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_path),
            level=level,
            rotation="10 MB",
            retention="30 days",
            compression="gz",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}",
        )
    logger.info("Logging configured at level={}", level)


# ---------------------------------------------------------------------------
# Episode stages
# ---------------------------------------------------------------------------

def stage_generate(config: EngineConfig) -> tuple[TruthField, Grid]:
    """Stage 1: synthesise ground truth and the initial belief grid."""
    t0 = time.monotonic()
    generator = SpatialFieldGenerator(config.spatial_field)
    truth = generator.generate_truth_field(config.grid_width, config.grid_height, config.seed)
    grid = create_grid(truth, config.beta_priors)
    logger.info(
        "Generated {}x{} world in {:.2f}s: {} hostiles, {} infrastructure cells",
        config.grid_width,
        config.grid_height,
        time.monotonic() - t0,
        int(truth.hostile_truth.sum()),
        int(truth.infra_truth.sum()),
    )
    return truth, grid


def stage_episode(
    config: EngineConfig,
    truth: TruthField,
    grid: Grid,
    sensor: SensorType,
    use_truth_for_voi: bool,
    force_strikes: bool = False,
) -> dict[str, Any]:
    """Stage 2: follow the combined recommendation turn by turn.

    Strikes that need confirmation (negative expected value) end the episode
    unless *force_strikes* is set.
    """
    advisor = PolicyAdvisor(config)
    updater = BayesianUpdater(config.diffusion)
    sensor_model = SensorModel()
    calibration = RunningCalibration()
    budget = config.initial_budget
    score = 0.0
    actions: list[str] = []

    for turn in range(config.max_turns):
        _check_shutdown()
        rec = advisor.recommend_action(
            grid,
            budget,
            turn,
            sensor,
            truth=truth if use_truth_for_voi else None,
        )
        logger.info("Turn {}: {} ({})", turn, rec.action, rec.reasoning)
        actions.append(rec.action)

        if rec.action == "recon":
            outcome = perform_recon(
                grid,
                rec.x,
                rec.y,
                sensor,
                turn,
                config.seed,
                truth.has_hostile(rec.x, rec.y),
                updater=updater,
                sensor_model=sensor_model,
            )
            calibration.add_prediction(outcome.prior_probability, truth.has_hostile(rec.x, rec.y))
            budget -= outcome.cost
        elif rec.action == "strike":
            validation = advisor.strike_evaluator.validate_strike(grid, rec.x, rec.y, rec.radius, budget)
            if not validation.allowed:
                logger.warning("Strike at ({}, {}) rejected: {}", rec.x, rec.y, validation.reason)
                break
            if validation.requires_confirmation:
                if not force_strikes:
                    logger.warning(
                        "Strike at ({}, {}) needs confirmation, stopping: {}",
                        rec.x,
                        rec.y,
                        validation.reason,
                    )
                    break
                logger.warning("Force-executing strike at ({}, {}): {}", rec.x, rec.y, validation.reason)
            result = advisor.strike_evaluator.execute_strike(truth, rec.x, rec.y, rec.radius)
            score += result.net_points
            budget -= config.strike_cost
        else:
            break

        if budget <= 0:
            logger.info("Budget exhausted after turn {}", turn)
            break

    averages = calibration.running_averages()
    return {
        "actions": actions,
        "score": score,
        "remaining_budget": budget,
        "brier_score": averages["brier_score"],
        "log_loss": averages["log_loss"],
        "accuracy": spatial_accuracy(grid.posterior, truth.hostile_truth),
        "entropy": belief_entropy(grid),
    }


def stage_export(config: EngineConfig, grid: Grid, output_dir: Path) -> list[Path]:
    """Stage 3: write posterior, EV and risk heatmaps as long-format CSV."""
    advisor = PolicyAdvisor(config)
    heatmaps = {
        "posterior": posterior_heatmap(grid),
        "expected_value": advisor.strike_evaluator.generate_ev_heatmap(grid),
        "risk_averse": advisor.risk_evaluator.risk_averse_heatmap(grid),
        "variance": advisor.risk_evaluator.variance_heatmap(grid),
        "loss_risk": advisor.risk_evaluator.loss_risk_heatmap(grid),
    }
    output_dir.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    for name, values in heatmaps.items():
        frame = heatmap_to_frame(values).with_columns(
            heatmap_to_frame(normalize_heatmap(values), name="normalized")["normalized"]
        )
        path = output_dir / f"{name}.csv"
        frame.write_csv(path)
        written.append(path)
        logger.info("Wrote {} ({} rows)", path, frame.height)
    return written


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments for the episode runner.

    Args:
        argv: Argument list (defaults to ``sys.argv[1:]``).

    Returns:
        Parsed :class:`argparse.Namespace`.
    """
    parser = argparse.ArgumentParser(
        prog="run_engine",
        description="Seeded belief and decision engine episode",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python scripts/run_engine.py\n"
            "  python scripts/run_engine.py --seed demo-1 --output-dir out/\n"
            "  python scripts/run_engine.py --recommend-only --sensor sigint\n"
        ),
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to engine.yaml.",
    )
    parser.add_argument("--seed", default=None, help="Episode seed (overrides config).")
    parser.add_argument(
        "--sensor",
        choices=[s.value for s in SensorType],
        default=SensorType.DRONE.value,
        help="Sensor used for reconnaissance.",
    )
    parser.add_argument(
        "--recommend-only",
        action="store_true",
        default=False,
        help="Print the three policy recommendations for the initial grid and exit.",
    )
    parser.add_argument(
        "--truth-conditioned-voi",
        action="store_true",
        default=False,
        help="Condition VOI readings on the hidden truth instead of the belief.",
    )
    parser.add_argument(
        "--force-strikes",
        action="store_true",
        default=False,
        help="Execute strikes that need confirmation (negative expected value).",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Directory for heatmap CSV files.",
    )
    parser.add_argument(
        "--log-level",
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Minimum log level.",
    )
    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Graceful shutdown
# ---------------------------------------------------------------------------

_shutdown_requested: bool = False


def _handle_signal(signum: int, _frame: Any) -> None:
    global _shutdown_requested
    _shutdown_requested = True
    logger.warning("Received {} -- requesting graceful shutdown", signal.Signals(signum).name)


def _check_shutdown() -> None:
    if _shutdown_requested:
        logger.info("Graceful shutdown in progress")
        raise SystemExit(130)


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> int:
    """Run one episode.

    Args:
        argv: Optional CLI argument list (for testing).

    Returns:
        Exit code (0 on success, non-zero on failure).
    """
    args = parse_args(argv)
    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)
    _configure_logging(level=args.log_level)

    try:
        config = load_engine_config(args.config, overrides={"seed": args.seed})
    except Exception as exc:
        logger.critical("Failed to load configuration: {}", exc)
        return 1

    sensor = SensorType.parse(args.sensor)
    t0 = time.monotonic()

    try:
        truth, grid = stage_generate(config)

        if args.recommend_only:
            recs = PolicyAdvisor(config).recommend_all(
                grid,
                config.initial_budget,
                current_turn=0,
                sensor=sensor,
                truth=truth if args.truth_conditioned_voi else None,
            )
            for rec in recs:
                print(f"{rec.kind:<12} {rec.action:<7} ({rec.x}, {rec.y}) "
                      f"value={rec.value:8.1f} confidence={rec.confidence:.2f}  {rec.reasoning}")
            return 0

        summary = stage_episode(
            config, truth, grid, sensor, args.truth_conditioned_voi, args.force_strikes
        )
        if args.output_dir is not None:
            stage_export(config, grid, args.output_dir)

        logger.info("Episode finished in {:.1f}s", time.monotonic() - t0)
        for key, value in summary.items():
            print(f"{key:<18} {value}")
        return 0

    except SystemExit as exc:
        logger.info("Episode terminated by signal (code={})", exc.code)
        return int(exc.code) if exc.code is not None else 130
    except Exception as exc:
        logger.exception("Episode failed with unexpected error: {}", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
