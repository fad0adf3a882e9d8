"""Smoke tests for the episode runner script on a small grid."""

from __future__ import annotations

import importlib.util
from pathlib import Path

import numpy as np
import polars as pl
import pytest
import yaml

PROJECT_ROOT = Path(__file__).resolve().parents[2]


@pytest.fixture(scope="module")
def run_engine():
    spec = importlib.util.spec_from_file_location(
        "run_engine", PROJECT_ROOT / "scripts" / "run_engine.py"
    )
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def small_config(tmp_path: Path) -> Path:
    path = tmp_path / "engine.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "engine": {
                    "grid_width": 5,
                    "grid_height": 5,
                    "max_turns": 3,
                    "voi_samples": 2,
                    "policy_samples": 10,
                    "heatmap_samples": 10,
                }
            }
        )
    )
    return path


def test_episode_writes_heatmaps(run_engine, small_config: Path, tmp_path: Path) -> None:
    out = tmp_path / "out"
    code = run_engine.main(
        ["--config", str(small_config), "--seed", "smoke", "--output-dir", str(out),
         "--log-level", "WARNING"]
    )
    assert code == 0
    frame = pl.read_csv(out / "expected_value.csv")
    assert frame.columns == ["x", "y", "value", "normalized"]
    assert frame.height == 25
    assert {p.name for p in out.iterdir()} == {
        "posterior.csv", "expected_value.csv", "risk_averse.csv", "variance.csv", "loss_risk.csv"
    }


def test_recommend_only(run_engine, small_config: Path, capsys) -> None:
    code = run_engine.main(
        ["--config", str(small_config), "--seed", "smoke", "--recommend-only",
         "--log-level", "WARNING"]
    )
    assert code == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert [line.split()[0] for line in lines] == ["greedy_ev", "risk_averse", "recon_voi"]


def test_episode_is_reproducible(run_engine, small_config: Path) -> None:
    config = run_engine.load_engine_config(small_config, overrides={"seed": "replay"})
    summaries = []
    for _ in range(2):
        truth, grid = run_engine.stage_generate(config)
        summaries.append(
            run_engine.stage_episode(config, truth, grid, run_engine.SensorType.DRONE, False)
        )
    assert summaries[0] == summaries[1]


def _losing_grid(run_engine):
    return run_engine.Grid(
        posterior=np.full((5, 5), 0.01),
        hostile_prior_field=np.full((5, 5), 0.01),
        infra_prior=np.zeros((5, 5)),
    )


@pytest.fixture
def losing_config(run_engine, small_config: Path):
    # Recon unaffordable, so the advisor falls back to a negative-EV strike.
    return run_engine.load_engine_config(
        small_config,
        overrides={"seed": "confirm", "initial_budget": 100, "recon_cost": 500},
    )


def test_negative_ev_strike_stops_episode(run_engine, losing_config) -> None:
    truth, _ = run_engine.stage_generate(losing_config)
    summary = run_engine.stage_episode(
        losing_config, truth, _losing_grid(run_engine), run_engine.SensorType.DRONE, False
    )
    assert summary["actions"] == ["strike"]
    assert summary["score"] == 0.0
    assert summary["remaining_budget"] == 100


def test_forced_negative_ev_strikes_execute(run_engine, losing_config) -> None:
    truth, _ = run_engine.stage_generate(losing_config)
    summary = run_engine.stage_episode(
        losing_config,
        truth,
        _losing_grid(run_engine),
        run_engine.SensorType.DRONE,
        False,
        force_strikes=True,
    )
    assert summary["actions"] == ["strike", "strike"]
    assert summary["remaining_budget"] == 0


def test_missing_config_fails(run_engine, tmp_path: Path) -> None:
    assert run_engine.main(["--config", str(tmp_path / "nope.yaml"), "--log-level", "ERROR"]) == 1
