from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest

from parlayedge.configuration import (
    ConfigurationError,
    EngineConfig,
    create_simulation_config,
    load_configured_correlations,
    load_engine_config,
    validate_engine_config,
)
from parlayedge.correlation import CorrelationRecord

ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("PARLAYEDGE"):
            monkeypatch.delenv(key, raising=False)


def test_defaults_without_config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    config = load_engine_config()
    assert config == EngineConfig()
    assert config.simulation.iterations == 50_000
    assert validate_engine_config(config) == []


def test_repository_configuration_loads(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(ROOT)
    config = load_engine_config()
    assert config.correlation.data_path == "correlations.yaml"
    base = ROOT / "config" / "parlayedge.yaml"
    assert validate_engine_config(config, base_path=base) == []

    simulation = create_simulation_config(config, base_path=base)
    assert simulation.iterations == config.simulation.iterations
    assert len(simulation.correlation_data) == 4
    assert all(isinstance(record, CorrelationRecord) for record in simulation.correlation_data)


def test_configuration_layers_and_env_overrides(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    base = tmp_path / "parlayedge.yaml"
    base.write_text(
        """
simulation:
  iterations: 10000
  seed: 7
staking:
  bankroll: 500.0
  kelly_multiplier: 0.5
"""
    )
    (tmp_path / "parlayedge.production.yaml").write_text(
        """
simulation:
  iterations: 20000
staking:
  kelly_multiplier: 0.25
"""
    )
    extra = tmp_path / "override.yaml"
    extra.write_text(
        """
staking:
  kelly_multiplier: 0.3
"""
    )

    monkeypatch.setenv("PARLAYEDGE_ENV", "production")
    monkeypatch.setenv("PARLAYEDGE_CONFIG", str(extra))
    monkeypatch.setenv("PARLAYEDGE__simulation__use_correlations", "false")
    monkeypatch.setenv("PARLAYEDGE__screening__min_edge", "0.05")

    config = load_engine_config(base_path=base)

    assert config.environment == "production"
    assert config.simulation.iterations == 20_000
    assert config.simulation.seed == 7
    assert config.simulation.use_correlations is False
    assert config.screening.min_edge == pytest.approx(0.05)
    assert config.staking.kelly_multiplier == pytest.approx(0.3)
    assert config.staking.bankroll == pytest.approx(500.0)


def test_explicit_environment_and_extra_paths(tmp_path: Path) -> None:
    base = tmp_path / "engine.yaml"
    base.write_text("projections:\n  target_probability: 0.55\n")
    (tmp_path / "engine.staging.yaml").write_text("projections:\n  default_odds: -120\n")
    missing = tmp_path / "missing.yaml"

    config = load_engine_config(base_path=base, environment="staging", extra_paths=[missing])

    assert config.environment == "staging"
    assert config.projections.target_probability == pytest.approx(0.55)
    assert config.projections.default_odds == -120


def test_environment_token_substitution(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CORRELATION_ROOT", str(tmp_path / "tables"))
    base = tmp_path / "parlayedge.yaml"
    base.write_text('correlation:\n  data_path: "${CORRELATION_ROOT}/nba.yaml"\n')

    config = load_engine_config(base_path=base)

    assert Path(config.correlation.data_path or "") == tmp_path / "tables" / "nba.yaml"


def test_missing_explicit_config_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_engine_config(base_path=tmp_path / "absent.yaml")


def test_non_mapping_config_raises(tmp_path: Path) -> None:
    base = tmp_path / "parlayedge.yaml"
    base.write_text("- just\n- a list\n")
    with pytest.raises(TypeError, match="must be a mapping"):
        load_engine_config(base_path=base)


def test_validation_collects_errors() -> None:
    config = EngineConfig.model_validate(
        {
            "simulation": {"iterations": 0, "parametric_weight": -0.1},
            "projections": {"target_probability": 1.2, "default_odds": 0},
            "staking": {"bankroll": 0, "kelly_multiplier": 1.5},
        }
    )
    with pytest.raises(ConfigurationError) as excinfo:
        validate_engine_config(config)
    message = str(excinfo.value)
    assert "simulation.iterations must be greater than zero" in message
    assert "simulation.parametric_weight must be non-negative" in message
    assert "projections.target_probability must be within (0, 1)" in message
    assert "projections.default_odds cannot be zero" in message
    assert "staking.bankroll must be greater than zero" in message
    assert "staking.kelly_multiplier must be within (0, 1]" in message


def test_validation_warnings(tmp_path: Path) -> None:
    config = EngineConfig.model_validate(
        {
            "simulation": {"iterations": 500, "parametric_weight": 0.5},
            "screening": {"min_edge": 0.0},
            "correlation": {"data_path": "missing.yaml"},
        }
    )
    warnings = validate_engine_config(config, base_path=tmp_path)
    assert len(warnings) == 4
    assert any("below 1000" in message for message in warnings)
    assert any("blend weights sum to 1.1" in message for message in warnings)
    assert any("screening.min_edge" in message for message in warnings)
    assert any("'missing.yaml' does not exist" in message for message in warnings)


def test_empty_data_path_is_an_error() -> None:
    config = EngineConfig.model_validate({"correlation": {"data_path": "  "}})
    with pytest.raises(ConfigurationError, match="data_path cannot be empty"):
        validate_engine_config(config)


def test_relative_data_path_resolves_next_to_config(tmp_path: Path) -> None:
    base = tmp_path / "parlayedge.yaml"
    base.write_text("correlation:\n  data_path: tables.yaml\n")
    (tmp_path / "tables.yaml").write_text(
        "- {market_1: spreads, market_2: totals, correlation_type: same_game, coefficient: 0.2}\n"
    )
    config = load_engine_config(base_path=base)

    assert validate_engine_config(config, base_path=base) == []
    (record,) = load_configured_correlations(config, base_path=base)
    assert record.coefficient == pytest.approx(0.2)


def test_missing_correlation_file_falls_back(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    config = EngineConfig.model_validate({"correlation": {"data_path": "absent.yaml"}})
    with caplog.at_level(logging.WARNING, logger="parlayedge.configuration"):
        records = load_configured_correlations(config, base_path=tmp_path)
    assert records == []
    assert "falling back to default correlations" in caplog.text


def test_create_simulation_config_prefers_explicit_records() -> None:
    config = EngineConfig.model_validate(
        {
            "simulation": {
                "iterations": 1234,
                "use_correlations": False,
                "seed": 11,
                "sport": "NBA",
            },
            "correlation": {"data_path": "does-not-matter.yaml"},
        }
    )
    record = CorrelationRecord("NBA", "player_points", "player_assists", "same_player", 0.4, 10)

    simulation = create_simulation_config(config, correlation_data=[record])

    assert simulation.iterations == 1234
    assert simulation.use_correlations is False
    assert simulation.seed == 11
    assert simulation.sport == "NBA"
    assert tuple(simulation.correlation_data) == (record,)
