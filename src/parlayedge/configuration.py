from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Sequence

import yaml
from pydantic import BaseModel, Field

from .correlation import CorrelationRecord, load_correlation_data
from .hybrid import HybridSimulationConfig

ENVIRONMENT_VARIABLE = "PARLAYEDGE_ENV"
EXTRA_CONFIG_VARIABLE = "PARLAYEDGE_CONFIG"
ENV_OVERRIDE_PREFIX = "PARLAYEDGE__"
DEFAULT_CONFIG_PATH = Path("config/parlayedge.yaml")

logger = logging.getLogger(__name__)


class SimulationConfig(BaseModel):
    """Monte Carlo controls for the hybrid simulator."""

    iterations: int = 50_000
    use_correlations: bool = True
    parametric_weight: float = 0.4
    monte_carlo_weight: float = 0.6
    min_edge_threshold: float = 0.0
    seed: int | None = None
    sport: str | None = None


class ScreeningConfig(BaseModel):
    """Thresholds used when screening candidate legs."""

    min_edge: float = 0.03


class ProjectionConfig(BaseModel):
    """Defaults for projection aggregation and line optimisation."""

    target_probability: float = 0.6
    default_odds: int = -110
    change_threshold: float = 0.05


class CorrelationConfig(BaseModel):
    """Location of historical correlation tables."""

    data_path: str | None = None


class StakingConfig(BaseModel):
    """Bankroll and Kelly sizing defaults."""

    bankroll: float = 1_000.0
    kelly_multiplier: float = 0.5
    max_bet_percent: float = 0.05
    parlay_correlation_factor: float = 0.85


class EngineConfig(BaseModel):
    """Aggregate configuration for the probability engine."""

    environment: str = "default"
    simulation: SimulationConfig = Field(default_factory=SimulationConfig)
    screening: ScreeningConfig = Field(default_factory=ScreeningConfig)
    projections: ProjectionConfig = Field(default_factory=ProjectionConfig)
    correlation: CorrelationConfig = Field(default_factory=CorrelationConfig)
    staking: StakingConfig = Field(default_factory=StakingConfig)


class ConfigurationError(ValueError):
    """Raised when engine configuration validation fails."""


_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise TypeError(f"Configuration at {path} must be a mapping")
    return dict(data)


def _merge_layers(base: Dict[str, Any], layer: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(base)
    for key, value in layer.items():
        if (
            key in merged
            and isinstance(merged[key], Mapping)
            and isinstance(value, Mapping)
        ):
            merged[key] = _merge_layers(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


def _resolve_env_tokens(value: Any) -> Any:
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda match: os.getenv(match.group(1), ""), value)
    if isinstance(value, Mapping):
        return {k: _resolve_env_tokens(v) for k, v in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [_resolve_env_tokens(item) for item in value]
    return value


def _coerce_env_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        lowered = raw.lower()
        if lowered in {"true", "false"}:
            return lowered == "true"
        return raw


def _set_nested(mapping: MutableMapping[str, Any], path: Iterable[str], value: Any) -> None:
    segments = list(path)
    if not segments:
        return
    head, *tail = segments
    key = head.lower().replace("-", "_")
    if not tail:
        mapping[key] = value
        return
    child = mapping.get(key)
    child = dict(child) if isinstance(child, MutableMapping) else {}
    mapping[key] = child
    _set_nested(child, tail, value)


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    updated = dict(data)
    for key, raw_value in os.environ.items():
        if not key.startswith(ENV_OVERRIDE_PREFIX):
            continue
        path = [segment for segment in key[len(ENV_OVERRIDE_PREFIX) :].split("__") if segment]
        if path:
            _set_nested(updated, path, _coerce_env_value(raw_value))
    return updated


def load_engine_config(
    *,
    base_path: str | os.PathLike[str] | None = None,
    environment: str | None = None,
    extra_paths: Sequence[str | os.PathLike[str]] | None = None,
) -> EngineConfig:
    """Load layered configuration for the engine.

    ``base_path`` (default ``config/parlayedge.yaml`` when present) is merged
    with ``<stem>.<env>.yaml``, extra override files from ``extra_paths`` and
    ``PARLAYEDGE_CONFIG``, and ``PARLAYEDGE__section__key`` environment
    variables.  An explicit ``base_path`` that does not exist raises
    :class:`FileNotFoundError`; without one, built-in defaults are used.
    """

    config_path: Path | None
    if base_path is not None:
        config_path = Path(base_path)
        data = _load_yaml(config_path)
    elif DEFAULT_CONFIG_PATH.exists():
        config_path = DEFAULT_CONFIG_PATH
        data = _load_yaml(config_path)
    else:
        config_path = None
        data = {}

    env_name = environment or os.getenv(ENVIRONMENT_VARIABLE) or data.get("environment")
    if isinstance(env_name, str):
        if config_path is not None:
            env_path = config_path.with_name(
                f"{config_path.stem}.{env_name}{config_path.suffix}"
            )
            if env_path.exists():
                data = _merge_layers(data, _load_yaml(env_path))
        data["environment"] = env_name

    merged = dict(data)
    override_sources: list[Path] = []
    if extra_paths:
        override_sources.extend(Path(path) for path in extra_paths)
    env_overrides = os.getenv(EXTRA_CONFIG_VARIABLE)
    if env_overrides:
        override_sources.extend(Path(token) for token in env_overrides.split(os.pathsep) if token)

    for override in override_sources:
        if override.exists():
            merged = _merge_layers(merged, _load_yaml(override))
        else:
            logger.debug("Skipping missing override file %s", override)

    merged = _apply_env_overrides(merged)
    merged = _resolve_env_tokens(merged)

    return EngineConfig.model_validate(merged)


def validate_engine_config(
    config: EngineConfig,
    *,
    base_path: str | os.PathLike[str] | None = None,
) -> list[str]:
    """Validate an :class:`EngineConfig` instance.

    Args:
        config: Parsed configuration object to validate.
        base_path: Configuration file that relative data paths are resolved
            against.

    Returns:
        A list of warning messages. The function raises
        :class:`ConfigurationError` if any fatal issues are detected.
    """

    errors: list[str] = []
    warnings: list[str] = []

    simulation = config.simulation
    if simulation.iterations <= 0:
        errors.append("simulation.iterations must be greater than zero")
    elif simulation.iterations < 1_000:
        warnings.append(
            "simulation.iterations is below 1000; Monte Carlo estimates will be noisy"
        )
    for field_name in ("parametric_weight", "monte_carlo_weight"):
        if getattr(simulation, field_name) < 0:
            errors.append(f"simulation.{field_name} must be non-negative")
    weight_total = simulation.parametric_weight + simulation.monte_carlo_weight
    if abs(weight_total - 1.0) > 1e-6:
        warnings.append(
            f"simulation blend weights sum to {weight_total:g}; hybrid probabilities "
            "will not be on a probability scale"
        )
    if not -1.0 < simulation.min_edge_threshold < 1.0:
        errors.append("simulation.min_edge_threshold must be within (-1, 1)")

    screening = config.screening
    if not -1.0 < screening.min_edge < 1.0:
        errors.append("screening.min_edge must be within (-1, 1)")
    elif screening.min_edge <= 0:
        warnings.append(
            "screening.min_edge is not positive; every non-negative edge will pass"
        )

    projections = config.projections
    if not 0 < projections.target_probability < 1:
        errors.append("projections.target_probability must be within (0, 1)")
    if projections.default_odds == 0:
        errors.append("projections.default_odds cannot be zero")
    if projections.change_threshold <= 0:
        errors.append("projections.change_threshold must be greater than zero")

    data_path = config.correlation.data_path
    if data_path is not None:
        if not data_path.strip():
            errors.append("correlation.data_path cannot be empty")
        elif not _resolve_relative(data_path, base_path).exists():
            warnings.append(
                f"correlation.data_path {data_path!r} does not exist; "
                "default correlations will be used"
            )

    staking = config.staking
    if staking.bankroll <= 0:
        errors.append("staking.bankroll must be greater than zero")
    if not 0 < staking.kelly_multiplier <= 1:
        errors.append("staking.kelly_multiplier must be within (0, 1]")
    if not 0 < staking.max_bet_percent <= 0.25:
        errors.append("staking.max_bet_percent must be within (0, 0.25]")
    if not 0 < staking.parlay_correlation_factor <= 1:
        errors.append("staking.parlay_correlation_factor must be within (0, 1]")

    if errors:
        bullet_list = "\n".join(f"- {message}" for message in errors)
        raise ConfigurationError(f"Configuration validation failed:\n{bullet_list}")

    return warnings


def _resolve_relative(path: str, base_path: str | os.PathLike[str] | None) -> Path:
    candidate = Path(path)
    if not candidate.is_absolute() and base_path is not None:
        base_root = Path(base_path)
        if base_root.is_file():
            base_root = base_root.parent
        candidate = base_root / candidate
    return candidate


def load_configured_correlations(
    config: EngineConfig,
    *,
    base_path: str | os.PathLike[str] | None = None,
) -> list[CorrelationRecord]:
    """Load the correlation table referenced by configuration, if any."""

    data_path = config.correlation.data_path
    if not data_path:
        return []
    resolved = _resolve_relative(data_path, base_path)
    if not resolved.exists():
        logger.warning(
            "Correlation data %s not found; falling back to default correlations",
            resolved,
        )
        return []
    return load_correlation_data(resolved)


def create_simulation_config(
    config: EngineConfig,
    *,
    base_path: str | os.PathLike[str] | None = None,
    correlation_data: Sequence[CorrelationRecord] | None = None,
) -> HybridSimulationConfig:
    """Construct a :class:`HybridSimulationConfig` with configuration defaults."""

    simulation = config.simulation
    records = (
        list(correlation_data)
        if correlation_data is not None
        else load_configured_correlations(config, base_path=base_path)
    )
    return HybridSimulationConfig(
        iterations=simulation.iterations,
        use_correlations=simulation.use_correlations,
        parametric_weight=simulation.parametric_weight,
        monte_carlo_weight=simulation.monte_carlo_weight,
        min_edge_threshold=simulation.min_edge_threshold,
        correlation_data=tuple(records),
        sport=simulation.sport,
        seed=simulation.seed,
    )


__all__ = [
    "ConfigurationError",
    "CorrelationConfig",
    "EngineConfig",
    "ProjectionConfig",
    "ScreeningConfig",
    "SimulationConfig",
    "StakingConfig",
    "create_simulation_config",
    "load_configured_correlations",
    "load_engine_config",
    "validate_engine_config",
]
