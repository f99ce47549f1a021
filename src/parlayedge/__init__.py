"""
parlayedge: probability and correlation engine for pricing parlays.

The package prices individual legs with Poisson and Normal models, estimates
the dependence between legs, and blends parametric and Monte Carlo estimates
into parlay win rates, edges and stake recommendations.
"""

from importlib.metadata import PackageNotFoundError, version

try:  # pragma: no cover - exercised in packaging workflows
    __version__ = version("parlayedge")
except PackageNotFoundError:  # pragma: no cover - local editable installs
    __version__ = "0.0.0"

_EXPORTS = {
    # Single-leg models
    "MarketKind": ".parametric",
    "ContextualFactors": ".parametric",
    "GameTotalsInput": ".parametric",
    "calculate_prop_probability": ".parametric",
    "calculate_game_probabilities": ".parametric",
    "apply_contextual_adjustments": ".parametric",
    "screen_prop_candidate": ".parametric",
    "calculate_expected_value": ".parametric",
    "calculate_fair_odds": ".parametric",
    # Legs and correlation
    "LegInput": ".models",
    "CorrelationRecord": ".correlation",
    "build_correlation_matrix": ".correlation",
    "calculate_correlated_probability": ".correlation",
    "load_correlation_data": ".correlation",
    # Simulation
    "HybridSimulationConfig": ".hybrid",
    "HybridSimulator": ".hybrid",
    "run_hybrid_simulation": ".hybrid",
    "quick_hybrid_analysis": ".hybrid",
    "batch_screen_candidates": ".hybrid",
    # Projections
    "ProjectionSource": ".projections",
    "aggregate_projections": ".projections",
    "find_optimal_line": ".projections",
    "optimize_player_prop": ".projections",
    "optimize_parlay": ".projections",
    "detect_projection_change": ".projections",
    # Staking
    "calculate_kelly": ".staking",
    "calculate_parlay_kelly": ".staking",
    # Configuration
    "EngineConfig": ".configuration",
    "ConfigurationError": ".configuration",
    "load_engine_config": ".configuration",
    "validate_engine_config": ".configuration",
    "configure_logging": ".logging",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> object:  # pragma: no cover - thin lazy importer
    from importlib import import_module

    target_module = _EXPORTS.get(name)
    if not target_module:
        raise AttributeError(f"module {__name__} has no attribute {name}")
    module = import_module(target_module, __name__)
    attr = getattr(module, name)
    globals()[name] = attr
    return attr


def __dir__() -> list[str]:  # pragma: no cover - trivial
    return sorted(list(globals().keys()) + __all__)
