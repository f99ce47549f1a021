"""Leg definitions shared by the correlation estimator and the simulator."""

from __future__ import annotations

import dataclasses
from typing import Any, Mapping, SupportsFloat

from .parametric import ContextualFactors, MarketKind, SideLiteral
from .utils import normalise_american_odds


@dataclasses.dataclass(frozen=True, slots=True)
class LegInput:
    """A single wager inside a parlay."""

    id: str
    market: MarketKind
    subject: str
    line: float
    side: SideLiteral
    american_odds: int
    sport: str = ""
    expected_value: float | None = None
    team: str | None = None
    game_id: str | None = None
    context: ContextualFactors | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "market", MarketKind.coerce(self.market))
        if self.side not in ("over", "under"):
            raise ValueError(f"Leg {self.id!r} has invalid side {self.side!r}")
        if self.american_odds == 0:
            raise ValueError(f"Leg {self.id!r} has zero American odds")


def _coerce_str(value: object | None, field: str) -> str:
    if value is None:
        raise TypeError(f"Missing required field {field}")
    if isinstance(value, str):
        return value
    return str(value)


def _coerce_optional_str(value: object | None) -> str | None:
    if value is None:
        return None
    text = value if isinstance(value, str) else str(value)
    return text or None


def _coerce_float(value: object | None, field: str) -> float:
    if value is None:
        raise TypeError(f"Missing required field {field}")
    if isinstance(value, bool):
        raise TypeError(f"Field {field} expected a number, got bool")
    if isinstance(value, (int, float, str)):
        return float(value)
    if isinstance(value, SupportsFloat):
        return float(value)
    raise TypeError(
        f"Field {field} expected float-compatible value, got {type(value).__name__}"
    )


def _coerce_optional_float(value: object | None, field: str) -> float | None:
    if value is None:
        return None
    return _coerce_float(value, field)


def _coerce_mapping(value: object | None) -> Mapping[str, Any]:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return value
    raise TypeError(f"Expected mapping, got {type(value).__name__}")


_CONTEXT_FIELDS = {field.name for field in dataclasses.fields(ContextualFactors)}


def contextual_factors_from_mapping(
    payload: Mapping[str, Any] | None,
) -> ContextualFactors | None:
    if not payload:
        return None
    unknown = sorted(set(payload) - _CONTEXT_FIELDS)
    if unknown:
        raise ValueError(f"Unknown contextual factors: {', '.join(unknown)}")
    return ContextualFactors(**dict(payload))


def leg_from_mapping(payload: Mapping[str, Any], *, index: int = 0) -> LegInput:
    """Build a :class:`LegInput` from a decoded YAML/JSON mapping."""

    payload = _coerce_mapping(payload)
    side = _coerce_str(payload.get("side"), "side").strip().lower()
    if side not in ("over", "under"):
        raise ValueError(f"Leg {index} has invalid side {side!r}")
    odds_raw = payload.get("american_odds", payload.get("odds"))
    if odds_raw is None:
        raise TypeError("Missing required field american_odds")
    return LegInput(
        id=_coerce_optional_str(payload.get("id")) or f"leg-{index}",
        market=MarketKind.coerce(_coerce_str(payload.get("market"), "market")),
        subject=_coerce_str(payload.get("subject"), "subject"),
        line=_coerce_float(payload.get("line"), "line"),
        side=side,  # type: ignore[arg-type]
        american_odds=normalise_american_odds(odds_raw),
        sport=_coerce_optional_str(payload.get("sport")) or "",
        expected_value=_coerce_optional_float(
            payload.get("expected_value"), "expected_value"
        ),
        team=_coerce_optional_str(payload.get("team")),
        game_id=_coerce_optional_str(payload.get("game_id")),
        context=contextual_factors_from_mapping(
            _coerce_mapping(payload.get("context"))
        ),
    )


__all__ = ["LegInput", "contextual_factors_from_mapping", "leg_from_mapping"]
