"""Odds conversions and probability bounds shared across the engine."""

from __future__ import annotations

from typing import Iterable

OddsValue = int | float | str

PROBABILITY_FLOOR = 0.01
PROBABILITY_CEILING = 0.99

__all__ = [
    "OddsValue",
    "PROBABILITY_CEILING",
    "PROBABILITY_FLOOR",
    "american_to_decimal",
    "clamp",
    "clamp_probability",
    "decimal_to_american",
    "implied_probability_from_american",
    "implied_probability_to_american",
    "normalise_american_odds",
    "parlay_decimal_odds",
]


def normalise_american_odds(value: OddsValue) -> int:
    """Coerce a price such as ``-110``, ``"+120"`` or ``"150"``."""

    if isinstance(value, bool):
        raise TypeError("American odds cannot be a boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(round(value))
    token = value.strip()
    if not token:
        raise ValueError("Empty odds value")
    return int(token.lstrip("+")) if token.startswith("+") else int(token)


def _payout_ratio(price: int) -> float:
    if price == 0:
        raise ValueError("American odds cannot be zero")
    return price / 100.0 if price > 0 else 100.0 / -price


def american_to_decimal(value: OddsValue) -> float:
    return 1.0 + _payout_ratio(normalise_american_odds(value))


def _require_decimal(decimal_odds: float) -> None:
    if decimal_odds <= 1.0:
        raise ValueError("Decimal odds must exceed 1.0")


def decimal_to_american(decimal_odds: float) -> int:
    """Favourites (decimal below 2.0) map to negative prices."""

    _require_decimal(decimal_odds)
    profit = decimal_odds - 1.0
    if profit >= 1.0:
        return int(round(profit * 100.0))
    return int(round(-100.0 / profit))


def implied_probability_from_american(value: OddsValue) -> float:
    """Break-even win probability for a price, vig included."""

    return 1.0 / american_to_decimal(value)


def implied_probability_to_american(probability: float) -> int:
    if not 0.0 < probability < 1.0:
        raise ValueError("Probability must be between 0 and 1 (exclusive)")
    return decimal_to_american(1.0 / probability)


def parlay_decimal_odds(prices: Iterable[OddsValue]) -> float:
    """Combined decimal odds of a parlay; ``1.0`` for no legs."""

    total = 1.0
    for price in prices:
        total *= american_to_decimal(price)
    return total


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def clamp_probability(probability: float) -> float:
    return clamp(probability, PROBABILITY_FLOOR, PROBABILITY_CEILING)
