"""Bankroll sizing with the Kelly criterion."""

from __future__ import annotations

import dataclasses
import math
from typing import List, Literal, Sequence, Tuple

RiskLevel = Literal["conservative", "moderate", "aggressive", "reckless"]

MIN_BANKROLL = 10.0
MAX_BET_PERCENT_LIMIT = 0.25
PARLAY_MAX_BET_PERCENT = 0.03


class KellyCriterion:
    """Kelly fractions for a win probability at decimal odds."""

    @staticmethod
    def full_fraction(win_probability: float, decimal_odds: float) -> float:
        """Unclipped full Kelly; negative when the price carries no edge."""

        b = decimal_odds - 1.0
        if b <= 0:
            raise ValueError("Decimal odds must be greater than 1")
        return (b * win_probability - (1.0 - win_probability)) / b

    @classmethod
    def fraction(cls, win_probability: float, decimal_odds: float) -> float:
        return max(0.0, cls.full_fraction(win_probability, decimal_odds))


@dataclasses.dataclass(frozen=True, slots=True)
class KellyResult:
    full_kelly_fraction: float
    adjusted_kelly_fraction: float
    recommended_stake: float
    expected_value: float
    edge: float
    risk_level: RiskLevel
    warning: str | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class VarianceMetrics:
    expected_return: float
    standard_deviation: float
    sharpe_ratio: float
    worst_case_95: float
    best_case_95: float
    risk_of_ruin: float
    max_drawdown_risk: float


def validate_kelly_inputs(
    win_probability: float | None,
    decimal_odds: float | None,
    bankroll: float | None,
    multiplier: float | None = None,
    max_bet_percent: float | None = None,
) -> List[str]:
    """Return human readable problems with the inputs; empty when valid."""

    errors: List[str] = []
    if win_probability is None:
        errors.append("Win probability is required")
    elif not 0.0 < win_probability < 1.0:
        errors.append("Win probability must be between 0 and 1 (exclusive)")
    if decimal_odds is None:
        errors.append("Decimal odds are required")
    elif decimal_odds <= 1.0:
        errors.append("Decimal odds must be greater than 1")
    if bankroll is None:
        errors.append("Bankroll is required")
    elif bankroll < MIN_BANKROLL:
        errors.append(f"Minimum bankroll is {MIN_BANKROLL:g}")
    if multiplier is not None and not 0.0 < multiplier <= 1.0:
        errors.append("Kelly multiplier must be in (0, 1]")
    if max_bet_percent is not None and not 0.0 < max_bet_percent <= MAX_BET_PERCENT_LIMIT:
        errors.append(f"Max bet percent must be in (0, {MAX_BET_PERCENT_LIMIT}]")
    return errors


def _risk_level(fraction: float) -> RiskLevel:
    if fraction <= 0.02:
        return "conservative"
    if fraction <= 0.04:
        return "moderate"
    if fraction <= 0.08:
        return "aggressive"
    return "reckless"


def calculate_kelly(
    win_probability: float,
    decimal_odds: float,
    bankroll: float,
    multiplier: float = 0.5,
    max_bet_percent: float = 0.05,
) -> KellyResult:
    """Fractional Kelly stake capped at ``max_bet_percent`` of the bankroll."""

    errors = validate_kelly_inputs(
        win_probability, decimal_odds, bankroll, multiplier, max_bet_percent
    )
    if errors:
        raise ValueError("Invalid Kelly inputs:\n- " + "\n- ".join(errors))

    b = decimal_odds - 1.0
    p = win_probability
    q = 1.0 - p
    full = KellyCriterion.full_fraction(p, decimal_odds)
    adjusted = max(min(full * multiplier, max_bet_percent), 0.0)
    stake = bankroll * adjusted
    edge = (p * decimal_odds - 1.0) * 100.0

    warning: str | None = None
    if full <= 0:
        warning = "No edge detected - Kelly suggests no bet"
    elif full > 0.25:
        warning = "Full Kelly suggests very aggressive sizing - use fractional Kelly"
    elif edge < 2:
        warning = "Thin edge (<2%) - consider passing or reducing stake"

    return KellyResult(
        full_kelly_fraction=full,
        adjusted_kelly_fraction=adjusted,
        recommended_stake=stake,
        expected_value=p * stake * b - q * stake,
        edge=edge,
        risk_level=_risk_level(adjusted),
        warning=warning,
    )


def calculate_variance(
    win_probability: float, stake: float, decimal_odds: float, bankroll: float
) -> VarianceMetrics:
    b = decimal_odds - 1.0
    p = win_probability
    q = 1.0 - p
    expected = p * stake * b - q * stake
    variance = p * (stake * b - expected) ** 2 + q * (-stake - expected) ** 2
    std_dev = math.sqrt(variance)
    fraction = stake / bankroll if bankroll > 0 else 0.0
    if fraction <= 0 or p <= 0:
        risk_of_ruin = 0.0 if fraction <= 0 else 100.0
    elif q >= p:
        risk_of_ruin = 100.0
    else:
        risk_of_ruin = min(100.0, (q / p) ** (1.0 / fraction) * 100.0)
    return VarianceMetrics(
        expected_return=expected,
        standard_deviation=std_dev,
        sharpe_ratio=expected / std_dev if std_dev > 0 else 0.0,
        worst_case_95=expected - 1.96 * std_dev,
        best_case_95=expected + 1.96 * std_dev,
        risk_of_ruin=risk_of_ruin,
        max_drawdown_risk=fraction * 100.0,
    )


def calculate_parlay_kelly(
    legs: Sequence[Tuple[float, float]],
    bankroll: float,
    multiplier: float = 0.5,
    correlation_factor: float = 0.85,
) -> KellyResult:
    """Kelly sizing for a parlay of ``(win_probability, decimal_odds)`` legs.

    The joint probability is discounted by ``correlation_factor`` and the
    stake is capped at 3% of the bankroll.
    """

    probability = correlation_factor
    odds = 1.0
    for leg_probability, leg_odds in legs:
        probability *= leg_probability
        odds *= leg_odds
    return calculate_kelly(
        probability, odds, bankroll, multiplier, max_bet_percent=PARLAY_MAX_BET_PERCENT
    )


__all__ = [
    "KellyCriterion",
    "KellyResult",
    "RiskLevel",
    "VarianceMetrics",
    "calculate_kelly",
    "calculate_parlay_kelly",
    "calculate_variance",
    "validate_kelly_inputs",
]
