"""Correlation modelling for parlay legs.

Legs that share a player, game or team are not independent.  This module
estimates a pairwise correlation for every leg pair, assembles the symmetric
correlation matrix and factors it so that correlated uniforms can be drawn
through a Gaussian copula.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import math
import pathlib
import random
from typing import Any, Iterable, List, Literal, Mapping, Sequence, Tuple

import yaml

from .models import LegInput
from .parametric import MarketKind, normal_cdf

logger = logging.getLogger(__name__)

CorrelationType = Literal["same_player", "same_game", "same_team", "cross_game"]
ConfidenceTag = Literal["high", "medium", "low", "estimated"]
SeverityLiteral = Literal["none", "low", "medium", "high"]

CORRELATION_TYPES: Tuple[str, ...] = ("same_player", "same_game", "same_team", "cross_game")

TYPE_DEFAULTS: Mapping[str, float] = {
    "same_player": 0.30,
    "same_game": 0.20,
    "same_team": 0.15,
    "cross_game": 0.05,
}

HIGH_CORRELATION_THRESHOLD = 0.3
_MIN_REGULARIZED_DIAGONAL = 0.001


def _pair_key(market_a: str, market_b: str) -> Tuple[str, str]:
    first, second = sorted((market_a, market_b))
    return first, second


_LITERATURE_DEFAULTS: Mapping[Tuple[str, Tuple[str, str]], float] = {
    ("same_player", _pair_key("player_points", "player_assists")): 0.35,
    ("same_player", _pair_key("player_points", "player_rebounds")): 0.25,
    ("same_player", _pair_key("player_rebounds", "player_assists")): 0.15,
    ("same_player", _pair_key("player_passing_yards", "player_passing_tds")): 0.55,
    ("same_player", _pair_key("player_rushing_yards", "player_rushing_tds")): 0.40,
    ("same_player", _pair_key("player_receiving_yards", "player_receptions")): 0.65,
    ("same_game", _pair_key("spreads", "totals")): 0.15,
    ("same_game", _pair_key("moneyline", "spreads")): 0.92,
    ("same_game", _pair_key("player_points", "team_totals")): 0.45,
}


# ---------------------------------------------------------------------------
# Records and results
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True, slots=True)
class CorrelationRecord:
    """One row of historically observed correlation between two markets."""

    sport: str
    market_1: str
    market_2: str
    correlation_type: str
    coefficient: float
    sample_size: int

    def matches(
        self, pair: Tuple[str, str], correlation_type: str, sport: str | None
    ) -> bool:
        if self.correlation_type != correlation_type:
            return False
        if sport and self.sport and self.sport.lower() != sport.lower():
            return False
        return _pair_key(self.market_1, self.market_2) == pair


@dataclasses.dataclass(frozen=True, slots=True)
class CorrelationLookup:
    correlation: float
    sample_size: int
    is_estimated: bool
    confidence: ConfidenceTag


@dataclasses.dataclass(frozen=True, slots=True)
class LegCorrelation:
    leg_index_1: int
    leg_index_2: int
    correlation: float
    correlation_type: CorrelationType
    sample_size: int
    confidence: ConfidenceTag


@dataclasses.dataclass(slots=True)
class CorrelationMatrix:
    matrix: List[List[float]]
    leg_count: int
    correlations: List[LegCorrelation]
    avg_correlation: float
    max_correlation: float
    has_high_correlation: bool

    @classmethod
    def identity(cls, size: int) -> "CorrelationMatrix":
        matrix = [[1.0 if i == j else 0.0 for j in range(size)] for i in range(size)]
        return cls(
            matrix=matrix,
            leg_count=size,
            correlations=[],
            avg_correlation=0.0,
            max_correlation=0.0,
            has_high_correlation=False,
        )


@dataclasses.dataclass(frozen=True, slots=True)
class CholeskyFactor:
    """Lower-triangular ``L`` with ``L @ L.T`` approximating the input matrix."""

    lower: List[List[float]]
    regularized: Tuple[int, ...] = ()

    @property
    def was_regularized(self) -> bool:
        return bool(self.regularized)


@dataclasses.dataclass(frozen=True, slots=True)
class CorrelatedProbability:
    independent_probability: float
    correlated_probability: float
    probability_ratio: float
    correlation_impact: float


# ---------------------------------------------------------------------------
# Classification and lookup
# ---------------------------------------------------------------------------


def classify_leg_pair(leg_1: LegInput, leg_2: LegInput) -> CorrelationType:
    """Classify the dependency between two legs, strongest relation first."""

    if (
        leg_1.market.is_player_prop
        and leg_2.market.is_player_prop
        and leg_1.subject.strip().lower() == leg_2.subject.strip().lower()
    ):
        return "same_player"
    if leg_1.game_id and leg_2.game_id and leg_1.game_id == leg_2.game_id:
        return "same_game"
    if leg_1.team and leg_2.team and leg_1.team.lower() == leg_2.team.lower():
        return "same_team"
    return "cross_game"


def _confidence_tag(sample_size: int, is_estimated: bool) -> ConfidenceTag:
    if sample_size >= 100:
        return "high"
    if sample_size >= 20:
        return "medium"
    return "estimated" if is_estimated else "low"


def _market_name(market: MarketKind | str) -> str:
    if isinstance(market, MarketKind):
        return market.value
    return str(market).strip().lower()


def lookup_correlation(
    market_1: MarketKind | str,
    market_2: MarketKind | str,
    correlation_type: str,
    data: Sequence[CorrelationRecord] = (),
    sport: str | None = None,
) -> CorrelationLookup:
    """Resolve the correlation coefficient for a market pair.

    Historical records take precedence, then published defaults for the
    relation type, then a flat per-type constant.
    """

    pair = _pair_key(_market_name(market_1), _market_name(market_2))
    for record in data:
        if record.matches(pair, correlation_type, sport):
            return CorrelationLookup(
                correlation=float(record.coefficient),
                sample_size=record.sample_size,
                is_estimated=False,
                confidence=_confidence_tag(record.sample_size, False),
            )

    fallback = TYPE_DEFAULTS.get(correlation_type, TYPE_DEFAULTS["cross_game"])
    literature = _LITERATURE_DEFAULTS.get((correlation_type, pair))
    if literature is None:
        correlation = fallback
    elif correlation_type == "same_player":
        correlation = max(literature, fallback)
    else:
        correlation = literature
    return CorrelationLookup(
        correlation=correlation,
        sample_size=0,
        is_estimated=True,
        confidence="estimated",
    )


def build_correlation_matrix(
    legs: Sequence[LegInput],
    data: Sequence[CorrelationRecord] = (),
    sport: str | None = None,
) -> CorrelationMatrix:
    n = len(legs)
    matrix = [[0.0] * n for _ in range(n)]
    correlations: List[LegCorrelation] = []
    for i in range(n):
        matrix[i][i] = 1.0
        for j in range(i + 1, n):
            correlation_type = classify_leg_pair(legs[i], legs[j])
            lookup = lookup_correlation(
                legs[i].market,
                legs[j].market,
                correlation_type,
                data,
                sport=sport or legs[i].sport or None,
            )
            matrix[i][j] = lookup.correlation
            matrix[j][i] = lookup.correlation
            correlations.append(
                LegCorrelation(
                    leg_index_1=i,
                    leg_index_2=j,
                    correlation=lookup.correlation,
                    correlation_type=correlation_type,
                    sample_size=lookup.sample_size,
                    confidence=lookup.confidence,
                )
            )

    values = [item.correlation for item in correlations]
    avg_correlation = sum(values) / len(values) if values else 0.0
    max_correlation = max(values) if values else 0.0
    return CorrelationMatrix(
        matrix=matrix,
        leg_count=n,
        correlations=correlations,
        avg_correlation=avg_correlation,
        max_correlation=max_correlation,
        has_high_correlation=max_correlation > HIGH_CORRELATION_THRESHOLD,
    )


# ---------------------------------------------------------------------------
# Factorisation and sampling
# ---------------------------------------------------------------------------


def factor_correlation_matrix(matrix: Sequence[Sequence[float]]) -> CholeskyFactor:
    """Cholesky-factor ``matrix``, regularising non positive-definite rows."""

    n = len(matrix)
    lower = [[0.0] * n for _ in range(n)]
    regularized: List[int] = []
    for i in range(n):
        for j in range(i + 1):
            if i == j:
                total = sum(lower[j][k] * lower[j][k] for k in range(j))
                diagonal = matrix[j][j] - total
                if diagonal < 0.0:
                    logger.warning(
                        "Correlation matrix is not positive definite at row %d "
                        "(diagonal %.6f); regularising",
                        j,
                        diagonal,
                    )
                    regularized.append(j)
                    lower[j][j] = math.sqrt(max(_MIN_REGULARIZED_DIAGONAL, diagonal))
                else:
                    lower[j][j] = math.sqrt(diagonal)
            else:
                total = sum(lower[i][k] * lower[j][k] for k in range(j))
                if lower[j][j] == 0.0:
                    lower[i][j] = 0.0
                else:
                    lower[i][j] = (matrix[i][j] - total) / lower[j][j]
    return CholeskyFactor(lower=lower, regularized=tuple(regularized))


def cholesky_decomposition(matrix: Sequence[Sequence[float]]) -> List[List[float]]:
    return factor_correlation_matrix(matrix).lower


def _standard_normal(rng: random.Random) -> float:
    # 1 - random() lies in (0, 1] so the logarithm is always finite.
    u1 = 1.0 - rng.random()
    u2 = rng.random()
    return math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)


def generate_correlated_uniform(
    lower: Sequence[Sequence[float]], rng: random.Random | None = None
) -> List[float]:
    """Draw one vector of uniforms whose dependence follows ``lower @ lower.T``."""

    generator = rng if rng is not None else random.Random()
    n = len(lower)
    normals = [_standard_normal(generator) for _ in range(n)]
    uniforms: List[float] = []
    for i in range(n):
        value = 0.0
        row = lower[i]
        for j in range(i + 1):
            value += row[j] * normals[j]
        uniforms.append(normal_cdf(value))
    return uniforms


def calculate_correlated_probability(
    leg_probabilities: Sequence[float],
    correlation_matrix: CorrelationMatrix,
    simulations: int = 50_000,
    rng: random.Random | None = None,
) -> CorrelatedProbability:
    """Joint hit probability of all legs under the Gaussian copula.

    Weakly correlated sets (no pair above the high-correlation threshold)
    skip the simulation and are priced as independent.
    """

    independent = 1.0
    for probability in leg_probabilities:
        independent *= probability
    n = len(leg_probabilities)
    if not correlation_matrix.has_high_correlation or n < 2 or simulations <= 0:
        return CorrelatedProbability(
            independent_probability=independent,
            correlated_probability=independent,
            probability_ratio=1.0,
            correlation_impact=0.0,
        )

    generator = rng if rng is not None else random.Random()
    factor = factor_correlation_matrix(correlation_matrix.matrix)
    wins = 0
    for _ in range(simulations):
        draws = generate_correlated_uniform(factor.lower, generator)
        if all(draw <= probability for draw, probability in zip(draws, leg_probabilities)):
            wins += 1
    correlated = wins / simulations
    ratio = correlated / independent if independent > 0 else 1.0
    logger.debug(
        "Correlated parlay probability %.4f vs independent %.4f over %d draws",
        correlated,
        independent,
        simulations,
    )
    return CorrelatedProbability(
        independent_probability=independent,
        correlated_probability=correlated,
        probability_ratio=ratio,
        correlation_impact=(correlated - independent) * 100.0,
    )


# ---------------------------------------------------------------------------
# Presentation helpers
# ---------------------------------------------------------------------------


def format_correlation_impact(impact: float) -> str:
    if abs(impact) < 0.1:
        return "No significant impact"
    if impact > 0:
        return f"+{impact:.2f}% more likely to hit"
    return f"{impact:.2f}% less likely to hit"


def correlation_severity(avg_correlation: float) -> SeverityLiteral:
    if avg_correlation < 0.1:
        return "none"
    if avg_correlation < 0.25:
        return "low"
    if avg_correlation < 0.5:
        return "medium"
    return "high"


# ---------------------------------------------------------------------------
# Loading historical tables
# ---------------------------------------------------------------------------


def _record_from_mapping(payload: Mapping[str, Any], index: int) -> CorrelationRecord:
    missing = [
        key
        for key in ("market_1", "market_2", "correlation_type", "coefficient")
        if payload.get(key) is None
    ]
    if missing:
        raise TypeError(
            f"Correlation record {index} is missing fields: {', '.join(missing)}"
        )
    correlation_type = str(payload["correlation_type"]).strip().lower()
    if correlation_type not in CORRELATION_TYPES:
        raise ValueError(
            f"Correlation record {index} has unknown type {correlation_type!r}"
        )
    coefficient = float(payload["coefficient"])
    if not -1.0 <= coefficient <= 1.0:
        raise ValueError(
            f"Correlation record {index} coefficient {coefficient} outside [-1, 1]"
        )
    return CorrelationRecord(
        sport=str(payload.get("sport") or ""),
        market_1=_market_name(str(payload["market_1"])),
        market_2=_market_name(str(payload["market_2"])),
        correlation_type=correlation_type,
        coefficient=coefficient,
        sample_size=int(payload.get("sample_size") or 0),
    )


def correlation_records_from_payload(payload: Any) -> List[CorrelationRecord]:
    """Decode a list of correlation mappings (optionally under ``correlations``)."""

    if isinstance(payload, Mapping):
        payload = payload.get("correlations", [])
    if payload is None:
        return []
    if not isinstance(payload, Iterable) or isinstance(payload, (str, bytes)):
        raise TypeError("Correlation data must be a list of mappings")
    records: List[CorrelationRecord] = []
    for index, item in enumerate(payload):
        if not isinstance(item, Mapping):
            raise TypeError(
                f"Correlation record {index} must be a mapping, got {type(item).__name__}"
            )
        records.append(_record_from_mapping(item, index))
    return records


def load_correlation_data(path: str | pathlib.Path) -> List[CorrelationRecord]:
    """Read historical correlations from a YAML or JSON file."""

    source = pathlib.Path(path)
    if not source.exists():
        raise FileNotFoundError(f"Correlation data file not found: {source}")
    text = source.read_text(encoding="utf-8")
    if source.suffix.lower() == ".json":
        payload = json.loads(text) if text.strip() else []
    else:
        payload = yaml.safe_load(text)
    records = correlation_records_from_payload(payload)
    logger.debug("Loaded %d correlation records from %s", len(records), source)
    return records


__all__ = [
    "CholeskyFactor",
    "CorrelatedProbability",
    "CorrelationLookup",
    "CorrelationMatrix",
    "CorrelationRecord",
    "CorrelationType",
    "LegCorrelation",
    "TYPE_DEFAULTS",
    "build_correlation_matrix",
    "calculate_correlated_probability",
    "cholesky_decomposition",
    "classify_leg_pair",
    "correlation_records_from_payload",
    "correlation_severity",
    "factor_correlation_matrix",
    "format_correlation_impact",
    "generate_correlated_uniform",
    "load_correlation_data",
    "lookup_correlation",
]
