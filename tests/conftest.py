from __future__ import annotations

import random
from typing import Any, Callable

import pytest

from parlayedge.models import LegInput
from parlayedge.parametric import MarketKind


LegFactory = Callable[..., LegInput]


@pytest.fixture
def make_leg() -> LegFactory:
    counter = iter(range(1, 10_000))

    def _factory(**overrides: Any) -> LegInput:
        payload: dict[str, Any] = {
            "id": f"leg-{next(counter)}",
            "market": MarketKind.POINTS,
            "subject": "Jayson Tatum",
            "line": 22.5,
            "side": "over",
            "american_odds": -110,
            "sport": "NBA",
        }
        payload.update(overrides)
        return LegInput(**payload)

    return _factory


@pytest.fixture
def rng() -> random.Random:
    return random.Random(20240101)
