"""
Named parameter sets for the adjustment engine.

``simple`` is the assessed-value-only variant; ``market`` adds finer age
buckets and weighs comparable sales and market stability into the
confidence score. Bucket lists are (exclusive upper bound, impact) pairs
checked in order, with a final value for anything beyond the last bound.
"""
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Tuple

Buckets = List[Tuple[float, float]]

SIZE_BUCKETS: Buckets = [(50, -0.08), (75, -0.04), (150, 0.0), (200, 0.03)]
SIZE_BEYOND = 0.06


@dataclass(frozen=True)
class EnginePreset:
    name: str
    energy_adjustments: Dict[str, float]
    age_buckets: Buckets
    age_beyond: float
    premium_areas: FrozenSet[str]
    location_premium: float
    confidence_base: float
    confidence_min: float
    confidence_max: float
    # increment per corroborating field actually observed
    field_weights: Dict[str, float]
    size_buckets: Buckets = field(default_factory=lambda: list(SIZE_BUCKETS))
    size_beyond: float = SIZE_BEYOND
    weigh_comparables: bool = False
    stability_bonus: float = 0.0


SIMPLE = EnginePreset(
    name="simple",
    energy_adjustments={
        "A+++": 0.10, "A++": 0.08, "A+": 0.06, "A": 0.04,
        "B": 0.0, "C": -0.03, "D": -0.06, "E": -0.09, "F": -0.12, "G": -0.15,
    },
    age_buckets=[(3, 0.08), (10, 0.04), (20, 0.02), (30, 0.0), (50, -0.03), (80, -0.06)],
    age_beyond=-0.10,
    premium_areas=frozenset({
        "1000", "1001", "1002", "1003", "1004", "1005",   # Amsterdam centre
        "1010", "1011", "1012", "1013", "1014", "1015",   # canal ring
        "2500", "2501", "2502", "2503",                   # Den Haag centre
        "3500", "3501", "3502", "3503",                   # Utrecht centre
    }),
    location_premium=0.08,
    confidence_base=0.75,
    confidence_min=0.5,
    confidence_max=0.95,
    field_weights={
        "square_meters": 0.08,
        "construction_year": 0.06,
        "energy_label": 0.06,
        "coordinates": 0.04,
        "value_history": 0.02,
    },
)

MARKET = EnginePreset(
    name="market",
    energy_adjustments={
        "A+++": 0.12, "A++": 0.10, "A+": 0.08, "A": 0.06,
        "B": 0.02, "C": 0.0, "D": -0.04, "E": -0.08, "F": -0.12, "G": -0.16,
    },
    age_buckets=[(5, 0.08), (15, 0.04), (25, 0.02), (40, 0.0), (60, -0.04), (100, -0.08)],
    age_beyond=-0.12,
    premium_areas=frozenset({"1000", "1001", "1015", "2500", "2501", "3500", "3501"}),
    location_premium=0.10,
    confidence_base=0.50,
    confidence_min=0.3,
    confidence_max=0.95,
    field_weights={
        "energy_label": 0.05,
        "construction_year": 0.05,
        "square_meters": 0.05,
        "coordinates": 0.03,
        "value_history": 0.02,
    },
    weigh_comparables=True,
    stability_bonus=0.05,
)

PRESETS = {p.name: p for p in (SIMPLE, MARKET)}


def get_preset(name: str) -> EnginePreset:
    try:
        return PRESETS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown valuation preset {name!r}; expected one of {sorted(PRESETS)}") from None


def bucket_value(value: float, buckets: Buckets, beyond: float) -> float:
    for upper, impact in buckets:
        if value < upper:
            return impact
    return beyond
