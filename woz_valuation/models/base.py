from typing import Protocol, List, Optional
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone

from ..data.base import ComparableSale, PropertyRecord

@dataclass
class ValuationFactor:
    factor: str               # energy_label | construction_age | size | location
    impact_percent: float     # signed, e.g. -4.0
    description: str

@dataclass
class MarketContext:
    """Area-level inputs gathered by the service before the engine runs."""
    comparable_sales: List[ComparableSale] = field(default_factory=list)
    market_trends: dict = field(default_factory=dict)
    price_change: Optional[float] = None

@dataclass
class ValueRange:
    low: int
    high: int

@dataclass
class ValuationResult:
    estimated_value: int
    confidence_score: float
    assessed_value: int
    market_multiplier: float
    factors: List[ValuationFactor]
    data_source: str
    value_range: ValueRange
    price_per_square_meter: Optional[int] = None
    market_trends: dict = field(default_factory=dict)
    comparable_sales: List[ComparableSale] = field(default_factory=list)
    preset: str = "market"
    last_updated: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "ValuationResult":
        d = dict(d)
        return cls(
            factors=[ValuationFactor(**f) for f in d.pop("factors", [])],
            value_range=ValueRange(**d.pop("value_range")),
            comparable_sales=[ComparableSale(**s) for s in d.pop("comparable_sales", [])],
            **d,
        )

class AdjustmentModel(Protocol):
    def compute(
        self,
        record: PropertyRecord,
        market_multiplier: float,
        enrichment: Optional[MarketContext] = None,
    ) -> ValuationResult:
        """
        Returns the estimated value, confidence score and the ordered
        factor list (energy label, construction age, size, location).
        """
        ...
