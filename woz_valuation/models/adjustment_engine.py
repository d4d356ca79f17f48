from datetime import date, timedelta
from typing import Callable, List, Optional

from .base import AdjustmentModel, MarketContext, ValuationFactor, ValuationResult, ValueRange
from .presets import EnginePreset, MARKET, bucket_value
from ..data.base import PropertyRecord
from ..core.utils import postal_area

RECENT_SALE_DAYS = 183
NEARBY_SALE_KM = 1.0
MAX_RANGE_MARGIN = 0.15


class ValuationEngine(AdjustmentModel):
    """
    Deterministic market-value model over the assessed value:

        estimated = assessed × multiplier × Π(1 + factor)

    with factors applied in a fixed order (energy label, construction age,
    size, location). Every factor is reported, including zero impacts, so
    the breakdown is complete for audit.
    """
    def __init__(self, preset: EnginePreset = MARKET, today: Callable[[], date] = date.today):
        self.preset = preset
        self.today = today

    def compute(
        self,
        record: PropertyRecord,
        market_multiplier: float,
        enrichment: Optional[MarketContext] = None,
    ) -> ValuationResult:
        enrichment = enrichment or MarketContext()
        factors = [
            self._energy_factor(record.energy_label),
            self._age_factor(record.construction_year),
            self._size_factor(record.square_meters),
            self._location_factor(record.postal_code),
        ]

        value = record.assessed_value * market_multiplier
        for f in factors:
            value *= 1 + f.impact_percent / 100.0
        estimated = round(value)

        confidence = self.confidence(record, enrichment)
        margin = (1 - confidence) * MAX_RANGE_MARGIN
        return ValuationResult(
            estimated_value=estimated,
            confidence_score=confidence,
            assessed_value=record.assessed_value,
            market_multiplier=market_multiplier,
            factors=factors,
            data_source=record.data_source,
            value_range=ValueRange(low=round(estimated * (1 - margin)), high=round(estimated * (1 + margin))),
            price_per_square_meter=round(estimated / record.square_meters) if record.square_meters else None,
            market_trends=dict(enrichment.market_trends),
            comparable_sales=list(enrichment.comparable_sales),
            preset=self.preset.name,
        )

    # ----- factors -----

    def _energy_factor(self, label: Optional[str]) -> ValuationFactor:
        if label not in self.preset.energy_adjustments:
            return ValuationFactor("energy_label", 0.0, "Energy label unknown")
        impact = self.preset.energy_adjustments[label]
        return ValuationFactor("energy_label", _pct(impact), f"Energy label {label}")

    def _age_factor(self, construction_year: Optional[int]) -> ValuationFactor:
        if not construction_year:
            return ValuationFactor("construction_age", 0.0, "Construction year unknown")
        age = max(0, self.today().year - construction_year)
        impact = bucket_value(age, self.preset.age_buckets, self.preset.age_beyond)
        return ValuationFactor("construction_age", _pct(impact), f"Built in {construction_year} ({age} years)")

    def _size_factor(self, square_meters: Optional[float]) -> ValuationFactor:
        if not square_meters:
            return ValuationFactor("size", 0.0, "Floor area unknown")
        impact = bucket_value(square_meters, self.preset.size_buckets, self.preset.size_beyond)
        return ValuationFactor("size", _pct(impact), f"{square_meters:g} m² floor area")

    def _location_factor(self, postal_code: str) -> ValuationFactor:
        area = postal_area(postal_code)
        if area in self.preset.premium_areas:
            return ValuationFactor("location", _pct(self.preset.location_premium), f"Premium location {area}")
        return ValuationFactor("location", 0.0, f"Standard location {area}")

    # ----- confidence -----

    def confidence(self, record: PropertyRecord, enrichment: MarketContext) -> float:
        p = self.preset
        score = p.confidence_base
        for name in _observed_fields(record):
            score += p.field_weights.get(name, 0.0)

        if p.weigh_comparables:
            score += self._comparables_weight(enrichment)
        if p.stability_bonus and enrichment.price_change is not None and abs(enrichment.price_change) < 5:
            score += p.stability_bonus

        return round(min(p.confidence_max, max(p.confidence_min, score)), 3)

    def _comparables_weight(self, enrichment: MarketContext) -> float:
        sales = enrichment.comparable_sales
        if len(sales) >= 5:
            weight = 0.10
        elif len(sales) >= 3:
            weight = 0.075
        elif sales:
            weight = 0.05
        else:
            return 0.0

        cutoff = self.today() - timedelta(days=RECENT_SALE_DAYS)
        recent = sum(1 for s in sales if _sold_on(s.sold_date) and _sold_on(s.sold_date) >= cutoff)
        nearby = sum(1 for s in sales if s.distance_km is not None and s.distance_km <= NEARBY_SALE_KM)
        return weight + min(0.10, recent * 0.025) + min(0.05, nearby * 0.02)


def _pct(impact: float) -> float:
    return round(impact * 100, 2)


def _sold_on(value: str) -> Optional[date]:
    try:
        return date.fromisoformat(value[:10])
    except (TypeError, ValueError):
        return None


def _observed_fields(record: PropertyRecord) -> List[str]:
    """Optional fields that are present and did not come from a heuristic."""
    present = {
        "square_meters": record.square_meters is not None,
        "construction_year": record.construction_year is not None,
        "energy_label": record.energy_label is not None,
        "coordinates": record.coordinates is not None,
        "value_history": len(record.metadata.value_history) > 1,
    }
    return [name for name, ok in present.items() if ok and name not in record.estimated_fields]
