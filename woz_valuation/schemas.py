from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

class CamelModel(BaseModel):
    # snake_case in Python, camelCase on the wire
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class PropertyRequest(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    address: str = Field(min_length=3, examples=["Kampweg 10"])
    postal_code: str = Field(min_length=6, max_length=7, examples=["3769DG"])

class Coordinates(CamelModel):
    lat: float
    lng: float

class ValueHistoryEntry(CamelModel):
    date: str
    value: str

class WozMetadata(CamelModel):
    land_area: Optional[str] = None
    construction_year: Optional[str] = None
    usage_purpose: Optional[str] = None
    floor_area: Optional[str] = None
    woz_object_id: Optional[str] = None
    addressable_object_id: Optional[str] = None
    number_designation_id: Optional[str] = None
    value_history: list[ValueHistoryEntry] = []

class PropertyResponse(CamelModel):
    address: str
    postal_code: str
    city: str
    property_type: str
    assessed_value: int = Field(gt=0)
    reference_year: int
    construction_year: Optional[int] = None
    square_meters: Optional[float] = None
    energy_label: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    data_source: str
    estimated: bool
    estimated_fields: list[str] = []
    metadata: WozMetadata

class Factor(CamelModel):
    factor: str
    impact_percent: float
    description: str

class Range(CamelModel):
    low: int
    high: int

class ComparableSale(CamelModel):
    address: str
    sold_price: int
    sold_date: str
    square_meters: int
    price_per_sqm: int
    distance_km: float

class ValuationResponse(CamelModel):
    address: str
    postal_code: str
    currency: str = "EUR"
    estimated_value: int
    confidence_score: float = Field(ge=0, le=1)
    assessed_value: int
    market_multiplier: float
    factors: list[Factor]
    data_source: str
    estimated: bool
    value_range: Range
    price_per_square_meter: Optional[int] = None
    market_trends: dict
    comparable_sales: list[ComparableSale]
    preset: str
    last_updated: str
    disclaimer: str
    etag: str | None = None

class HealthResponse(CamelModel):
    status: str
    source: str
    tiers: list[str]
    timestamp: str
