from typing import Protocol, List, Optional, Any
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum

# ----- Provenance tags -----

class Source(str, Enum):
    CACHE = "cache"
    STORE = "store"
    BROWSER = "browser"
    SCRAPINGBEE = "scrapingbee-api"
    APIFY = "apify-api"
    PROXY = "proxy-api"
    ESTIMATE = "intelligent-estimate"
    ERROR = "error"

# Tags whose values came from the official register rather than the estimator
AUTHORITATIVE_SOURCES = {Source.BROWSER, Source.SCRAPINGBEE, Source.APIFY, Source.PROXY}

class PropertyType(str, Enum):
    HOUSE = "house"
    APARTMENT = "apartment"
    TOWNHOUSE = "townhouse"
    OTHER = "other"

ENERGY_LABELS = ["A+++", "A++", "A+", "A", "B", "C", "D", "E", "F", "G"]

MIN_SQUARE_METERS = 10
MAX_SQUARE_METERS = 10_000

# ----- Data shapes (thin & explicit) -----

@dataclass
class Coordinates:
    lat: float
    lng: float

@dataclass
class ValueHistoryEntry:
    date: str      # as displayed, e.g. "01-01-2024"
    value: str     # as displayed, e.g. "€ 412.000"

@dataclass
class WozMetadata:
    """Labelled fields read from the register's result panel."""
    land_area: Optional[str] = None
    construction_year: Optional[str] = None
    usage_purpose: Optional[str] = None
    floor_area: Optional[str] = None
    woz_object_id: Optional[str] = None
    addressable_object_id: Optional[str] = None
    number_designation_id: Optional[str] = None
    value_history: List[ValueHistoryEntry] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> "WozMetadata":
        d = dict(d or {})
        history = [ValueHistoryEntry(**h) for h in d.pop("value_history", None) or []]
        known = {k: v for k, v in d.items() if k in cls.__dataclass_fields__}
        return cls(value_history=history, **known)

@dataclass
class AssessedValueRecord:
    address: str
    postal_code: str
    assessed_value: int
    reference_year: int
    object_type: str = "Woning"
    surface_area: Optional[float] = None
    scraped_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    source_url: str = ""
    provenance: str = Source.ESTIMATE.value
    metadata: WozMetadata = field(default_factory=WozMetadata)

    @property
    def estimated(self) -> bool:
        return self.provenance == Source.ESTIMATE.value

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "AssessedValueRecord":
        d = dict(d)
        meta = WozMetadata.from_dict(d.pop("metadata", None))
        return cls(metadata=meta, **d)

@dataclass
class AcquisitionResult:
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    cached: bool = False
    source: str = Source.ERROR.value

    @classmethod
    def ok(cls, data: Any, source: Source, cached: bool = False) -> "AcquisitionResult":
        return cls(success=True, data=data, source=source.value, cached=cached)

    @classmethod
    def fail(cls, error: str, source: Source = Source.ERROR) -> "AcquisitionResult":
        return cls(success=False, error=error, source=source.value)

@dataclass
class EnergyLabelData:
    energy_label: str
    energy_index: int
    source: str                     # "ep-online" | "estimated"
    registration_date: str = ""
    valid_until: str = ""
    building_type: str = "Woning"

@dataclass
class BuildingData:
    construction_year: Optional[int]
    surface_area: Optional[float]
    usage_function: str
    source: str                     # "bag" | "estimated"
    bag_id: Optional[str] = None
    coordinates: Optional[Coordinates] = None

    @classmethod
    def from_dict(cls, d: dict) -> "BuildingData":
        d = dict(d)
        coords = d.pop("coordinates", None)
        return cls(coordinates=Coordinates(**coords) if coords else None, **d)

@dataclass
class AreaStats:
    avg_value: int
    avg_size: int
    avg_year: int

@dataclass
class MarketData:
    market_multiplier: float
    average_days_on_market: int
    price_change: float

@dataclass
class ComparableSale:
    address: str
    sold_price: int
    sold_date: str
    square_meters: int
    price_per_sqm: int
    distance_km: float

@dataclass
class PropertyRecord:
    address: str
    postal_code: str
    city: str
    property_type: str
    assessed_value: int
    reference_year: int
    construction_year: Optional[int] = None
    square_meters: Optional[float] = None
    energy_label: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    data_source: str = Source.ESTIMATE.value
    metadata: WozMetadata = field(default_factory=WozMetadata)
    # fields filled only by heuristics; they don't count as corroborating data
    estimated_fields: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "PropertyRecord":
        d = dict(d)
        coords = d.pop("coordinates", None)
        meta = WozMetadata.from_dict(d.pop("metadata", None))
        return cls(coordinates=Coordinates(**coords) if coords else None, metadata=meta, **d)

def plausible_square_meters(value: Optional[float]) -> Optional[float]:
    """Out-of-range floor areas are discarded rather than trusted."""
    if value is None:
        return None
    return value if MIN_SQUARE_METERS <= value <= MAX_SQUARE_METERS else None

# ----- Protocols (interfaces) -----

class AssessedValueStrategy(Protocol):
    source: Source
    async def fetch(self, address: str, postal_code: str) -> AcquisitionResult: ...

class WozStore(Protocol):
    async def find_woz(self, address: str, postal_code: str, max_age_days: int) -> Optional[AssessedValueRecord]: ...
    async def upsert_woz(self, record: AssessedValueRecord) -> None: ...
    async def insert_valuation(self, address: str, postal_code: str, payload: dict) -> None: ...
    async def recent_valuations(self, address: str, postal_code: str, limit: int = 10) -> List[dict]: ...
    async def close(self) -> None: ...
