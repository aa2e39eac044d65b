"""Price Paid records, ingestion results and read-side models."""

from enum import StrEnum
from typing import Final, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

# Column order of the Price Paid CSV (no header row in published files)
CSV_COLUMNS: Final = (
    "id",
    "price",
    "transfer_date",
    "postcode",
    "property_type",
    "is_new_build",
    "duration",
    "paon",
    "saon",
    "street",
    "locality",
    "town",
    "district",
    "county",
    "category",
    "status",
)


class PropertyType(StrEnum):
    """Land Registry property type code."""

    DETACHED = "D"
    SEMI_DETACHED = "S"
    TERRACED = "T"
    FLAT = "F"
    OTHER = "O"

    @property
    def display_name(self) -> str:
        return _PROPERTY_TYPE_NAMES[self.value]


_PROPERTY_TYPE_NAMES: Final[dict[str, str]] = {
    "D": "Detached",
    "S": "Semi-detached",
    "T": "Terraced",
    "F": "Flat/Maisonette",
    "O": "Other",
}


class Duration(StrEnum):
    """Tenure code. ``U`` (unknown) appears on some source rows."""

    FREEHOLD = "F"
    LEASEHOLD = "L"
    UNKNOWN = "U"

    @property
    def display_name(self) -> str:
        return _DURATION_NAMES[self.value]


_DURATION_NAMES: Final[dict[str, str]] = {"F": "Freehold", "L": "Leasehold", "U": "Unknown"}


class CategoryType(StrEnum):
    """PPD category: standard price paid or additional (repossessions, buy-to-let...)."""

    STANDARD = "A"
    ADDITIONAL = "B"

    @property
    def display_name(self) -> str:
        return _CATEGORY_NAMES[self.value]


_CATEGORY_NAMES: Final[dict[str, str]] = {"A": "Standard", "B": "Additional"}


class RecordStatus(StrEnum):
    """Record status; deletions are logical retractions, never row removals."""

    ADDITION = "A"
    CHANGE = "C"
    DELETION = "D"


def property_type_label(code: str | None) -> str | None:
    """Human-readable property type, or None for blank/unknown codes."""
    if code is None:
        return None
    return _PROPERTY_TYPE_NAMES.get(code.upper())


def duration_label(code: str | None) -> str | None:
    if code is None:
        return None
    return _DURATION_NAMES.get(code.upper())


def category_label(code: str | None) -> str | None:
    if code is None:
        return None
    return _CATEGORY_NAMES.get(code.upper())


def normalize_postcode(value: str) -> str:
    """Collapse a postcode (or prefix) to its match key: no whitespace, uppercase."""
    return "".join(value.split()).upper()


class PropertySale(BaseModel):
    """One registered property transaction."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str = Field(min_length=1, description="Transaction unique identifier")
    price: int = Field(ge=0, description="Sale price in whole GBP")
    transfer_date: str = Field(description="Legal transfer date, YYYY-MM-DD")
    postcode: str | None = None
    property_type: str | None = None
    is_new_build: str | None = None
    duration: str | None = None
    paon: str | None = None
    saon: str | None = None
    street: str | None = None
    locality: str | None = None
    town: str | None = None
    district: str | None = None
    county: str | None = None
    category: str | None = None
    status: str | None = None

    @property
    def is_retracted(self) -> bool:
        return self.status == RecordStatus.DELETION

    @computed_field  # type: ignore[prop-decorator]
    @property
    def property_type_label(self) -> str | None:
        return property_type_label(self.property_type)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration_label(self) -> str | None:
        return duration_label(self.duration)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def category_label(self) -> str | None:
        return category_label(self.category)


    @property
    def year(self) -> str:
        return self.transfer_date[:4]

    def as_row(self) -> tuple[str | int | None, ...]:
        """Values in CSV_COLUMNS order, for parameter binding."""
        return tuple(getattr(self, column) for column in CSV_COLUMNS)


class _CamelModel(BaseModel):
    """Serialises to camelCase keys for JSON consumers."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class IngestionStats(_CamelModel):
    """Counters for one ingestion run. Not persisted."""

    total_processed: int = 0
    new_records: int = 0
    updated_records: int = 0
    errors: int = 0

    @property
    def written(self) -> int:
        return self.new_records + self.updated_records

    def merge(self, other: "IngestionStats") -> None:
        self.total_processed += other.total_processed
        self.new_records += other.new_records
        self.updated_records += other.updated_records
        self.errors += other.errors


class UpdateState(StrEnum):
    """States of the monthly update coordinator."""

    IDLE = "idle"
    CHECKING_FRESHNESS = "checking_freshness"
    CHECKING_AVAILABILITY = "checking_availability"
    DOWNLOADING = "downloading"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class UpdateResult(_CamelModel):
    """Structured outcome of an update run, safe to return to any caller."""

    success: bool
    message: str
    state: UpdateState
    stats: IngestionStats | None = None
    error: str | None = None
    retry_later: bool = False


class TrendPoint(_CamelModel):
    """Average sold price for one calendar year."""

    year: str
    avg_price: float
    sales: int = 0
    pct_change: float | None = None


class PropertyHistory(_CamelModel):
    """All sales of one address, oldest first."""

    paon: str | None = None
    saon: str | None = None
    street: str | None = None
    postcode: str
    sales: list[PropertySale] = Field(default_factory=list)
    growth_pct: float | None = None


class AreaSummary(_CamelModel):
    """Headline figures for a postcode prefix or area."""

    query: str
    count: int = 0
    average_price: float | None = None
    min_price: int | None = None
    max_price: int | None = None
    latest_sale_date: str | None = None


class Listing(_CamelModel):
    """A property currently for sale, to be compared against sold prices."""

    address: str
    postcode: str
    price: int = Field(gt=0, description="Asking price in GBP")
    property_type: PropertyType
    bedrooms: int = Field(default=0, ge=0)

    @field_validator("postcode")
    @classmethod
    def normalize(cls, v: str) -> str:
        """Normalize postcode to uppercase with single space."""
        return " ".join(v.upper().split())


class RentalComparable(_CamelModel):
    """Average rent for a property type and bedroom count in an area."""

    property_type: PropertyType
    bedrooms: int = Field(ge=0)
    average_rent: float = Field(gt=0, description="Monthly rent in GBP")


Confidence = Literal["high", "medium", "low"]


class BMVEstimate(_CamelModel):
    """Below-market-value estimate for a listing."""

    listing: Listing
    average_sold_price: int
    bmv_amount: int
    bmv_percentage: float
    estimated_rent: int
    rental_yield: float
    area_growth: float
    comparables_used: int
    confidence: Confidence
