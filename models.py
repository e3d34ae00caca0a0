"""Data classes for the motorcycle listing ingest service."""

from dataclasses import asdict, dataclass, field, fields
from decimal import Decimal
from typing import Optional

STATUS_DRAFT = "draft"
STATUS_AVAILABLE = "available"
STATUS_RESERVED = "reserved"
STATUS_SOLD = "sold"

STATUSES = (STATUS_DRAFT, STATUS_AVAILABLE, STATUS_RESERVED, STATUS_SOLD)
PUBLISHED_STATUSES = (STATUS_AVAILABLE, STATUS_RESERVED, STATUS_SOLD)


def can_transition(current: str, target: str) -> bool:
    """Drafts may only be published; published listings move freely among themselves."""
    if target not in STATUSES:
        return False
    if current == target:
        return True
    if current == STATUS_DRAFT:
        return target == STATUS_AVAILABLE
    return target in PUBLISHED_STATUSES


@dataclass
class RawExtraction:
    """Best-effort data pulled from a vendor page. Every field may be empty."""
    name: str = ""
    year: Optional[int] = None
    mileage: Optional[int] = None
    mileage_unit: Optional[str] = None
    volume: Optional[int] = None
    volume_unit: Optional[str] = None
    frame_number: Optional[str] = None
    image_urls: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.name or self.year or self.mileage is not None or self.volume is not None
                    or self.frame_number or self.image_urls)


@dataclass
class ListingAttributes:
    """Structured attribute bag stored with a listing."""
    year: Optional[int] = None
    mileage: Optional[int] = None
    mileage_unit: Optional[str] = None
    volume: Optional[int] = None
    volume_unit: Optional[str] = None
    frame_number: Optional[str] = None
    arrival_date: Optional[str] = None

    @classmethod
    def from_extraction(cls, data: RawExtraction) -> "ListingAttributes":
        return cls(
            year=data.year,
            mileage=data.mileage,
            mileage_unit=data.mileage_unit if data.mileage is not None else None,
            volume=data.volume,
            volume_unit=data.volume_unit if data.volume is not None else None,
            frame_number=data.frame_number or None,
        )

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ListingAttributes":
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def as_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class Photo:
    id: str
    listing_id: str
    url: str
    order: int
    created_at: str


@dataclass
class Listing:
    id: str
    title: str
    price: Decimal
    currency: str
    status: str
    source_url: str
    created_at: str
    updated_at: str
    description: Optional[str] = None
    attributes: ListingAttributes = field(default_factory=ListingAttributes)
    photos: list[Photo] = field(default_factory=list)


@dataclass
class NewListing:
    """Input for creating a listing row."""
    title: str
    source_url: str
    price: Decimal = Decimal("0")
    currency: str = "RUB"
    status: str = STATUS_DRAFT
    description: Optional[str] = None
    attributes: ListingAttributes = field(default_factory=ListingAttributes)
    photo_urls: list[str] = field(default_factory=list)
