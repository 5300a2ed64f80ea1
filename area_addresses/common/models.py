"""Data models used across the collection pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Mapping, Union

from area_addresses.common.ids import generate_record_id


@dataclass(frozen=True)
class LatLng:
    lat: float
    lng: float


@dataclass(frozen=True)
class BoundingBox:
    south: float
    west: float
    north: float
    east: float

    @property
    def lat_span(self) -> float:
        return self.north - self.south

    @property
    def lng_span(self) -> float:
        return self.east - self.west

    def center(self) -> LatLng:
        return LatLng((self.south + self.north) / 2, (self.west + self.east) / 2)

    def has_area(self) -> bool:
        return self.lat_span > 0 and self.lng_span > 0

    def as_overpass_clause(self) -> str:
        return f"{self.south},{self.west},{self.north},{self.east}"


# A query cell is just its bounds.
Cell = BoundingBox


@dataclass(frozen=True)
class PolygonRegion:
    vertices: tuple[LatLng, ...]


@dataclass(frozen=True)
class CircleRegion:
    center: LatLng
    radius_m: float


@dataclass(frozen=True)
class RectangleRegion:
    corner_a: LatLng
    corner_b: LatLng


Region = Union[PolygonRegion, CircleRegion, RectangleRegion]


@dataclass(frozen=True)
class RawCandidate:
    lat: float
    lng: float
    tags: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class LocationInfo:
    address_line: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""

    def is_complete(self) -> bool:
        return bool(self.address_line and self.city and self.state and self.postal_code)


@dataclass(frozen=True)
class AddressRecord:
    address_line: str
    city: str
    state: str
    postal_code: str
    lat: float
    lng: float
    id: str = field(default_factory=generate_record_id)

    def location(self) -> LocationInfo:
        return LocationInfo(self.address_line, self.city, self.state, self.postal_code)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ProgressSnapshot:
    phase: str
    percent: int
    found_count: int


@dataclass
class CollectionSummary:
    cells_planned: int = 0
    cells_queried: int = 0
    cells_failed: int = 0
    candidates_found: int = 0
    filtered_out: int = 0
    duplicates: int = 0
    failed_enrichment: int = 0
    dropped_without_address: int = 0
    accepted: int = 0
    truncated: bool = False
    timed_out: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CollectionResult:
    run_id: str
    records: list[AddressRecord]
    summary: CollectionSummary
    phases: list[str] = field(default_factory=list)
