"""Boundaries to external collaborators."""

from __future__ import annotations

from typing import Any, Iterable, Protocol

from area_addresses.common.models import AddressRecord, BoundingBox, LatLng, LocationInfo, ProgressSnapshot


class SpatialQueryService(Protocol):
    def find_features(self, bbox: BoundingBox, feature_kind: str) -> list[dict[str, Any]]:
        """Return `{"lat", "lng", "tags"}` dicts for features inside `bbox`."""


class ReverseGeocodeService(Protocol):
    def lookup(self, lat: float, lng: float) -> LocationInfo | None:
        ...


class ForwardGeocodeService(Protocol):
    def search(self, query: str) -> LatLng | None:
        ...


class ListRepository(Protocol):
    def append(self, list_id: str, records: Iterable[AddressRecord]) -> None:
        ...

    def load_all(self) -> dict[str, list[AddressRecord]]:
        ...


class ProgressSink(Protocol):
    def on_progress(self, snapshot: ProgressSnapshot) -> None:
        ...
