"""Nominatim adapter: reverse lookups to partial addresses, forward search to points."""

from __future__ import annotations

from typing import Any

from area_addresses.common.config_loader import NominatimConfig
from area_addresses.common.http import HttpClient
from area_addresses.common.models import LatLng, LocationInfo

CITY_KEYS = ("city", "town", "village", "municipality", "county")
STATE_KEYS = ("state", "province")


def _first(mapping: dict[str, Any], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = str(mapping.get(key) or "").strip()
        if value:
            return value
    return ""


def _joined(*parts: Any) -> str:
    values = [str(part or "").strip() for part in parts]
    if not all(values):
        return ""
    return " ".join(values)


def derive_address_line(payload: dict[str, Any]) -> str:
    """Pick the display address line; the rule order is fixed."""
    address = payload.get("address") or {}
    display_name = str(payload.get("display_name") or "")
    rules = (
        lambda: _joined(address.get("house_number"), address.get("road")),
        lambda: _joined(address.get("house_number"), address.get("street")),
        lambda: str(address.get("road") or "").strip(),
        lambda: str(address.get("street") or "").strip(),
        lambda: str(address.get("building") or "").strip(),
        lambda: str(address.get("amenity") or "").strip(),
        lambda: str(address.get("shop") or "").strip(),
        lambda: str(payload.get("name") or "").strip(),
        lambda: display_name.split(",")[0].strip(),
    )
    for rule in rules:
        value = rule()
        if value:
            return value
    return ""


def parse_reverse_payload(payload: Any) -> LocationInfo | None:
    if not isinstance(payload, dict) or payload.get("error"):
        return None
    address = payload.get("address")
    if not isinstance(address, dict):
        return None
    return LocationInfo(
        address_line=derive_address_line(payload),
        city=_first(address, CITY_KEYS),
        state=_first(address, STATE_KEYS),
        postal_code=str(address.get("postcode") or "").strip(),
    )


def parse_search_payload(payload: Any) -> LatLng | None:
    if not isinstance(payload, list) or not payload:
        return None
    first = payload[0]
    try:
        return LatLng(float(first["lat"]), float(first["lon"]))
    except (KeyError, TypeError, ValueError):
        return None


class NominatimService:
    """Reverse and forward geocoding against a Nominatim endpoint."""

    def __init__(self, http_client: HttpClient, config: NominatimConfig | None = None) -> None:
        self.http = http_client
        self.config = config or NominatimConfig()

    def lookup(self, lat: float, lng: float) -> LocationInfo | None:
        payload = self.http.get_json(
            self.config.reverse_endpoint,
            params={
                "format": "json",
                "lat": lat,
                "lon": lng,
                "zoom": self.config.zoom,
                "addressdetails": 1,
            },
        )
        return parse_reverse_payload(payload)

    def search(self, query: str) -> LatLng | None:
        payload = self.http.get_json(
            self.config.search_endpoint,
            params={"format": "json", "q": query, "limit": 1},
        )
        return parse_search_payload(payload)
