"""Overpass adapter and the per-cell query gateway."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Mapping

from area_addresses.common.config_loader import OverpassConfig
from area_addresses.common.errors import UNEXPECTED_ERROR, ConfigError, ServiceError, ServiceUnavailableError
from area_addresses.common.http import HttpClient, TimeoutConfig
from area_addresses.common.interfaces import SpatialQueryService
from area_addresses.common.logging import get_logger, log_event
from area_addresses.common.models import BoundingBox, LocationInfo, RawCandidate
from area_addresses.common.retry import retry_transient

# Each entry is one tag-filter clause, applied to both nodes and ways.
FEATURE_FILTERS: dict[str, tuple[str, ...]] = {
    "address": ('["addr:housenumber"]', '["addr:full"]'),
    "building": ('["building"]["addr:housenumber"]',),
}

STATUS_OK = "ok"
STATUS_EMPTY = "empty"
STATUS_FAILED = "failed"


def _feature_filters(feature_kind: str) -> tuple[str, ...]:
    try:
        return FEATURE_FILTERS[feature_kind]
    except KeyError:
        known = ", ".join(sorted(FEATURE_FILTERS))
        raise ConfigError(f"Unsupported feature kind {feature_kind!r}; expected one of: {known}") from None


def build_overpass_query(bbox: BoundingBox, feature_kind: str = "address", timeout_seconds: int = 30) -> str:
    area_clause = bbox.as_overpass_clause()
    clauses = "".join(
        f"  {element}{tag_filter}({area_clause});\n"
        for tag_filter in _feature_filters(feature_kind)
        for element in ("node", "way")
    )
    return f"[out:json][timeout:{int(timeout_seconds)}];\n(\n{clauses});\nout center;"


def parse_overpass_elements(payload: dict) -> list[dict[str, Any]]:
    features: list[dict[str, Any]] = []
    for element in payload.get("elements", []) or []:
        if not isinstance(element, dict):
            continue
        lat = element.get("lat")
        lon = element.get("lon")
        center = element.get("center") or {}
        if lat is None or lon is None:
            lat = center.get("lat")
            lon = center.get("lon")
        try:
            lat, lon = float(lat), float(lon)
        except (TypeError, ValueError):
            continue
        if not math.isfinite(lat) or not math.isfinite(lon):
            continue
        tags = {str(key): str(value) for key, value in (element.get("tags") or {}).items()}
        features.append({"lat": lat, "lng": lon, "tags": tags})
    return features


def location_from_tags(tags: Mapping[str, str]) -> LocationInfo:
    def tag(key: str) -> str:
        return str(tags.get(key) or "").strip()

    house_number = tag("addr:housenumber")
    street = tag("addr:street")
    if tag("addr:full"):
        address_line = tag("addr:full")
    elif house_number and street:
        address_line = f"{house_number} {street}"
    elif street:
        address_line = street
    elif tag("name") and tag("building"):
        address_line = tag("name")
    else:
        address_line = ""
    return LocationInfo(
        address_line=address_line,
        city=tag("addr:city"),
        state=tag("addr:state"),
        postal_code=tag("addr:postcode"),
    )


class OverpassService:
    """`SpatialQueryService` backed by an Overpass interpreter endpoint."""

    def __init__(self, http_client: HttpClient, config: OverpassConfig | None = None) -> None:
        self.http = http_client
        self.config = config or OverpassConfig()

    def find_features(self, bbox: BoundingBox, feature_kind: str) -> list[dict[str, Any]]:
        query = build_overpass_query(bbox, feature_kind, self.config.timeout_seconds)
        payload = self.http.post_form_json(
            self.config.endpoint,
            data={"data": query},
            # Leave the server its own query timeout before giving up on the socket.
            timeout=TimeoutConfig(connect=self.http.timeout.connect, read=self.config.timeout_seconds + 30),
        )
        if not isinstance(payload, dict):
            raise ServiceError("Overpass payload is not a JSON object")
        remark = str(payload.get("remark") or "")
        if "runtime error" in remark.lower():
            raise ServiceUnavailableError(f"Overpass runtime error: {remark}")
        return parse_overpass_elements(payload)


@dataclass
class CellQueryResult:
    bbox: BoundingBox
    status: str
    candidates: list[RawCandidate] = field(default_factory=list)
    error_code: str | None = None


class QueryGateway:
    """Fetch raw candidates for one bounding box at a time.

    Stateless between calls, so one instance may serve concurrent workers.
    Transient failures are retried once and then reported as a failed cell.
    """

    def __init__(
        self,
        service: SpatialQueryService,
        *,
        feature_kind: str = "address",
        retry_backoff_seconds: float = 1.5,
        logger: logging.Logger | None = None,
    ) -> None:
        _feature_filters(feature_kind)
        self.service = service
        self.feature_kind = feature_kind
        self.retry_backoff_seconds = retry_backoff_seconds
        self.logger = logger or get_logger()

    def _failed(self, bbox: BoundingBox, error_code: str, exc: Exception) -> CellQueryResult:
        log_event(
            self.logger,
            f"cell query failed for {bbox.as_overpass_clause()}: {exc}",
            level=logging.WARNING,
            source="overpass",
            event="CELL_FAIL",
            status="error",
            error_code=error_code,
        )
        return CellQueryResult(bbox=bbox, status=STATUS_FAILED, error_code=error_code)

    def query_cell(self, bbox: BoundingBox) -> CellQueryResult:
        try:
            features = retry_transient(
                self.service.find_features,
                bbox,
                self.feature_kind,
                attempts=2,
                backoff_seconds=self.retry_backoff_seconds,
                logger=self.logger,
                source="overpass",
            )
            candidates = [
                RawCandidate(lat=float(item["lat"]), lng=float(item["lng"]), tags=dict(item.get("tags") or {}))
                for item in features
            ]
        except ServiceError as exc:
            return self._failed(bbox, exc.error_code, exc)
        except Exception as exc:
            # One broken cell must not take the rest of the run down with it.
            return self._failed(bbox, UNEXPECTED_ERROR, exc)

        status = STATUS_OK if candidates else STATUS_EMPTY
        return CellQueryResult(bbox=bbox, status=status, candidates=candidates)

    def fetch_candidates(self, bbox: BoundingBox) -> list[RawCandidate]:
        return self.query_cell(bbox).candidates
