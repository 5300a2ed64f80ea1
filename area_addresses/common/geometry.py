"""Geometry helpers: containment, bounding boxes, and great-circle distance.

Pure functions only. Coordinates are assumed to be valid WGS84 degrees; range
checking belongs to the caller (see `region_from_dict`).
"""

from __future__ import annotations

import math
from typing import Any, Callable, Sequence

from area_addresses.common.constants import EARTH_RADIUS_M
from area_addresses.common.errors import InvalidRegionError
from area_addresses.common.models import (
    BoundingBox,
    CircleRegion,
    LatLng,
    PolygonRegion,
    RectangleRegion,
    Region,
)


def distance_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def point_in_polygon(lat: float, lng: float, vertices: Sequence[LatLng]) -> bool:
    inside = False
    x, y = lng, lat
    j = len(vertices) - 1
    for i in range(len(vertices)):
        xi, yi = vertices[i].lng, vertices[i].lat
        xj, yj = vertices[j].lng, vertices[j].lat
        # Half-open edge test: a vertex on the ray is counted for one edge only.
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def contains_point(region: Region, lat: float, lng: float) -> bool:
    if isinstance(region, PolygonRegion):
        return point_in_polygon(lat, lng, region.vertices)
    if isinstance(region, CircleRegion):
        return distance_meters(region.center.lat, region.center.lng, lat, lng) <= region.radius_m
    if isinstance(region, RectangleRegion):
        box = bounding_box(region)
        return box.south <= lat <= box.north and box.west <= lng <= box.east
    raise TypeError(f"Unsupported region type: {type(region).__name__}")


def region_predicate(region: Region) -> Callable[[float, float], bool]:
    return lambda lat, lng: contains_point(region, lat, lng)


def bounding_box(region: Region) -> BoundingBox:
    if isinstance(region, PolygonRegion):
        lats = [v.lat for v in region.vertices]
        lngs = [v.lng for v in region.vertices]
        return BoundingBox(min(lats), min(lngs), max(lats), max(lngs))
    if isinstance(region, CircleRegion):
        angular = region.radius_m / EARTH_RADIUS_M
        d_lat = math.degrees(angular)
        cos_lat = math.cos(math.radians(region.center.lat))
        if math.sin(angular) < cos_lat:
            d_lng = math.degrees(math.asin(math.sin(angular) / cos_lat))
        else:
            d_lng = 180.0
        return BoundingBox(
            max(region.center.lat - d_lat, -90.0),
            max(region.center.lng - d_lng, -180.0),
            min(region.center.lat + d_lat, 90.0),
            min(region.center.lng + d_lng, 180.0),
        )
    if isinstance(region, RectangleRegion):
        a, b = region.corner_a, region.corner_b
        return BoundingBox(min(a.lat, b.lat), min(a.lng, b.lng), max(a.lat, b.lat), max(a.lng, b.lng))
    raise TypeError(f"Unsupported region type: {type(region).__name__}")


def _valid_lat_lng(lat: float, lng: float) -> bool:
    return math.isfinite(lat) and math.isfinite(lng) and -90 <= lat <= 90 and -180 <= lng <= 180


def _parse_point(value: Any, ctx: str) -> LatLng:
    try:
        lat, lng = float(value[0]), float(value[1])
    except (TypeError, ValueError, IndexError, KeyError) as exc:
        raise InvalidRegionError(f"{ctx} must be a [lat, lng] pair") from exc
    if not _valid_lat_lng(lat, lng):
        raise InvalidRegionError(f"{ctx} is out of range: {lat}, {lng}")
    return LatLng(lat, lng)


def _unwrap_ring(points: Any) -> Any:
    # Drawing tools nest rings one or two levels deep.
    while (
        isinstance(points, (list, tuple))
        and points
        and isinstance(points[0], (list, tuple))
        and points[0]
        and isinstance(points[0][0], (list, tuple))
    ):
        points = points[0]
    return points


def region_from_dict(payload: dict) -> Region:
    if not isinstance(payload, dict):
        raise InvalidRegionError("Region payload must be a mapping")
    kind = str(payload.get("type", "")).lower()

    if kind == "polygon":
        ring = _unwrap_ring(payload.get("points") or [])
        vertices = tuple(_parse_point(p, f"points[{idx}]") for idx, p in enumerate(ring))
        if len(vertices) < 3:
            raise InvalidRegionError("Polygon needs at least three vertices")
        return PolygonRegion(vertices)

    if kind == "circle":
        center = _parse_point(payload.get("center"), "center")
        try:
            radius = float(payload.get("radius"))
        except (TypeError, ValueError) as exc:
            raise InvalidRegionError("Circle radius must be a number of meters") from exc
        if not math.isfinite(radius) or radius <= 0:
            raise InvalidRegionError(f"Circle radius must be positive: {radius}")
        return CircleRegion(center, radius)

    if kind == "rectangle":
        corners = payload.get("corners") or []
        if len(corners) != 2:
            raise InvalidRegionError("Rectangle needs exactly two corners")
        return RectangleRegion(_parse_point(corners[0], "corners[0]"), _parse_point(corners[1], "corners[1]"))

    raise InvalidRegionError(f"Unsupported region type: {kind!r}")
