import math

import pytest

from area_addresses.common.errors import InvalidRegionError
from area_addresses.common.geometry import (
    bounding_box,
    contains_point,
    distance_meters,
    point_in_polygon,
    region_from_dict,
)
from area_addresses.common.models import CircleRegion, LatLng, PolygonRegion, RectangleRegion

# Concave "C" shape with integer coordinates so both windings use exact arithmetic.
C_SHAPE = [
    LatLng(0, 0),
    LatLng(0, 4),
    LatLng(1, 4),
    LatLng(1, 1),
    LatLng(3, 1),
    LatLng(3, 4),
    LatLng(4, 4),
    LatLng(4, 0),
]


def _north_of(lat: float, meters: float) -> float:
    return lat + math.degrees(meters / 6371000.0)


def test_distance_meters_zero_and_one_degree_of_latitude():
    assert distance_meters(40.0, -74.0, 40.0, -74.0) == 0.0
    assert distance_meters(0.0, 0.0, 1.0, 0.0) == pytest.approx(111194.93, rel=1e-6)


def test_point_in_polygon_handles_concave_ring():
    assert point_in_polygon(0.5, 2.0, C_SHAPE) is True
    assert point_in_polygon(2.0, 0.5, C_SHAPE) is True
    assert point_in_polygon(2.0, 2.5, C_SHAPE) is False
    assert point_in_polygon(5.0, 5.0, C_SHAPE) is False


def test_winding_direction_does_not_change_classification():
    clockwise = PolygonRegion(tuple(C_SHAPE))
    counter = PolygonRegion(tuple(reversed(C_SHAPE)))
    probes = [(0.5, 2.0), (2.0, 0.5), (2.0, 2.5), (3.5, 3.5), (-1.0, 2.0)]
    probes += [(v.lat, v.lng) for v in C_SHAPE]

    for lat, lng in probes:
        assert contains_point(clockwise, lat, lng) == contains_point(counter, lat, lng)


def test_closing_vertex_does_not_change_classification():
    open_ring = PolygonRegion(tuple(C_SHAPE))
    closed_ring = PolygonRegion(tuple(C_SHAPE + [C_SHAPE[0]]))
    for lat, lng in [(0.5, 2.0), (2.0, 2.5), (3.5, 0.5)]:
        assert contains_point(open_ring, lat, lng) == contains_point(closed_ring, lat, lng)


def test_circle_containment_uses_radius_inclusive():
    circle = CircleRegion(LatLng(40.0, -74.0), 50.0)
    assert contains_point(circle, _north_of(40.0, 49.9), -74.0) is True
    assert contains_point(circle, _north_of(40.0, 50.1), -74.0) is False


def test_rectangle_containment_accepts_corners_in_any_order():
    rect = RectangleRegion(LatLng(40.01, -73.99), LatLng(40.0, -74.0))
    assert contains_point(rect, 40.005, -73.995) is True
    assert contains_point(rect, 40.0, -74.0) is True
    assert contains_point(rect, 40.02, -73.995) is False


def test_bounding_boxes():
    assert bounding_box(PolygonRegion(tuple(C_SHAPE))) == bounding_box(
        RectangleRegion(LatLng(0, 0), LatLng(4, 4))
    )

    circle = CircleRegion(LatLng(40.0, -74.0), 500.0)
    box = bounding_box(circle)
    assert box.south < 40.0 < box.north
    assert box.west < -74.0 < box.east
    assert box.north == pytest.approx(_north_of(40.0, 500.0))
    assert contains_point(circle, _north_of(40.0, 499.0), -74.0)
    assert box.lng_span > box.lat_span


def test_region_from_dict_variants():
    polygon = region_from_dict({"type": "polygon", "points": [[[0, 0], [0, 1], [1, 1]]]})
    assert isinstance(polygon, PolygonRegion)
    assert polygon.vertices[1] == LatLng(0, 1)

    circle = region_from_dict({"type": "circle", "center": [40.0, -74.0], "radius": 50})
    assert circle == CircleRegion(LatLng(40.0, -74.0), 50.0)

    rect = region_from_dict({"type": "Rectangle", "corners": [[40.0, -74.0], [40.01, -73.99]]})
    assert isinstance(rect, RectangleRegion)


@pytest.mark.parametrize(
    "payload",
    [
        {"type": "polygon", "points": [[0, 0], [1, 1]]},
        {"type": "circle", "center": [40.0, -74.0], "radius": 0},
        {"type": "circle", "center": [95.0, -74.0], "radius": 10},
        {"type": "rectangle", "corners": [[40.0, -74.0]]},
        {"type": "hexagon"},
        ["not", "a", "mapping"],
    ],
)
def test_region_from_dict_rejects_malformed_payloads(payload):
    with pytest.raises(InvalidRegionError):
        region_from_dict(payload)
