import pytest

from area_addresses.common.config_loader import OverpassConfig
from area_addresses.common.errors import ConfigError, RateLimitedError, ServiceError, ServiceUnavailableError
from area_addresses.common.http import TimeoutConfig
from area_addresses.common.models import BoundingBox, LocationInfo, RawCandidate
from area_addresses.harvest.overpass_query import (
    STATUS_EMPTY,
    STATUS_FAILED,
    STATUS_OK,
    OverpassService,
    QueryGateway,
    build_overpass_query,
    location_from_tags,
    parse_overpass_elements,
)

BOX = BoundingBox(40.0, -74.0, 40.01, -73.99)


class FakeHttp:
    def __init__(self, payload):
        self.payload = payload
        self.timeout = TimeoutConfig(connect=5.0, read=60.0)
        self.timeouts = []
        self.calls = []

    def post_form_json(self, url, *, data, headers=None, timeout=None):
        self.calls.append((url, data))
        self.timeouts.append(timeout)
        return self.payload


class ScriptedService:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    def find_features(self, bbox, feature_kind):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_build_overpass_query_covers_nodes_and_ways():
    query = build_overpass_query(BOX, "address", 25)
    assert query.startswith("[out:json][timeout:25];")
    assert '  node["addr:housenumber"](40.0,-74.0,40.01,-73.99);' in query
    assert '  way["addr:full"](40.0,-74.0,40.01,-73.99);' in query
    assert query.endswith("out center;")


def test_build_overpass_query_rejects_unknown_kind():
    with pytest.raises(ConfigError):
        build_overpass_query(BOX, "parcel")


def test_parse_overpass_elements_uses_way_center():
    payload = {
        "elements": [
            {"type": "node", "lat": 40.001, "lon": -73.999, "tags": {"addr:housenumber": "1"}},
            {"type": "way", "center": {"lat": 40.002, "lon": -73.998}, "tags": {"addr:full": "2 Main St"}},
            {"type": "way", "tags": {"addr:housenumber": "3"}},
        ]
    }
    features = parse_overpass_elements(payload)
    assert [(f["lat"], f["lng"]) for f in features] == [(40.001, -73.999), (40.002, -73.998)]
    assert features[1]["tags"] == {"addr:full": "2 Main St"}


def test_parse_overpass_elements_skips_unusable_coordinates():
    payload = {
        "elements": [
            {"type": "node", "lat": 40.001, "lon": -73.999, "tags": {"addr:housenumber": "1"}},
            {"type": "node", "lat": "", "lon": -73.998, "tags": {"addr:housenumber": "2"}},
            {"type": "node", "lat": "nan", "lon": -73.997},
            {"type": "way", "center": {"lat": None, "lon": "x"}},
            "not an element",
        ]
    }
    assert parse_overpass_elements(payload) == [{"lat": 40.001, "lng": -73.999, "tags": {"addr:housenumber": "1"}}]


def test_location_from_tags_priority():
    assert location_from_tags({"addr:full": "Flat 1, 2 Main St", "addr:street": "Main St"}).address_line == (
        "Flat 1, 2 Main St"
    )
    assert location_from_tags(
        {"addr:housenumber": "12", "addr:street": "Main St", "addr:city": "Springfield", "addr:postcode": "62701"}
    ) == LocationInfo("12 Main St", "Springfield", "", "62701")
    assert location_from_tags({"addr:street": "Main St"}).address_line == "Main St"
    assert location_from_tags({"building": "yes", "name": "Town Hall"}).address_line == "Town Hall"
    assert location_from_tags({"addr:housenumber": "12"}).address_line == ""


def test_overpass_service_posts_query_form():
    http = FakeHttp({"elements": [{"lat": 40.001, "lon": -73.999, "tags": {}}]})
    service = OverpassService(http, OverpassConfig(timeout_seconds=20))

    features = service.find_features(BOX, "address")

    assert features == [{"lat": 40.001, "lng": -73.999, "tags": {}}]
    url, data = http.calls[0]
    assert url == "https://overpass-api.de/api/interpreter"
    assert data["data"].startswith("[out:json][timeout:20];")
    assert http.timeouts == [TimeoutConfig(connect=5.0, read=50)]


def test_overpass_runtime_error_remark_is_transient():
    service = OverpassService(FakeHttp({"elements": [], "remark": "runtime error: Query timed out"}))
    with pytest.raises(ServiceUnavailableError):
        service.find_features(BOX, "address")


def test_overpass_non_object_payload_is_an_error():
    with pytest.raises(ServiceError):
        OverpassService(FakeHttp(["nope"])).find_features(BOX, "address")


def test_gateway_retries_rate_limit_once():
    service = ScriptedService(RateLimitedError("429"), [{"lat": 40.001, "lng": -73.999, "tags": {"a": "b"}}])
    gateway = QueryGateway(service, retry_backoff_seconds=0)

    result = gateway.query_cell(BOX)

    assert result.status == STATUS_OK
    assert result.candidates == [RawCandidate(40.001, -73.999, {"a": "b"})]
    assert service.calls == 2


def test_gateway_reports_failed_cell_after_second_failure():
    service = ScriptedService(ServiceUnavailableError("x"), ServiceUnavailableError("y"))
    gateway = QueryGateway(service, retry_backoff_seconds=0)

    result = gateway.query_cell(BOX)

    assert result.status == STATUS_FAILED
    assert result.error_code == "SERVICE_UNAVAILABLE"
    assert result.candidates == []
    assert service.calls == 2


def test_gateway_distinguishes_empty_cells():
    gateway = QueryGateway(ScriptedService([]), retry_backoff_seconds=0)
    assert gateway.query_cell(BOX).status == STATUS_EMPTY


def test_gateway_rejects_unknown_feature_kind():
    with pytest.raises(ConfigError):
        QueryGateway(ScriptedService(), feature_kind="parcel")


def test_gateway_absorbs_unexpected_adapter_errors():
    service = ScriptedService(KeyError("lat"))
    gateway = QueryGateway(service, retry_backoff_seconds=0)

    result = gateway.query_cell(BOX)

    assert result.status == STATUS_FAILED
    assert result.error_code == "UNEXPECTED_ERROR"
    assert service.calls == 1


def test_gateway_fails_cell_on_malformed_feature():
    gateway = QueryGateway(ScriptedService([{"lat": "", "lng": -73.99, "tags": {}}]), retry_backoff_seconds=0)
    result = gateway.query_cell(BOX)
    assert result.status == STATUS_FAILED
    assert result.candidates == []
