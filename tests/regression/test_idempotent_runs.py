import json
from pathlib import Path

import pytest

from area_addresses.common.config_loader import CollectorConfig, GridConfig, NominatimConfig, OverpassConfig
from area_addresses.common.http import TimeoutConfig
from area_addresses.common.models import LatLng, LocationInfo, PolygonRegion
from area_addresses.harvest.overpass_query import OverpassService, QueryGateway
from area_addresses.pipeline.collect import CollectionOrchestrator

FIXTURES = Path(__file__).resolve().parents[1] / "fixtures"
CONFIG = CollectorConfig(
    grid=GridConfig(cell_size_degrees=0.004),
    overpass=OverpassConfig(batch_delay_seconds=0, retry_backoff_seconds=0),
    nominatim=NominatimConfig(batch_delay_seconds=0, retry_backoff_seconds=0),
)
REGION = PolygonRegion(
    (LatLng(39.999, -74.001), LatLng(39.999, -73.989), LatLng(40.011, -73.989), LatLng(40.011, -74.001))
)


class FixtureHttp:
    def __init__(self, payload):
        self.payload = payload
        self.timeout = TimeoutConfig(connect=5.0, read=60.0)

    def post_form_json(self, url, *, data, headers=None, timeout=None):
        return self.payload


class StaticReverse:
    def lookup(self, lat, lng):
        return LocationInfo("", "Springfield", "IL", "62701")


def _collect() -> list[dict]:
    payload = json.loads((FIXTURES / "overpass_rectangle.json").read_text(encoding="utf-8"))
    gateway = QueryGateway(OverpassService(FixtureHttp(payload), CONFIG.overpass), retry_backoff_seconds=0)
    result = CollectionOrchestrator(gateway, StaticReverse(), config=CONFIG).run(REGION)
    return sorted(
        ({key: value for key, value in record.to_dict().items() if key != "id"} for record in result.records),
        key=lambda row: (row["address_line"], row["lat"], row["lng"]),
    )


@pytest.mark.regression
def test_repeated_runs_yield_same_record_set():
    first = _collect()
    second = _collect()

    assert first == second
    assert [row["address_line"] for row in first] == ["12 Main St", "40 Oak Ave"]
