import json
import logging
from pathlib import Path

import pytest

from area_addresses.common.ids import generate_record_id, generate_run_id
from area_addresses.common.logging import JsonLineFormatter, build_logger, log_event
from area_addresses.common.models import AddressRecord, BoundingBox, LocationInfo


def test_generate_ids():
    assert generate_run_id().startswith("run-")
    first, second = generate_record_id(), generate_record_id()
    assert first != second
    assert len(first) == 32


def test_address_record_gets_stable_unique_id():
    a = AddressRecord("1 Main St", "", "", "", 40.0, -74.0)
    b = AddressRecord("1 Main St", "", "", "", 40.0, -74.0)
    assert a.id != b.id
    assert a.to_dict()["id"] == a.id
    assert a.location() == LocationInfo("1 Main St", "", "", "")


def test_bounding_box_helpers():
    box = BoundingBox(40.0, -74.0, 40.01, -73.99)
    assert box.center().lat == pytest.approx(40.005)
    assert box.has_area() is True
    assert BoundingBox(1, 1, 1, 2).has_area() is False
    assert box.as_overpass_clause() == "40.0,-74.0,40.01,-73.99"


def test_json_line_formatter_emits_stable_fields():
    record = logging.LogRecord("area_addresses", logging.INFO, __file__, 1, "phase querying", None, None)
    record.phase = "querying"
    record.cells = 4

    payload = json.loads(JsonLineFormatter().format(record))

    assert payload["message"] == "phase querying"
    assert payload["phase"] == "querying"
    assert payload["cells"] == 4
    assert payload["error_code"] is None
    assert payload["level"] == "INFO"


def test_build_logger_writes_jsonl_file(tmp_path: Path):
    logger = build_logger("run-test", log_dir=tmp_path)
    log_event(logger, "hello", phase="planning", event="PHASE_START")
    for handler in logger.handlers:
        handler.flush()
        handler.close()

    lines = (tmp_path / "run-test.log.jsonl").read_text(encoding="utf-8").splitlines()
    assert json.loads(lines[-1])["event"] == "PHASE_START"
