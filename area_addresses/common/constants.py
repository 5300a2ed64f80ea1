"""Application constants."""

USER_AGENT = "area-addresses/1.0 (+address collection; contact: configured-email)"
OVERPASS_ENDPOINT = "https://overpass-api.de/api/interpreter"
NOMINATIM_REVERSE_ENDPOINT = "https://nominatim.openstreetmap.org/reverse"
NOMINATIM_SEARCH_ENDPOINT = "https://nominatim.openstreetmap.org/search"
EARTH_RADIUS_M = 6371000.0
PHASES = (
    "idle",
    "planning",
    "querying",
    "filtering",
    "enriching",
    "deduplicating",
    "done",
)
PHASE_FAILED = "failed"
JSON_LOG_FIELDS = (
    "timestamp",
    "run_id",
    "phase",
    "source",
    "event",
    "status",
    "attempt",
    "duration_ms",
    "cells",
    "candidates",
    "records",
    "error_code",
    "message",
)
