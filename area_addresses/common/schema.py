"""Minimal strict schemas for YAML config validation."""

from __future__ import annotations

from area_addresses.common.errors import ConfigError

SECTION_KEYS: dict[str, set[str]] = {
    "grid": {"target_cell_meters", "meters_per_degree", "cell_size_degrees", "max_cells"},
    "overpass": {
        "endpoint",
        "timeout_seconds",
        "feature_kind",
        "cell_concurrency",
        "batch_delay_seconds",
        "retry_backoff_seconds",
    },
    "nominatim": {
        "reverse_endpoint",
        "search_endpoint",
        "zoom",
        "enrich_concurrency",
        "batch_delay_seconds",
        "retry_backoff_seconds",
        "cache_precision",
    },
    "dedupe": {"proximity_epsilon_degrees"},
    "run": {"max_candidates", "timeout_seconds"},
    "http": {"connect_timeout", "read_timeout", "rate_per_sec", "user_agent"},
}

POSITIVE_INT_KEYS = {
    ("grid", "max_cells"),
    ("overpass", "timeout_seconds"),
    ("overpass", "cell_concurrency"),
    ("nominatim", "enrich_concurrency"),
    ("nominatim", "zoom"),
    ("run", "max_candidates"),
}
NON_NEGATIVE_INT_KEYS = {
    ("nominatim", "cache_precision"),
}
NON_NEGATIVE_NUMBER_KEYS = {
    ("overpass", "batch_delay_seconds"),
    ("overpass", "retry_backoff_seconds"),
    ("nominatim", "batch_delay_seconds"),
    ("nominatim", "retry_backoff_seconds"),
}
POSITIVE_NUMBER_KEYS = {
    ("grid", "target_cell_meters"),
    ("grid", "meters_per_degree"),
    ("dedupe", "proximity_epsilon_degrees"),
    ("http", "connect_timeout"),
    ("http", "read_timeout"),
    ("http", "rate_per_sec"),
}


def _assert_no_unknown_keys(obj: dict, known: set[str], ctx: str, allow_unknown: bool) -> None:
    if allow_unknown:
        return
    unknown = set(obj) - known
    if unknown:
        unknown_str = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys in {ctx}: {unknown_str}")


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_collector_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    if not isinstance(cfg, dict):
        raise ConfigError("collector config must be a mapping")
    _assert_no_unknown_keys(cfg, set(SECTION_KEYS), "collector config", allow_unknown)

    for section, known in SECTION_KEYS.items():
        values = cfg.get(section)
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ConfigError(f"{section} must be a mapping")
        _assert_no_unknown_keys(values, known, section, allow_unknown)

    for section, key in POSITIVE_INT_KEYS:
        value = (cfg.get(section) or {}).get(key)
        if value is not None and (not isinstance(value, int) or isinstance(value, bool) or value < 1):
            raise ConfigError(f"{section}.{key} must be a positive integer")
    for section, key in NON_NEGATIVE_INT_KEYS:
        value = (cfg.get(section) or {}).get(key)
        if value is not None and (not isinstance(value, int) or isinstance(value, bool) or value < 0):
            raise ConfigError(f"{section}.{key} must be a non-negative integer")
    for section, key in POSITIVE_NUMBER_KEYS:
        value = (cfg.get(section) or {}).get(key)
        if value is not None and (not _is_number(value) or value <= 0):
            raise ConfigError(f"{section}.{key} must be a positive number")
    for section, key in NON_NEGATIVE_NUMBER_KEYS:
        value = (cfg.get(section) or {}).get(key)
        if value is not None and (not _is_number(value) or value < 0):
            raise ConfigError(f"{section}.{key} must be a non-negative number")

    cell_size = (cfg.get("grid") or {}).get("cell_size_degrees")
    if cell_size is not None and (not _is_number(cell_size) or cell_size <= 0):
        raise ConfigError("grid.cell_size_degrees must be a positive number")
    run_timeout = (cfg.get("run") or {}).get("timeout_seconds")
    if run_timeout is not None and (not _is_number(run_timeout) or run_timeout <= 0):
        raise ConfigError("run.timeout_seconds must be a positive number")

    return cfg
