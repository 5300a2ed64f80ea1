"""Configuration loading and validation."""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from area_addresses.common.constants import (
    NOMINATIM_REVERSE_ENDPOINT,
    NOMINATIM_SEARCH_ENDPOINT,
    OVERPASS_ENDPOINT,
    USER_AGENT,
)
from area_addresses.common.errors import ConfigError
from area_addresses.common.fs import read_yaml
from area_addresses.common.schema import validate_collector_config


@dataclass(frozen=True)
class GridConfig:
    target_cell_meters: float = 1000.0
    meters_per_degree: float = 111320.0
    # Explicit override; when unset the size is derived from target_cell_meters.
    cell_size_degrees: float | None = None
    max_cells: int = 100

    @property
    def target_cell_size(self) -> float:
        if self.cell_size_degrees is not None:
            return self.cell_size_degrees
        return self.target_cell_meters / self.meters_per_degree


@dataclass(frozen=True)
class OverpassConfig:
    endpoint: str = OVERPASS_ENDPOINT
    timeout_seconds: int = 30
    feature_kind: str = "address"
    cell_concurrency: int = 3
    batch_delay_seconds: float = 1.0
    retry_backoff_seconds: float = 1.5


@dataclass(frozen=True)
class NominatimConfig:
    reverse_endpoint: str = NOMINATIM_REVERSE_ENDPOINT
    search_endpoint: str = NOMINATIM_SEARCH_ENDPOINT
    zoom: int = 18
    enrich_concurrency: int = 5
    batch_delay_seconds: float = 0.2
    retry_backoff_seconds: float = 1.0
    cache_precision: int = 5


@dataclass(frozen=True)
class DedupeConfig:
    proximity_epsilon_degrees: float = 0.0002


@dataclass(frozen=True)
class RunConfig:
    max_candidates: int = 100
    timeout_seconds: float | None = None


@dataclass(frozen=True)
class HttpConfig:
    connect_timeout: float = 20.0
    read_timeout: float = 60.0
    rate_per_sec: float = 1.0
    user_agent: str = USER_AGENT


@dataclass(frozen=True)
class CollectorConfig:
    grid: GridConfig = field(default_factory=GridConfig)
    overpass: OverpassConfig = field(default_factory=OverpassConfig)
    nominatim: NominatimConfig = field(default_factory=NominatimConfig)
    dedupe: DedupeConfig = field(default_factory=DedupeConfig)
    run: RunConfig = field(default_factory=RunConfig)
    http: HttpConfig = field(default_factory=HttpConfig)


SECTION_TYPES = {f.name: f.default_factory for f in fields(CollectorConfig)}


def _deep_merge(base: Any, overlay: Any) -> Any:
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = dict(base)
        for key, value in overlay.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged
    return overlay


def _load_yaml_with_overlay(path: Path, overlay_path: Path | None) -> dict:
    base = read_yaml(path) or {}
    if overlay_path is None or not overlay_path.exists():
        return base
    overlay = read_yaml(overlay_path)
    if overlay is None:
        return base
    if not isinstance(overlay, dict):
        raise ConfigError(f"Overlay config must be a mapping: {overlay_path}")
    return _deep_merge(base, overlay)


def config_from_dict(cfg: dict, *, allow_unknown: bool = False) -> CollectorConfig:
    validate_collector_config(cfg, allow_unknown=allow_unknown)
    sections = {}
    for name, factory in SECTION_TYPES.items():
        known = {f.name for f in fields(factory)}
        values = {key: value for key, value in (cfg.get(name) or {}).items() if key in known}
        sections[name] = factory(**values)
    config = CollectorConfig(**sections)
    if not math.isfinite(config.grid.target_cell_size) or config.grid.target_cell_size <= 0:
        raise ConfigError("grid cell size must be a positive number of degrees")
    return config


def load_collector_config(
    path: Path,
    *,
    allow_unknown: bool = False,
    overlay_path: Path | None = None,
) -> CollectorConfig:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    return config_from_dict(_load_yaml_with_overlay(path, overlay_path), allow_unknown=allow_unknown)
