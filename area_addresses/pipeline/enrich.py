"""Reverse/forward geocode enrichment with a per-run lookup cache."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict, dataclass
from typing import Callable, Generic, Sequence, TypeVar

from area_addresses.common.config_loader import NominatimConfig
from area_addresses.common.errors import UNEXPECTED_ERROR
from area_addresses.common.interfaces import ForwardGeocodeService, ReverseGeocodeService
from area_addresses.common.logging import get_logger, log_event
from area_addresses.common.models import LatLng, LocationInfo
from area_addresses.common.retry import retry_transient
from area_addresses.pipeline.dedupe import normalise_address

V = TypeVar("V")


class LookupCache(Generic[V]):
    """Insert-if-absent cache shared by concurrent enrichment workers.

    While one worker loads a key, other workers asking for the same key wait
    for that result instead of issuing their own request. Only non-None
    values are stored, so a failed lookup can be retried later in the run.
    """

    def __init__(self) -> None:
        self._values: dict[str, V] = {}
        self._pending: dict[str, Future] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)

    def get(self, key: str) -> V | None:
        with self._lock:
            return self._values.get(key)

    def get_or_load(self, key: str, loader: Callable[[], V | None]) -> tuple[V | None, bool]:
        """Return `(value, served_without_own_request)`."""
        with self._lock:
            if key in self._values:
                return self._values[key], True
            pending = self._pending.get(key)
            owner = pending is None
            if owner:
                pending = Future()
                self._pending[key] = pending

        if not owner:
            return pending.result(), True

        value: V | None = None
        try:
            value = loader()
        finally:
            with self._lock:
                if value is not None:
                    self._values[key] = value
                self._pending.pop(key, None)
            pending.set_result(value)
        return value, False


@dataclass
class EnrichmentStats:
    cache_hits: int = 0
    network_lookups: int = 0
    misses: int = 0
    failures: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def merge_location(base: LocationInfo, found: LocationInfo | None) -> LocationInfo:
    """Fill the empty fields of `base` from `found`; never overwrite."""
    if found is None:
        return base
    return LocationInfo(
        address_line=base.address_line or found.address_line,
        city=base.city or found.city,
        state=base.state or found.state,
        postal_code=base.postal_code or found.postal_code,
    )


def needs_enrichment(location: LocationInfo) -> bool:
    return not location.is_complete()


def format_query(location: LocationInfo) -> str:
    parts = [location.address_line, location.city, location.state, location.postal_code]
    return ", ".join(part.strip() for part in parts if part and part.strip())


class GeocodeEnricher:
    def __init__(
        self,
        reverse_service: ReverseGeocodeService,
        forward_service: ForwardGeocodeService | None = None,
        *,
        config: NominatimConfig | None = None,
        reverse_cache: LookupCache[LocationInfo] | None = None,
        forward_cache: LookupCache[LatLng] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.reverse_service = reverse_service
        self.forward_service = forward_service
        self.config = config or NominatimConfig()
        self.reverse_cache = reverse_cache if reverse_cache is not None else LookupCache()
        self.forward_cache = forward_cache if forward_cache is not None else LookupCache()
        self.logger = logger or get_logger()
        self.stats = EnrichmentStats()
        self._stats_lock = threading.Lock()

    def _count(self, field_name: str) -> None:
        with self._stats_lock:
            setattr(self.stats, field_name, getattr(self.stats, field_name) + 1)

    def reverse_key(self, lat: float, lng: float) -> str:
        precision = self.config.cache_precision
        return f"{lat:.{precision}f},{lng:.{precision}f}"

    def _call(self, fn: Callable, *args):
        self._count("network_lookups")
        try:
            result = retry_transient(
                fn,
                *args,
                attempts=2,
                backoff_seconds=self.config.retry_backoff_seconds,
                logger=self.logger,
                source="nominatim",
            )
        except Exception as exc:
            # A missed lookup leaves fields empty; it never aborts the batch.
            self._count("failures")
            log_event(
                self.logger,
                f"geocode lookup failed: {exc}",
                level=logging.WARNING,
                source="nominatim",
                event="LOOKUP_FAIL",
                status="error",
                error_code=getattr(exc, "error_code", UNEXPECTED_ERROR),
            )
            return None
        if result is None:
            self._count("misses")
        return result

    def reverse_lookup(self, lat: float, lng: float) -> LocationInfo | None:
        value, hit = self.reverse_cache.get_or_load(
            self.reverse_key(lat, lng),
            lambda: self._call(self.reverse_service.lookup, lat, lng),
        )
        if hit:
            self._count("cache_hits")
        return value

    def forward_lookup(self, location: LocationInfo) -> LatLng | None:
        if self.forward_service is None:
            raise ValueError("forward_lookup needs a forward geocode service")
        query = format_query(location)
        if not query:
            return None
        value, hit = self.forward_cache.get_or_load(
            normalise_address(query),
            lambda: self._call(self.forward_service.search, query),
        )
        if hit:
            self._count("cache_hits")
        return value

    def enrich_many(
        self,
        points: Sequence[tuple[float, float]],
        *,
        before_batch: Callable[[int], bool] | None = None,
    ) -> list[LocationInfo | None]:
        """Reverse-geocode `points` in bounded concurrent batches.

        `before_batch(done)` runs ahead of every batch; returning False stops
        the loop, and the result then covers only the points processed.
        """
        batch_size = max(1, self.config.enrich_concurrency)
        results: list[LocationInfo | None] = []
        with ThreadPoolExecutor(max_workers=batch_size, thread_name_prefix="enrich") as executor:
            for start in range(0, len(points), batch_size):
                if before_batch is not None and not before_batch(start):
                    break
                if start and self.config.batch_delay_seconds:
                    time.sleep(self.config.batch_delay_seconds)
                batch = points[start : start + batch_size]
                results.extend(executor.map(lambda point: self.reverse_lookup(point[0], point[1]), batch))
        return results
