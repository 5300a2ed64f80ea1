"""End-to-end collection: plan, query, filter, enrich, deduplicate."""

from __future__ import annotations

import dataclasses
import logging
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from types import TracebackType
from typing import Sequence

from area_addresses.common.config_loader import CollectorConfig
from area_addresses.common.constants import PHASE_FAILED, PHASES
from area_addresses.common.errors import UNEXPECTED_ERROR, CollectionCancelledError, InvalidRegionError, PipelineError
from area_addresses.common.geometry import bounding_box, contains_point
from area_addresses.common.http import HttpClient, TimeoutConfig
from area_addresses.common.ids import generate_run_id
from area_addresses.common.interfaces import ForwardGeocodeService, ProgressSink, ReverseGeocodeService
from area_addresses.common.logging import get_logger, log_event
from area_addresses.common.models import (
    AddressRecord,
    BoundingBox,
    CircleRegion,
    CollectionResult,
    CollectionSummary,
    LocationInfo,
    PolygonRegion,
    ProgressSnapshot,
    RawCandidate,
    Region,
)
from area_addresses.common.time_utils import elapsed_ms
from area_addresses.harvest.nominatim import NominatimService
from area_addresses.harvest.overpass_query import STATUS_FAILED, OverpassService, QueryGateway, location_from_tags
from area_addresses.pipeline.dedupe import Deduplicator
from area_addresses.pipeline.enrich import GeocodeEnricher, LookupCache, merge_location, needs_enrichment
from area_addresses.pipeline.grid import fits_single_query, plan_cells


class CancellationToken:
    """Set from any thread; honoured at the next batch boundary."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class LoggingProgressSink:
    def __init__(self, logger: logging.Logger, run_id: str | None = None) -> None:
        self.logger = logger
        self.run_id = run_id

    def on_progress(self, snapshot: ProgressSnapshot) -> None:
        log_event(
            self.logger,
            f"{snapshot.phase} {snapshot.percent}%",
            run_id=self.run_id,
            phase=snapshot.phase,
            event="PROGRESS",
            status="ok",
            candidates=snapshot.found_count,
        )


@dataclass
class _RunContext:
    run_id: str
    region: Region
    sink: ProgressSink | None
    cancel: CancellationToken
    deadline: float | None
    enricher: GeocodeEnricher
    raw_seen: Deduplicator
    accepted: Deduplicator
    summary: CollectionSummary = field(default_factory=CollectionSummary)
    phases: list[str] = field(default_factory=list)


# A candidate still in flight, paired with the address parts known so far.
Draft = tuple[RawCandidate, LocationInfo]


def validate_region(region: Region) -> BoundingBox:
    if isinstance(region, PolygonRegion) and len(region.vertices) < 3:
        raise InvalidRegionError("Polygon needs at least three vertices")
    if isinstance(region, CircleRegion) and (not math.isfinite(region.radius_m) or region.radius_m <= 0):
        raise InvalidRegionError(f"Circle radius must be positive: {region.radius_m}")
    bbox = bounding_box(region)
    if not all(math.isfinite(value) for value in (bbox.south, bbox.west, bbox.north, bbox.east)):
        raise InvalidRegionError("Region bounding box is not finite")
    if not bbox.has_area():
        raise InvalidRegionError("Region bounding box has no area")
    return bbox


class CollectionOrchestrator:
    def __init__(
        self,
        gateway: QueryGateway,
        reverse_service: ReverseGeocodeService,
        *,
        forward_service: ForwardGeocodeService | None = None,
        config: CollectorConfig | None = None,
        reverse_cache: LookupCache | None = None,
        logger: logging.Logger | None = None,
        http_client: HttpClient | None = None,
    ) -> None:
        self.gateway = gateway
        self.reverse_service = reverse_service
        self.forward_service = forward_service
        self.config = config or CollectorConfig()
        # None keeps the cache scoped to a single run.
        self.reverse_cache = reverse_cache
        self.logger = logger or get_logger()
        self._http_client = http_client
        self.phase = PHASES[0]

    def close(self) -> None:
        if self._http_client is not None:
            self._http_client.close()

    def __enter__(self) -> "CollectionOrchestrator":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def new_enricher(self) -> GeocodeEnricher:
        return GeocodeEnricher(
            self.reverse_service,
            self.forward_service,
            config=self.config.nominatim,
            reverse_cache=self.reverse_cache,
            logger=self.logger,
        )

    def run(
        self,
        region: Region,
        *,
        sink: ProgressSink | None = None,
        cancel: CancellationToken | None = None,
        run_id: str | None = None,
    ) -> CollectionResult:
        run_timeout = self.config.run.timeout_seconds
        ctx = _RunContext(
            run_id=run_id or generate_run_id(),
            region=region,
            sink=sink,
            cancel=cancel or CancellationToken(),
            deadline=time.monotonic() + run_timeout if run_timeout else None,
            enricher=self.new_enricher(),
            raw_seen=Deduplicator(self.config.dedupe.proximity_epsilon_degrees),
            accepted=Deduplicator(self.config.dedupe.proximity_epsilon_degrees),
        )
        started_at = time.monotonic()
        self.phase = PHASES[0]
        ctx.phases.append(self.phase)

        try:
            self._enter(ctx, "planning")
            queries = self._plan(ctx)
            self._enter(ctx, "querying")
            candidates = self._query(ctx, queries)
            self._enter(ctx, "filtering", len(candidates))
            drafts = self._filter(ctx, candidates)
            self._enter(ctx, "enriching", len(drafts))
            drafts = self._enrich(ctx, drafts)
            self._enter(ctx, "deduplicating", len(drafts))
            records = self._deduplicate(ctx, drafts)
        except Exception as exc:
            self.phase = PHASE_FAILED
            ctx.phases.append(PHASE_FAILED)
            log_event(
                self.logger,
                f"collection failed: {exc}",
                level=logging.ERROR,
                run_id=ctx.run_id,
                phase=PHASE_FAILED,
                event="RUN_FAIL",
                status="error",
                error_code=exc.error_code if isinstance(exc, PipelineError) else UNEXPECTED_ERROR,
                duration_ms=elapsed_ms(started_at),
            )
            self._emit(ctx, PHASE_FAILED, 100, ctx.summary.accepted)
            raise

        ctx.summary.accepted = len(records)
        self._enter(ctx, "done", len(records), percent=100)
        log_event(
            self.logger,
            "collection finished",
            run_id=ctx.run_id,
            phase="done",
            event="RUN_END",
            status="partial" if ctx.summary.timed_out or ctx.summary.cells_failed else "ok",
            duration_ms=elapsed_ms(started_at),
            cells=ctx.summary.cells_queried,
            candidates=ctx.summary.candidates_found,
            records=len(records),
        )
        return CollectionResult(run_id=ctx.run_id, records=records, summary=ctx.summary, phases=ctx.phases)

    def backfill(self, records: Sequence[AddressRecord]) -> tuple[list[AddressRecord], int]:
        """Fill missing city/state/postal fields of already accepted records.

        Record ids are kept; returns the new list and how many records changed.
        """
        enricher = self.new_enricher()
        targets = [idx for idx, record in enumerate(records) if needs_enrichment(record.location())]
        results = enricher.enrich_many([(records[idx].lat, records[idx].lng) for idx in targets])

        out = list(records)
        updated = 0
        for idx, found in zip(targets, results):
            current = records[idx].location()
            merged = merge_location(current, found)
            if merged == current:
                continue
            out[idx] = dataclasses.replace(
                records[idx],
                address_line=merged.address_line,
                city=merged.city,
                state=merged.state,
                postal_code=merged.postal_code,
            )
            updated += 1
        log_event(self.logger, "backfill finished", event="BACKFILL_END", status="ok", records=updated)
        return out, updated

    def _emit(self, ctx: _RunContext, phase: str, percent: int, found_count: int) -> None:
        if ctx.sink is not None:
            ctx.sink.on_progress(ProgressSnapshot(phase=phase, percent=percent, found_count=found_count))

    def _enter(self, ctx: _RunContext, phase: str, found_count: int = 0, percent: int = 0) -> None:
        self.phase = phase
        ctx.phases.append(phase)
        log_event(self.logger, f"phase {phase}", run_id=ctx.run_id, phase=phase, event="PHASE_START", status="ok")
        self._emit(ctx, phase, percent, found_count)

    def _should_continue(self, ctx: _RunContext) -> bool:
        if ctx.cancel.cancelled:
            raise CollectionCancelledError(f"Run {ctx.run_id} cancelled during {self.phase}")
        if ctx.deadline is not None and time.monotonic() >= ctx.deadline:
            if not ctx.summary.timed_out:
                log_event(
                    self.logger,
                    "run timeout reached, finishing with partial results",
                    level=logging.WARNING,
                    run_id=ctx.run_id,
                    phase=self.phase,
                    event="RUN_TIMEOUT",
                    status="partial",
                )
            ctx.summary.timed_out = True
            return False
        return True

    def _plan(self, ctx: _RunContext) -> list[BoundingBox]:
        bbox = validate_region(ctx.region)
        cell_size = self.config.grid.target_cell_size
        if fits_single_query(bbox, cell_size):
            queries = [bbox]
        else:
            queries = plan_cells(ctx.region, cell_size, self.config.grid.max_cells)
        if not queries:
            raise InvalidRegionError("No query cell has its center inside the region")
        ctx.summary.cells_planned = len(queries)
        log_event(self.logger, "planned query cells", run_id=ctx.run_id, phase="planning", cells=len(queries))
        return queries

    def _query(self, ctx: _RunContext, queries: list[BoundingBox]) -> list[RawCandidate]:
        concurrency = max(1, self.config.overpass.cell_concurrency)
        max_candidates = self.config.run.max_candidates
        found: list[RawCandidate] = []

        with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="cells") as executor:
            for start in range(0, len(queries), concurrency):
                if not self._should_continue(ctx):
                    break
                if len(found) >= max_candidates:
                    ctx.summary.truncated = True
                    break
                if start and self.config.overpass.batch_delay_seconds:
                    time.sleep(self.config.overpass.batch_delay_seconds)

                batch = queries[start : start + concurrency]
                results = list(executor.map(self.gateway.query_cell, batch))
                if ctx.cancel.cancelled:
                    raise CollectionCancelledError(f"Run {ctx.run_id} cancelled during querying")

                for result in results:
                    ctx.summary.cells_queried += 1
                    if result.status == STATUS_FAILED:
                        ctx.summary.cells_failed += 1
                    found.extend(result.candidates)
                done = start + len(batch)
                self._emit(ctx, "querying", round(done / len(queries) * 100), len(found))

        ctx.summary.candidates_found = len(found)
        return found

    def _filter(self, ctx: _RunContext, candidates: list[RawCandidate]) -> list[Draft]:
        drafts: list[Draft] = []
        for candidate in candidates:
            if not contains_point(ctx.region, candidate.lat, candidate.lng):
                ctx.summary.filtered_out += 1
                continue
            draft = location_from_tags(candidate.tags)
            if draft.address_line and not ctx.raw_seen.try_accept(draft.address_line, candidate.lat, candidate.lng):
                ctx.summary.duplicates += 1
                continue
            drafts.append((candidate, draft))

        max_candidates = self.config.run.max_candidates
        if len(drafts) > max_candidates:
            ctx.summary.truncated = True
            drafts = drafts[:max_candidates]
        self._emit(ctx, "filtering", 100, len(drafts))
        return drafts

    def _enrich(self, ctx: _RunContext, drafts: list[Draft]) -> list[Draft]:
        pending = [idx for idx, (_candidate, draft) in enumerate(drafts) if needs_enrichment(draft)]
        points = [(drafts[idx][0].lat, drafts[idx][0].lng) for idx in pending]

        def before_batch(done: int) -> bool:
            self._emit(ctx, "enriching", round(done / len(points) * 100), len(drafts))
            return self._should_continue(ctx)

        results = ctx.enricher.enrich_many(points, before_batch=before_batch)
        if ctx.cancel.cancelled:
            raise CollectionCancelledError(f"Run {ctx.run_id} cancelled during enriching")

        enriched = list(drafts)
        for idx, found in zip(pending, results):
            if found is None:
                ctx.summary.failed_enrichment += 1
                continue
            candidate, draft = drafts[idx]
            enriched[idx] = (candidate, merge_location(draft, found))
        self._emit(ctx, "enriching", 100, len(enriched))
        return enriched

    def _deduplicate(self, ctx: _RunContext, drafts: list[Draft]) -> list[AddressRecord]:
        records: list[AddressRecord] = []
        for candidate, draft in drafts:
            if not draft.address_line:
                ctx.summary.dropped_without_address += 1
                continue
            if not ctx.accepted.try_accept(draft.address_line, candidate.lat, candidate.lng):
                ctx.summary.duplicates += 1
                continue
            records.append(
                AddressRecord(
                    address_line=draft.address_line,
                    city=draft.city,
                    state=draft.state,
                    postal_code=draft.postal_code,
                    lat=candidate.lat,
                    lng=candidate.lng,
                )
            )
        self._emit(ctx, "deduplicating", 100, len(records))
        return records


def build_orchestrator(
    config: CollectorConfig | None = None,
    *,
    http_client: HttpClient | None = None,
    logger: logging.Logger | None = None,
) -> CollectionOrchestrator:
    """Wire the Overpass and Nominatim adapters into an orchestrator."""
    config = config or CollectorConfig()
    owns_client = http_client is None
    client = http_client or HttpClient(
        timeout=TimeoutConfig(connect=config.http.connect_timeout, read=config.http.read_timeout),
        rate_per_sec=config.http.rate_per_sec,
        user_agent=config.http.user_agent,
    )
    nominatim = NominatimService(client, config.nominatim)
    gateway = QueryGateway(
        OverpassService(client, config.overpass),
        feature_kind=config.overpass.feature_kind,
        retry_backoff_seconds=config.overpass.retry_backoff_seconds,
        logger=logger,
    )
    return CollectionOrchestrator(
        gateway,
        nominatim,
        forward_service=nominatim,
        config=config,
        logger=logger,
        http_client=client if owns_client else None,
    )
