"""Split a region's bounding box into bounded query cells."""

from __future__ import annotations

import math

from area_addresses.common.geometry import bounding_box, contains_point
from area_addresses.common.models import BoundingBox, Cell, Region

DEFAULT_MAX_CELLS = 100
# Headroom applied when rounding up still overshoots the cell cap.
_STEP_GROWTH = 1.01
# Digits kept from span/step so float noise does not add a sliver row.
_QUOTIENT_DIGITS = 9


def _steps(span: float, step: float) -> int:
    if span <= 0:
        return 0
    return math.ceil(round(span / step, _QUOTIENT_DIGITS))


def effective_cell_size(bbox: BoundingBox, target_cell_size: float, max_cells: int = DEFAULT_MAX_CELLS) -> float:
    """Return the cell edge (degrees) that keeps the grid within `max_cells`.

    Large boxes get coarser cells instead of being truncated.
    """
    if target_cell_size <= 0:
        raise ValueError("target_cell_size must be positive")
    if max_cells < 1:
        raise ValueError("max_cells must be at least 1")

    step = target_cell_size
    estimate = _steps(bbox.lat_span, step) * _steps(bbox.lng_span, step)
    if estimate > max_cells:
        step *= math.sqrt(estimate / max_cells)
    while _steps(bbox.lat_span, step) * _steps(bbox.lng_span, step) > max_cells:
        step *= _STEP_GROWTH
    return step


def grid_cells(bbox: BoundingBox, step: float) -> list[Cell]:
    """Row-major cells from south-west, clipped to `bbox`.

    The last row and column end exactly on the box edge.
    """
    cells: list[Cell] = []
    rows = _steps(bbox.lat_span, step)
    cols = _steps(bbox.lng_span, step)
    for row in range(rows):
        south = bbox.south + row * step
        north = bbox.north if row == rows - 1 else min(south + step, bbox.north)
        for col in range(cols):
            west = bbox.west + col * step
            east = bbox.east if col == cols - 1 else min(west + step, bbox.east)
            cell = BoundingBox(south, west, north, east)
            if cell.has_area():
                cells.append(cell)
    return cells


def plan_cells(
    region: Region,
    target_cell_size: float,
    max_cells: int = DEFAULT_MAX_CELLS,
) -> list[Cell]:
    bbox = bounding_box(region)
    step = effective_cell_size(bbox, target_cell_size, max_cells)
    planned = []
    for cell in grid_cells(bbox, step):
        center = cell.center()
        if contains_point(region, center.lat, center.lng):
            planned.append(cell)
    return planned


def fits_single_query(bbox: BoundingBox, target_cell_size: float) -> bool:
    return bbox.lat_span <= target_cell_size and bbox.lng_span <= target_cell_size
