"""
On-demand grid aggregation for a viewport.

Each call streams the records matching the caller's filters and bounding
box and counts them per cell. Results are returned directly and never
cached, so arbitrary viewports cost one fresh (capped) scan each.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .aggregator import GridMode, GridSnapshot, aggregate_stream
from .source import BBox, RangeFilter, RecordQuery, RecordSource

logger = logging.getLogger(__name__)

LOG_LABEL = "grid-endpoint"

DEFAULT_CELL_SIZE = 1.0
MIN_CELL_SIZE = 0.005
MAX_CELL_SIZE = 10.0
DEFAULT_SCAN_CAP = 35_000_000


def parse_finite(value: Any) -> Optional[float]:
    """Parse a number from untrusted input; None unless the result is finite."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def clamp_cell_size(
    value: Any,
    default: float = DEFAULT_CELL_SIZE,
    min_size: float = MIN_CELL_SIZE,
    max_size: float = MAX_CELL_SIZE,
) -> float:
    """Missing, non-finite or non-positive sizes fall back to ``default``; the rest is clamped."""
    size = parse_finite(value)
    if size is None or size <= 0:
        size = default
    return max(min_size, min(size, max_size))


def normalize_scan_cap(value: Any, default: int = DEFAULT_SCAN_CAP) -> int:
    cap = parse_finite(value)
    if cap is None or cap <= 0:
        return default
    return int(cap)


def normalize_bbox(south: Any, west: Any, north: Any, east: Any) -> Optional[BBox]:
    """
    Build a BBox if all edges are finite and ordered.

    Malformed boxes are dropped rather than rejected, which turns the
    query into an unbounded one.
    """
    edges = [parse_finite(v) for v in (south, west, north, east)]
    if any(e is None for e in edges):
        return None
    s, w, n, e = edges
    if s > n or w > e:
        return None
    return BBox(south=s, west=w, north=n, east=e)


@dataclass(frozen=True)
class BoundedGridParams:
    """Validated parameters for one on-demand aggregation."""
    cell_size: float = DEFAULT_CELL_SIZE
    scan_cap: int = DEFAULT_SCAN_CAP
    bbox: Optional[BBox] = None
    equals: Dict[str, str] = field(default_factory=dict)
    ranges: Dict[str, RangeFilter] = field(default_factory=dict)

    @classmethod
    def from_raw(
        cls,
        *,
        south: Any = None,
        west: Any = None,
        north: Any = None,
        east: Any = None,
        cell_size: Any = None,
        scan_cap: Any = None,
        equals: Optional[Mapping[str, Any]] = None,
        ranges: Optional[Mapping[str, tuple]] = None,
        default_cell_size: float = DEFAULT_CELL_SIZE,
        min_cell_size: float = MIN_CELL_SIZE,
        max_cell_size: float = MAX_CELL_SIZE,
        default_scan_cap: int = DEFAULT_SCAN_CAP,
    ) -> "BoundedGridParams":
        """
        Normalize untrusted request values.

        Never raises for bad input: sizes and caps fall back to defaults,
        malformed boxes are dropped, blank filters are ignored.
        """
        clean_equals = {
            name: str(value).strip()
            for name, value in (equals or {}).items()
            if value is not None and str(value).strip()
        }
        clean_ranges: Dict[str, RangeFilter] = {}
        for name, (low, high) in (ranges or {}).items():
            low, high = parse_finite(low), parse_finite(high)
            if low is not None or high is not None:
                clean_ranges[name] = (low, high)

        return cls(
            cell_size=clamp_cell_size(cell_size, default_cell_size, min_cell_size, max_cell_size),
            scan_cap=normalize_scan_cap(scan_cap, default_scan_cap),
            bbox=normalize_bbox(south, west, north, east),
            equals=clean_equals,
            ranges=clean_ranges,
        )

    def to_query(self) -> RecordQuery:
        return RecordQuery(
            equals=dict(self.equals),
            ranges=dict(self.ranges),
            bbox=self.bbox,
            include_identity=False,
        )


@dataclass(frozen=True)
class BoundedGridResult:
    """Snapshot plus the effective viewport it was computed for."""
    snapshot: GridSnapshot
    bbox: Optional[BBox]


async def compute_bounded_grid(
    source: RecordSource,
    params: BoundedGridParams,
    progress_every: int = 100_000,
    progress_interval: float = 3.0,
) -> BoundedGridResult:
    """
    Count records per cell inside the requested viewport.

    The bbox is pushed down to the source and checked again in process.
    Cancelling the awaiting task closes the underlying stream.

    Raises:
        SourceUnavailableError: If the record source cannot be reached
    """
    logger.debug(
        f"[{LOG_LABEL}] start sizeDeg={params.cell_size} cap={params.scan_cap} "
        f"bbox={params.bbox} equals={params.equals} ranges={params.ranges}"
    )
    snapshot = await aggregate_stream(
        source.stream(params.to_query()),
        cell_size=params.cell_size,
        scan_cap=params.scan_cap,
        mode=GridMode.COUNT,
        bbox=params.bbox,
        label=LOG_LABEL,
        progress_every=progress_every,
        progress_interval=progress_interval,
    )
    return BoundedGridResult(snapshot=snapshot, bbox=params.bbox)
