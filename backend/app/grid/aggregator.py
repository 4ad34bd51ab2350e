"""
Streaming grid aggregation.

Consumes a (potentially tens of millions long) async stream of records,
buckets each one into a fixed-size degree cell and accumulates either a
point count or a set of hashed identities per cell. Memory stays bounded
by the number of populated cells, and a hard scan cap bounds the work
done on pathological inputs.
"""

import asyncio
import logging
import math
import numbers
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, Callable, Dict, List, Optional, Set, Tuple

import numpy as np

from .discretizer import CellBounds, CellKey, cell_bounds, cell_key, format_cell_key
from .hashing import identity_hash, normalize_identity
from .source import BBox, GridRecord

logger = logging.getLogger(__name__)

Hasher = Callable[[str], int]


class GridMode(str, Enum):
    """Per-cell metric."""
    COUNT = "count"
    RICHNESS = "richness"


@dataclass(frozen=True)
class CellResult:
    """A populated cell and its metric."""
    key: CellKey
    metric: int
    bounds: CellBounds

    def to_dict(self) -> dict:
        return {
            "key": format_cell_key(self.key),
            "metric": self.metric,
            "bounds": self.bounds.to_pairs(),
        }


@dataclass(frozen=True)
class GridSnapshot:
    """
    Result of one aggregation run.

    ``scanned`` counts every record examined, including those skipped for
    bad coordinates or missing identities. ``capped`` means the scan cap
    was reached and the metrics are a lower bound.
    """
    cells: Tuple[CellResult, ...]
    scanned: int
    updated_at: datetime
    capped: bool
    mode: GridMode
    cell_size: float

    @property
    def cell_count(self) -> int:
        return len(self.cells)


def as_coordinate(value) -> Optional[float]:
    """Return ``value`` as a finite float, or None if it is not a finite number."""
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return None
    value = float(value)
    return value if math.isfinite(value) else None


class GridAccumulator:
    """
    Per-run cell state.

    In count mode each cell holds an integer; in richness mode a set of
    identity hashes. Owned by exactly one aggregation run.
    """

    def __init__(
        self,
        cell_size: float,
        mode: GridMode = GridMode.COUNT,
        hasher: Hasher = identity_hash,
    ):
        self.cell_size = cell_size
        self.mode = GridMode(mode)
        self.hasher = hasher
        self._counts: Dict[CellKey, int] = {}
        self._identities: Dict[CellKey, Set[int]] = {}

    def __len__(self) -> int:
        if self.mode is GridMode.RICHNESS:
            return len(self._identities)
        return len(self._counts)

    def add(self, lat: float, lng: float, identity: Optional[str] = None) -> bool:
        """
        Add one point.

        Returns:
            False if the record was skipped (richness mode, blank identity)
        """
        if self.mode is GridMode.RICHNESS:
            name = normalize_identity(identity)
            if not name:
                return False
            key = cell_key(lat, lng, self.cell_size)
            bucket = self._identities.get(key)
            if bucket is None:
                bucket = self._identities[key] = set()
            bucket.add(self.hasher(name))
            return True

        key = cell_key(lat, lng, self.cell_size)
        self._counts[key] = self._counts.get(key, 0) + 1
        return True

    def results(self) -> List[CellResult]:
        """Materialize populated cells, highest metric first."""
        if self.mode is GridMode.RICHNESS:
            keys = list(self._identities)
            metrics = np.fromiter(
                (len(self._identities[k]) for k in keys), dtype=np.int64, count=len(keys)
            )
        else:
            keys = list(self._counts)
            metrics = np.fromiter(
                (self._counts[k] for k in keys), dtype=np.int64, count=len(keys)
            )

        if not keys:
            return []

        order = np.argsort(-metrics, kind="stable")
        return [
            CellResult(
                key=keys[i],
                metric=int(metrics[i]),
                bounds=cell_bounds(keys[i], self.cell_size),
            )
            for i in order.tolist()
        ]


class ProgressMeter:
    """
    Rate-limited progress logging.

    The clock is only read every ``every`` records, and a line is only
    emitted if ``interval`` seconds have passed since the previous one.
    """

    def __init__(
        self,
        label: str,
        every: int = 100_000,
        interval: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.label = label
        self.every = max(int(every), 1)
        self.interval = interval
        self.clock = clock
        self.started = clock()
        self._last = self.started

    @property
    def elapsed(self) -> float:
        return self.clock() - self.started

    def tick(self, scanned: int, cells: int) -> bool:
        if scanned % self.every:
            return False
        now = self.clock()
        if now - self._last < self.interval:
            return False
        secs = now - self.started
        rate = scanned / max(1.0, secs)
        logger.info(
            f"[{self.label}] progress scanned={scanned} cells={cells} "
            f"rate={rate:.1f} rec/s elapsed={secs:.1f}s"
        )
        self._last = now
        return True


async def aggregate_stream(
    records: AsyncIterator[GridRecord],
    *,
    cell_size: float,
    scan_cap: int,
    mode: GridMode = GridMode.COUNT,
    bbox: Optional[BBox] = None,
    hasher: Hasher = identity_hash,
    label: str = "grid",
    progress_every: int = 100_000,
    progress_interval: float = 3.0,
    yield_every: int = 10_000,
) -> GridSnapshot:
    """
    Aggregate a record stream into a grid snapshot.

    Consumption stops as soon as the record that would exceed ``scan_cap``
    is pulled, so ``scanned`` is at most ``scan_cap + 1``. The stream is
    closed on every exit path, including cancellation.

    Args:
        records: Async iterator of GridRecord
        cell_size: Cell edge in degrees, must be > 0
        scan_cap: Maximum number of records to examine
        mode: COUNT or RICHNESS
        bbox: Optional inclusive rectangle; records outside are skipped
        hasher: Identity hash used in richness mode
        label: Prefix for log lines
        progress_every: Records between progress clock checks
        progress_interval: Minimum seconds between progress lines
        yield_every: Records between explicit event-loop yields

    Returns:
        GridSnapshot for the records consumed

    Raises:
        SourceUnavailableError: If the source fails before or during the scan
    """
    accumulator = GridAccumulator(cell_size, mode, hasher)
    meter = ProgressMeter(label, every=progress_every, interval=progress_interval)
    yield_every = max(int(yield_every), 1)
    scanned = 0

    try:
        async for record in records:
            scanned += 1
            if scanned > scan_cap:
                break

            lat = as_coordinate(record.latitude)
            lng = as_coordinate(record.longitude)
            if lat is not None and lng is not None:
                if bbox is None or bbox.contains(lat, lng):
                    accumulator.add(lat, lng, record.identity)

            meter.tick(scanned, len(accumulator))
            # Rows already buffered by the driver do not suspend.
            if scanned % yield_every == 0:
                await asyncio.sleep(0)
    finally:
        aclose = getattr(records, "aclose", None)
        if aclose is not None:
            await aclose()

    cells = accumulator.results()
    capped = scanned >= scan_cap
    logger.info(
        f"[{label}] done scanned={scanned} cells={len(cells)} capped={capped} "
        f"time={meter.elapsed:.1f}s sizeDeg={cell_size} mode={accumulator.mode.value}"
    )
    return GridSnapshot(
        cells=tuple(cells),
        scanned=scanned,
        updated_at=datetime.now(timezone.utc),
        capped=capped,
        mode=accumulator.mode,
        cell_size=cell_size,
    )
