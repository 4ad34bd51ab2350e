"""
Grid module for OccurMap.
Discretizes occurrence records into fixed-size degree cells and serves
cached and on-demand cell aggregates.
"""

from .aggregator import CellResult, GridAccumulator, GridMode, GridSnapshot, aggregate_stream
from .bounded import BoundedGridParams, BoundedGridResult, compute_bounded_grid, parse_finite
from .cache import GridCache
from .discretizer import CellBounds, CellKey, cell_bounds, cell_key, format_cell_key, size_key
from .engine import CachedGrid, GridEngine
from .errors import GridError, SourceUnavailableError
from .hashing import identity_hash, normalize_identity
from .scheduler import GridRefreshScheduler
from .source import BBox, GridRecord, RecordQuery, RecordSource

__all__ = [
    "BBox",
    "BoundedGridParams",
    "BoundedGridResult",
    "CachedGrid",
    "CellBounds",
    "CellKey",
    "CellResult",
    "GridAccumulator",
    "GridCache",
    "GridEngine",
    "GridError",
    "GridMode",
    "GridRecord",
    "GridRefreshScheduler",
    "GridSnapshot",
    "RecordQuery",
    "RecordSource",
    "SourceUnavailableError",
    "aggregate_stream",
    "cell_bounds",
    "cell_key",
    "compute_bounded_grid",
    "format_cell_key",
    "identity_hash",
    "normalize_identity",
    "parse_finite",
    "size_key",
]
