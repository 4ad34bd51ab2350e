"""
Grid engine facade used by the API layer.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from .aggregator import GridMode, GridSnapshot
from .bounded import BoundedGridParams, BoundedGridResult, compute_bounded_grid
from .cache import GridCache
from .discretizer import size_key
from .scheduler import GridRefreshScheduler
from .source import RecordSource


@dataclass(frozen=True)
class CachedGrid:
    """Answer to a cache lookup."""
    size_key: str
    cached: bool
    computing: bool
    snapshot: Optional[GridSnapshot] = None


class GridEngine:
    """
    Owns the grid cache, its refresh scheduler and the on-demand path.

    One instance per process. Both aggregation paths read from the same
    record source but keep independent per-run state.
    """

    def __init__(
        self,
        source: RecordSource,
        cache_sizes: Iterable[float] = (0.25,),
        cache_mode: GridMode = GridMode.COUNT,
        scan_cap: int = 35_000_000,
        warmup_seconds: float = 5.0,
        refresh_seconds: float = 3600.0,
        progress_every: int = 100_000,
        progress_interval: float = 3.0,
    ):
        self.source = source
        self.cache = GridCache()
        self.progress_every = progress_every
        self.progress_interval = progress_interval
        self.scheduler = GridRefreshScheduler(
            source=source,
            cache=self.cache,
            sizes=cache_sizes,
            mode=cache_mode,
            scan_cap=scan_cap,
            warmup_seconds=warmup_seconds,
            refresh_seconds=refresh_seconds,
            progress_every=progress_every,
            progress_interval=progress_interval,
        )

    @property
    def computing(self) -> bool:
        return self.scheduler.computing

    def get_cached_grid(self, size: float) -> CachedGrid:
        """
        Look up the cached grid for a cell size.

        Never starts a computation; when nothing is cached the caller
        learns whether one is currently running.
        """
        key = size_key(size)
        snapshot = self.cache.get(key)
        return CachedGrid(
            size_key=key,
            cached=snapshot is not None,
            computing=self.scheduler.computing,
            snapshot=snapshot,
        )

    async def compute_bounded_grid(self, params: BoundedGridParams) -> BoundedGridResult:
        return await compute_bounded_grid(
            self.source,
            params,
            progress_every=self.progress_every,
            progress_interval=self.progress_interval,
        )

    async def refresh(self, size: float) -> bool:
        return await self.scheduler.attempt_compute(size)

    def start(self) -> None:
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
