"""
Background refresh of the global grid cache.

One delayed warm-up run at startup, then one run per period. Every run
goes through ``attempt_compute``, which is guarded by a single in-flight
flag shared by all cell sizes: while any grid is being computed, further
triggers are dropped rather than queued.
"""

import asyncio
import logging
from typing import Iterable, Optional, Set

from .aggregator import GridMode, Hasher, aggregate_stream
from .cache import GridCache
from .discretizer import size_key
from .errors import SourceUnavailableError
from .hashing import identity_hash
from .source import RecordQuery, RecordSource

logger = logging.getLogger(__name__)

LOG_LABEL = "grid-cache"


class GridRefreshScheduler:
    """
    Drives the streaming aggregator into the cache.

    States are Idle and Computing. The transition into Computing happens
    synchronously (no await between the check and the set), so on a
    single event loop two triggers can never both start a run.
    """

    def __init__(
        self,
        source: RecordSource,
        cache: GridCache,
        sizes: Iterable[float] = (0.25,),
        mode: GridMode = GridMode.COUNT,
        scan_cap: int = 35_000_000,
        warmup_seconds: float = 5.0,
        refresh_seconds: float = 3600.0,
        progress_every: int = 100_000,
        progress_interval: float = 3.0,
        hasher: Hasher = identity_hash,
    ):
        self.source = source
        self.cache = cache
        self.sizes = tuple(float(s) for s in sizes)
        self.mode = GridMode(mode)
        self.scan_cap = scan_cap
        self.warmup_seconds = warmup_seconds
        self.refresh_seconds = refresh_seconds
        self.progress_every = progress_every
        self.progress_interval = progress_interval
        self.hasher = hasher

        self._computing = False
        self._warmup_task: Optional[asyncio.Task] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._runs: Set[asyncio.Task] = set()

    @property
    def computing(self) -> bool:
        return self._computing

    @property
    def running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    async def attempt_compute(self, size: float) -> bool:
        """
        Compute the grid for one cell size and store it in the cache.

        Returns:
            True if a new snapshot was stored; False if skipped or failed
        """
        key = size_key(size)
        if self._computing:
            logger.debug(f"[{LOG_LABEL}] computation already in progress, skip sizeDeg={key}")
            return False

        self._computing = True
        logger.info(
            f"[{LOG_LABEL}] starting global computation sizeDeg={key} "
            f"cap={self.scan_cap} mode={self.mode.value}"
        )
        try:
            query = RecordQuery(include_identity=self.mode is GridMode.RICHNESS)
            snapshot = await aggregate_stream(
                self.source.stream(query),
                cell_size=float(size),
                scan_cap=self.scan_cap,
                mode=self.mode,
                hasher=self.hasher,
                label=LOG_LABEL,
                progress_every=self.progress_every,
                progress_interval=self.progress_interval,
            )
            self.cache.put(key, snapshot)
            return True
        except SourceUnavailableError as e:
            logger.warning(f"[{LOG_LABEL}] record source unavailable, computation postponed: {e}")
            return False
        except Exception:
            logger.exception(f"[{LOG_LABEL}] computation failed sizeDeg={key}")
            return False
        finally:
            self._computing = False

    async def refresh_all(self) -> None:
        """Refresh every configured cell size, one after the other."""
        for size in self.sizes:
            await self.attempt_compute(size)

    def start(self) -> None:
        """Schedule the warm-up run and the periodic timer on the running loop."""
        if self.running:
            return
        self._warmup_task = asyncio.create_task(self._warmup())
        self._timer_task = asyncio.create_task(self._tick_forever())
        logger.info(
            f"[{LOG_LABEL}] scheduler started warmup={self.warmup_seconds}s "
            f"period={self.refresh_seconds}s sizes={[size_key(s) for s in self.sizes]}"
        )

    async def stop(self) -> None:
        """Cancel pending timers and any run they started."""
        tasks = [t for t in (self._warmup_task, self._timer_task) if t is not None]
        tasks.extend(self._runs)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._warmup_task = None
        self._timer_task = None
        self._runs.clear()

    async def _warmup(self) -> None:
        await asyncio.sleep(self.warmup_seconds)
        await self.refresh_all()

    async def _tick_forever(self) -> None:
        # Ticks do not wait for the previous run; a busy tick just skips.
        while True:
            await asyncio.sleep(self.refresh_seconds)
            run = asyncio.create_task(self.refresh_all())
            self._runs.add(run)
            run.add_done_callback(self._runs.discard)
