"""
Grid aggregation endpoints.
"""

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ..config import get_settings
from ..grid import BoundedGridParams, GridEngine, parse_finite
from ..schemas import BoundedGridResponse, CachedGridResponse

settings = get_settings()
router = APIRouter()
logger = logging.getLogger(__name__)

T = TypeVar("T")

DISCONNECT_POLL_SECONDS = 1.0


def get_grid_engine(request: Request) -> GridEngine:
    """Dependency returning the process-wide grid engine."""
    return request.app.state.grid_engine


def taxonomy_filters(
    kingdom: Optional[str] = Query(None),
    phylum: Optional[str] = Query(None),
    class_: Optional[str] = Query(None, alias="class"),
    order: Optional[str] = Query(None),
    family: Optional[str] = Query(None),
    genus: Optional[str] = Query(None),
    species: Optional[str] = Query(None),
    scientific_name: Optional[str] = Query(None, alias="scientificName"),
) -> dict[str, str]:
    """Collect taxonomy equality filters under their Darwin Core names."""
    values = {
        "kingdom": kingdom,
        "phylum": phylum,
        "class": class_,
        "order": order,
        "family": family,
        "genus": genus,
        "species": species,
        "scientificName": scientific_name,
    }
    return {k: v for k, v in values.items() if v}


async def run_until_disconnected(request: Request, work: Awaitable[T]) -> T:
    """
    Await ``work`` while watching for the client going away.

    If the client disconnects first, the work is cancelled so the
    underlying record stream is closed instead of scanning to the end.
    """
    task = asyncio.ensure_future(work)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info("Client disconnected, cancelling grid computation")
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                raise HTTPException(status_code=499, detail="Client closed request")
    finally:
        if not task.done():
            task.cancel()


@router.get("/cached", response_model=CachedGridResponse)
async def get_cached_grid(
    size_deg: Optional[str] = Query(None, alias="sizeDeg", description="Cell size in degrees"),
    engine: GridEngine = Depends(get_grid_engine),
):
    """
    Return the pre-computed global grid for a cell size.

    Never starts a computation. When nothing is cached yet the response
    says whether a background computation is currently running. A missing
    or unusable ``sizeDeg`` means the first configured cache size.
    """
    size = parse_finite(size_deg)
    if size is None or size <= 0:
        size = settings.grid_cache_sizes[0]
    return CachedGridResponse.from_cached(engine.get_cached_grid(size))


# Numeric params arrive as raw strings; BoundedGridParams.from_raw falls
# back to defaults instead of failing on values it cannot parse.
@router.get("", response_model=BoundedGridResponse)
async def get_bounded_grid(
    request: Request,
    south: Optional[str] = Query(None, description="Southern edge (latitude)"),
    west: Optional[str] = Query(None, description="Western edge (longitude)"),
    north: Optional[str] = Query(None, description="Northern edge (latitude)"),
    east: Optional[str] = Query(None, description="Eastern edge (longitude)"),
    size_deg: Optional[str] = Query(None, alias="sizeDeg", description="Cell size in degrees"),
    max_docs: Optional[str] = Query(None, alias="maxDocs", description="Maximum records to scan"),
    year_min: Optional[str] = Query(None, alias="yearMin"),
    year_max: Optional[str] = Query(None, alias="yearMax"),
    filters: dict = Depends(taxonomy_filters),
    engine: GridEngine = Depends(get_grid_engine),
):
    """
    Count matching records per cell inside a viewport.

    Computed on every call and never cached. Out-of-range sizes are
    clamped, and malformed bounding boxes are ignored rather than
    rejected. ``capped`` in the response means the scan stopped at
    ``maxDocs`` and counts are lower bounds.
    """
    params = BoundedGridParams.from_raw(
        south=south,
        west=west,
        north=north,
        east=east,
        cell_size=size_deg,
        scan_cap=max_docs,
        equals=filters,
        ranges={"year": (year_min, year_max)},
        default_cell_size=settings.grid_bounded_default_size,
        min_cell_size=settings.grid_min_size,
        max_cell_size=settings.grid_max_size,
        default_scan_cap=settings.grid_scan_cap,
    )
    result = await run_until_disconnected(request, engine.compute_bounded_grid(params))
    return BoundedGridResponse.from_result(result)
