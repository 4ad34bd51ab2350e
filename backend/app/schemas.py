"""
Pydantic schemas for API request/response validation.
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from .grid import BoundedGridResult, CachedGrid, GridSnapshot


# --- Grid Cells ---

class GridCell(BaseModel):
    """Single populated cell."""
    key: str = Field(description="Cell key as 'row:col'")
    metric: int = Field(description="Record count or distinct species count")
    bounds: List[List[float]] = Field(description="[[south, west], [north, east]]")


class BoundsOut(BaseModel):
    """Geographic bounding box actually applied to a query."""
    south: float
    west: float
    north: float
    east: float


class CachedGridResponse(BaseModel):
    """
    Response of a cache lookup.

    When ``cached`` is false only ``computing`` and ``size_deg`` are set.
    """
    cached: bool
    computing: bool
    size_deg: float
    mode: Optional[str] = None
    cells: Optional[List[GridCell]] = None
    scanned: Optional[int] = None
    capped: Optional[bool] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_cached(cls, item: CachedGrid) -> "CachedGridResponse":
        if item.snapshot is None:
            return cls(cached=False, computing=item.computing, size_deg=float(item.size_key))
        return cls(
            cached=True,
            computing=item.computing,
            size_deg=float(item.size_key),
            **_snapshot_fields(item.snapshot),
        )


class BoundedGridResponse(BaseModel):
    """Response of an on-demand viewport aggregation."""
    bbox: Optional[BoundsOut] = None
    size_deg: float
    mode: str
    cells: List[GridCell]
    scanned: int
    capped: bool
    updated_at: datetime

    @classmethod
    def from_result(cls, result: BoundedGridResult) -> "BoundedGridResponse":
        bbox = None
        if result.bbox is not None:
            bbox = BoundsOut(
                south=result.bbox.south,
                west=result.bbox.west,
                north=result.bbox.north,
                east=result.bbox.east,
            )
        return cls(
            bbox=bbox,
            size_deg=result.snapshot.cell_size,
            **_snapshot_fields(result.snapshot),
        )


def _snapshot_fields(snapshot: GridSnapshot) -> dict:
    return {
        "mode": snapshot.mode.value,
        "cells": [GridCell(**c.to_dict()) for c in snapshot.cells],
        "scanned": snapshot.scanned,
        "capped": snapshot.capped,
        "updated_at": snapshot.updated_at,
    }


# --- Filters ---

class TaxonomyValuesResponse(BaseModel):
    """Distinct values of one taxonomy level."""
    level: str
    values: List[str]


class YearRangeResponse(BaseModel):
    """Year bounds for the current filters."""
    min_year: Optional[int] = None
    max_year: Optional[int] = None


class LatitudeBand(BaseModel):
    """Distinct species count for one latitude band."""
    latitude: float = Field(description="Southern edge of the band")
    richness: int


class LatitudeRichnessResponse(BaseModel):
    """Species richness by latitude band."""
    bands: List[LatitudeBand]
    band_size: float
    sampled: Optional[int] = Field(None, description="Sample size, null when every record was used")


# --- General Responses ---

class GridStatus(BaseModel):
    """Background grid cache status."""
    scheduler_running: bool
    computing: bool
    cached_sizes: List[str]


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    database: str
    grid: GridStatus


class ErrorResponse(BaseModel):
    """Error response format."""
    detail: str
    error_code: Optional[str] = None
