"""
Filter metadata and latitude richness endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..database import get_db
from ..grid import parse_finite
from ..services.occurrence_service import OccurrenceService
from ..schemas import LatitudeRichnessResponse, TaxonomyValuesResponse, YearRangeResponse
from .grid import taxonomy_filters

settings = get_settings()
router = APIRouter()


async def get_occurrence_service(db: AsyncSession = Depends(get_db)) -> OccurrenceService:
    """Dependency for occurrence service."""
    return OccurrenceService(db)


@router.get("/taxonomy/values", response_model=TaxonomyValuesResponse)
async def get_taxonomy_values(
    level: str = Query(..., description="Taxonomy level, e.g. 'genus'"),
    filters: dict = Depends(taxonomy_filters),
    service: OccurrenceService = Depends(get_occurrence_service),
):
    """
    List distinct values of a taxonomy level.

    Only filters on the levels above ``level`` are applied.
    """
    level = level.strip()
    values = await service.taxonomy_values(level, filters)
    return TaxonomyValuesResponse(level=level, values=values)


@router.get("/years/minmax", response_model=YearRangeResponse)
async def get_year_range(
    filters: dict = Depends(taxonomy_filters),
    service: OccurrenceService = Depends(get_occurrence_service),
):
    """Get the min/max observation year for the current taxonomy filters."""
    return YearRangeResponse(**await service.year_range(filters))


@router.get("/correlation/latitude-richness", response_model=LatitudeRichnessResponse)
async def get_latitude_richness(
    band_size: Optional[str] = Query(None, alias="bandSize", description="Band height in degrees"),
    service: OccurrenceService = Depends(get_occurrence_service),
):
    """
    Count distinct species per latitude band over a random sample.

    A missing or unusable ``bandSize`` means the configured default.
    """
    size = parse_finite(band_size)
    if size is None or size <= 0:
        size = settings.correlation_band_size
    sample = settings.correlation_sample_size or None

    bands = await service.latitude_richness(band_size=size, sample=sample)
    return LatitudeRichnessResponse(bands=bands, band_size=size, sampled=sample)
