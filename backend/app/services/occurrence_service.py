"""
Filter metadata queries over the occurrence table.

These feed the filter controls that drive on-demand grid queries.
"""

from typing import Mapping, Optional

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Occurrence, TAXONOMY_COLUMNS, TAXONOMY_LEVELS


class OccurrenceService:
    """Distinct taxonomy values, year bounds and latitude richness."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def taxonomy_values(
        self,
        level: str,
        filters: Optional[Mapping[str, str]] = None,
    ) -> list[str]:
        """
        Distinct values of one taxonomy level.

        Only filters on levels above ``level`` are applied, so choosing a
        genus narrows the species list but not the other way round.

        Raises:
            ValueError: If ``level`` is not a known taxonomy level
        """
        if level not in TAXONOMY_COLUMNS:
            raise ValueError(
                f"Invalid level {level!r}. Allowed: {', '.join(TAXONOMY_LEVELS)}"
            )

        column = TAXONOMY_COLUMNS[level]
        stmt = select(column).distinct()
        upper_levels = TAXONOMY_LEVELS[:TAXONOMY_LEVELS.index(level)]
        for name in upper_levels:
            value = (filters or {}).get(name)
            if value:
                stmt = stmt.where(TAXONOMY_COLUMNS[name] == str(value))

        result = await self.db.execute(stmt)
        values = [str(v) for v in result.scalars().all() if v is not None and str(v).strip()]
        values.sort(key=str.casefold)
        return values

    async def year_range(
        self,
        filters: Optional[Mapping[str, str]] = None,
    ) -> dict:
        """Min and max ``year`` among records matching the taxonomy filters."""
        stmt = select(func.min(Occurrence.year), func.max(Occurrence.year))
        for name, column in TAXONOMY_COLUMNS.items():
            value = (filters or {}).get(name)
            if value:
                stmt = stmt.where(column == str(value))

        row = (await self.db.execute(stmt)).one_or_none()
        if row is None or row[0] is None or row[1] is None:
            return {"min_year": None, "max_year": None}
        return {"min_year": int(row[0]), "max_year": int(row[1])}

    async def latitude_richness(
        self,
        band_size: float = 5.0,
        sample: Optional[int] = 200_000,
    ) -> list[dict]:
        """
        Distinct scientific names per latitude band.

        Band ``b`` covers latitudes ``[b, b + band_size)``. Records without
        a latitude or a name are left out. With ``sample`` set, only that
        many randomly chosen records are looked at; ``None`` or 0 scans
        the whole table.

        Returns:
            ``[{"latitude": band start, "richness": n}]`` ordered southwards first

        Raises:
            ValueError: If ``band_size`` is not positive
        """
        if not band_size or band_size <= 0:
            raise ValueError(f"band_size must be positive, got {band_size!r}")

        lat = Occurrence.decimal_latitude
        name = Occurrence.scientific_name
        rows = select(lat.label("latitude"), name.label("name")).where(
            lat.is_not(None),
            name.is_not(None),
            func.trim(name) != "",
        )
        if sample:
            rows = rows.order_by(func.random()).limit(sample)
        rows = rows.subquery("sampled")

        band = (func.floor(rows.c.latitude / band_size) * band_size).label("band")
        stmt = (
            select(band, func.count(distinct(rows.c.name)).label("richness"))
            .group_by(band)
            .order_by(band)
        )

        result = await self.db.execute(stmt)
        return [
            {"latitude": float(row[0]), "richness": int(row[1])}
            for row in result.all()
        ]
