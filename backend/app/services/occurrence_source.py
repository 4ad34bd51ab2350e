"""
PostgreSQL-backed record stream for the grid engine.

Rows are pulled through a server-side cursor in batches of
``batch_size``, so the whole occurrence table (tens of millions of rows)
is never materialized in memory.
"""

import logging
from typing import AsyncIterator, Optional

from sqlalchemy import Select, select
from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..grid.errors import SourceUnavailableError
from ..grid.source import GridRecord, RecordQuery
from ..models import Occurrence, RANGE_COLUMNS, TAXONOMY_COLUMNS

logger = logging.getLogger(__name__)

# Errors meaning "cannot talk to the store", as opposed to a bad query
UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, DisconnectionError, OSError)


def build_stream_statement(query: RecordQuery) -> Select:
    """
    Translate a RecordQuery into a SELECT over the occurrence table.

    Only rows with both coordinates present are selected. Filters on
    fields outside the taxonomy levels and range columns are ignored.
    """
    lat = Occurrence.decimal_latitude
    lng = Occurrence.decimal_longitude

    columns = [lat, lng]
    if query.include_identity:
        columns.append(Occurrence.scientific_name)

    stmt = select(*columns).where(lat.is_not(None), lng.is_not(None))

    for name, value in query.equals.items():
        column = TAXONOMY_COLUMNS.get(name)
        if column is None:
            logger.debug(f"Ignoring unknown equality filter {name!r}")
            continue
        stmt = stmt.where(column == value)

    for name, (low, high) in query.ranges.items():
        column = RANGE_COLUMNS.get(name)
        if column is None:
            logger.debug(f"Ignoring unknown range filter {name!r}")
            continue
        if low is not None:
            stmt = stmt.where(column >= low)
        if high is not None:
            stmt = stmt.where(column <= high)

    if query.bbox is not None:
        stmt = stmt.where(
            lat.between(query.bbox.south, query.bbox.north),
            lng.between(query.bbox.west, query.bbox.east),
        )

    return stmt


class OccurrenceSource:
    """
    Streams GridRecords from the occurrence table.

    Implements the grid engine's RecordSource protocol.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker],
        batch_size: int = 5000,
    ):
        """
        Args:
            session_factory: Async session factory; None means the store
                is not configured and every stream fails as unavailable
            batch_size: Rows fetched per round trip
        """
        self.session_factory = session_factory
        self.batch_size = max(int(batch_size), 1)

    async def stream(self, query: RecordQuery) -> AsyncIterator[GridRecord]:
        if self.session_factory is None:
            raise SourceUnavailableError("Record store is not configured")

        stmt = build_stream_statement(query).execution_options(yield_per=self.batch_size)
        include_identity = query.include_identity

        try:
            async with self.session_factory() as session:
                result = await session.stream(stmt)
                async for row in result:
                    yield GridRecord(
                        latitude=row[0],
                        longitude=row[1],
                        identity=row[2] if include_identity else None,
                    )
        except UNAVAILABLE_ERRORS as e:
            raise SourceUnavailableError(f"Record store unavailable: {e}") from e
