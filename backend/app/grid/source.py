"""
Record stream contract between the grid engine and the record store.
"""

from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, NamedTuple, Optional, Protocol, Tuple, Any


class GridRecord(NamedTuple):
    """One occurrence as seen by the aggregator."""
    latitude: Any
    longitude: Any
    identity: Optional[str] = None


@dataclass(frozen=True)
class BBox:
    """Inclusive geographic rectangle used to restrict a query."""
    south: float
    west: float
    north: float
    east: float

    def contains(self, lat: float, lng: float) -> bool:
        return (self.south <= lat <= self.north and
                self.west <= lng <= self.east)


# field -> (min, max); either end may be None
RangeFilter = Tuple[Optional[float], Optional[float]]


@dataclass(frozen=True)
class RecordQuery:
    """
    What to stream from the record store.

    Attributes:
        equals: Field -> exact value filters
        ranges: Field -> inclusive (min, max) filters
        bbox: Optional coordinate pre-filter
        include_identity: Whether records must carry the identity string
    """
    equals: Dict[str, str] = field(default_factory=dict)
    ranges: Dict[str, RangeFilter] = field(default_factory=dict)
    bbox: Optional[BBox] = None
    include_identity: bool = False


class RecordSource(Protocol):
    """
    Anything that can stream grid records for a query.

    Implementations raise ``SourceUnavailableError`` (from ``stream`` or
    while iterating) when the store cannot be reached.
    """

    def stream(self, query: RecordQuery) -> AsyncIterator[GridRecord]:
        ...
