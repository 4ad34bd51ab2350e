"""
Fixed-size degree grid discretization.

Cells live in a flat equirectangular grid anchored at (-90, -180). A cell
of size ``s`` with key ``(row, col)`` covers the half-open rectangle
``[-90 + row*s, -90 + (row+1)*s) x [-180 + col*s, -180 + (col+1)*s)``.

Coordinates outside [-90, 90] x [-180, 180] are not rejected here; they
simply produce keys outside the nominal range.
"""

import math
from dataclasses import dataclass
from typing import List, Tuple

# (row, col)
CellKey = Tuple[int, int]


@dataclass(frozen=True)
class CellBounds:
    """Rectangular extent of a single grid cell."""
    south: float
    west: float
    north: float
    east: float

    def to_pairs(self) -> List[List[float]]:
        """Corner pairs as ``[[south, west], [north, east]]``."""
        return [[self.south, self.west], [self.north, self.east]]


def cell_key(lat: float, lng: float, size: float) -> CellKey:
    """
    Map a coordinate pair to the key of the cell containing it.

    Args:
        lat: Latitude in degrees
        lng: Longitude in degrees
        size: Cell edge length in degrees, must be > 0

    Returns:
        (row, col) integer pair
    """
    return (
        math.floor((lat + 90) / size),
        math.floor((lng + 180) / size),
    )


def cell_bounds(key: CellKey, size: float) -> CellBounds:
    """Reconstruct the extent of the cell identified by ``key``."""
    row, col = key
    south = -90 + row * size
    west = -180 + col * size
    return CellBounds(
        south=south,
        west=west,
        north=south + size,
        east=west + size,
    )


def format_cell_key(key: CellKey) -> str:
    return f"{key[0]}:{key[1]}"

