"""
Exceptions raised by the grid engine.
"""


class GridError(Exception):
    """Base class for grid engine failures."""


class SourceUnavailableError(GridError):
    """
    The record store cannot be reached.

    Raised when the store is not connected yet or the connection drops
    mid-stream. Distinct from an empty result, which is just an empty
    stream.
    """
