"""
Service layer for OccurMap business logic.
"""

from .occurrence_service import OccurrenceService
from .occurrence_source import OccurrenceSource

__all__ = ["OccurrenceService", "OccurrenceSource"]
