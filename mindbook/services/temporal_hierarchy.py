"""
Temporal Hierarchy Manager: keeps the User -> Year -> Month -> Day chain for each note.
"""

from typing import Optional

from ..models.core import DayNodeRef
from ..utils.config import config
from ..utils.logging_config import get_logger
from ..utils.neptune_client import (DAY, HAS_DAY, HAS_MONTH, HAS_NOTE, HAS_YEAR, MONTH, USER, YEAR, NeptuneClient,
                                    NeptuneError, day_vertex_id, month_vertex_id, user_vertex_id, year_vertex_id)
from ..utils.timestamp_utils import DAY_NAMES, TimestampLike, month_name, to_utc_datetime

logger = get_logger(__name__)


class TemporalHierarchyError(Exception):
    """Custom exception for temporal hierarchy errors."""
    pass


def day_ref_for(owner_id: str, timestamp: TimestampLike = None) -> DayNodeRef:
    """Derive the Day node reference for a moment, in UTC."""
    moment = to_utc_datetime(timestamp)
    month = month_name(moment.month)
    return DayNodeRef(key=day_vertex_id(owner_id, moment.year, month, moment.day),
                      owner_id=owner_id,
                      year=moment.year,
                      month=month,
                      day=moment.day,
                      day_name=DAY_NAMES[moment.weekday()])


class TemporalHierarchyManager:
    """Merge-only writer for the per-user calendar hierarchy."""

    def __init__(self, neptune: Optional[NeptuneClient] = None):
        self.neptune = neptune or NeptuneClient(config.neptune)

    def upsert(self, owner_id: str, timestamp: TimestampLike = None) -> DayNodeRef:
        """Ensure User, Year, Month and Day vertices and their edges exist.

        Args:
            owner_id: User partition
            timestamp: Moment the note was created (defaults to now)

        Returns:
            Reference to the Day vertex

        Raises:
            TemporalHierarchyError: If the graph store fails
        """
        ref = day_ref_for(owner_id, timestamp)
        user_id = user_vertex_id(owner_id)
        year_id = year_vertex_id(owner_id, ref.year)
        month_id = month_vertex_id(owner_id, ref.year, ref.month)

        try:
            self.neptune.merge_vertex(user_id, USER, {'user_id': owner_id})
            self.neptune.merge_vertex(year_id, YEAR, {'user_id': owner_id, 'value': ref.year})
            self.neptune.merge_vertex(month_id, MONTH, {'user_id': owner_id, 'value': ref.month})
            self.neptune.merge_vertex(ref.key, DAY, {'user_id': owner_id, 'value': ref.day})

            self.neptune.merge_edge(HAS_YEAR, user_id, year_id, owner_id)
            self.neptune.merge_edge(HAS_MONTH, year_id, month_id, owner_id)
            self.neptune.merge_edge(HAS_DAY, month_id, ref.key, owner_id)
        except NeptuneError as e:
            logger.error(f'Failed to merge hierarchy for user {owner_id}: {e}')
            raise TemporalHierarchyError(f'Hierarchy upsert failed: {e}')

        logger.debug(f'Hierarchy ready: {ref.key} ({ref.day_name})')
        return ref

    def attach(self, day: DayNodeRef, note_id: str) -> None:
        """Link a note vertex to its Day vertex.

        Raises:
            TemporalHierarchyError: If the note could not be linked
        """
        try:
            linked = self.neptune.merge_edge(HAS_NOTE, day.key, note_id, day.owner_id)
        except NeptuneError as e:
            logger.error(f'Failed to attach note {note_id} to {day.key}: {e}')
            raise TemporalHierarchyError(f'Note attach failed: {e}')

        if not linked:
            raise TemporalHierarchyError(f'Note {note_id} and day {day.key} do not share owner {day.owner_id}')
