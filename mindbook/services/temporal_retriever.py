"""
Temporal Retriever: notes attached to the Day vertices matching explicit time constraints.
"""

from typing import List, Optional

from ..models.core import Note, TimeConstraints
from ..utils.config import config
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient, NeptuneError

logger = get_logger(__name__)


class TemporalRetrievalError(Exception):
    """Custom exception for temporal retrieval errors."""
    pass


class TemporalRetriever:
    """Walk User -> Year -> Month -> Day -> Note, filtering only the constrained levels."""

    def __init__(self, neptune: Optional[NeptuneClient] = None):
        self.neptune = neptune or NeptuneClient(config.neptune)

    def lookup_notes(self, owner_id: str, constraints: TimeConstraints) -> List[Note]:
        """Notes for one owner inside the constrained period, oldest first.

        An empty list means nothing matched; callers fall back to similarity search.

        Raises:
            TemporalRetrievalError: If the graph store fails
        """
        try:
            notes = self.neptune.get_notes_by_period(owner_id, constraints)
        except NeptuneError as e:
            logger.error(f'Temporal lookup failed for user {owner_id}: {e}')
            raise TemporalRetrievalError(f'Temporal lookup failed: {e}')

        # The store already filters by owner; never leak another partition
        notes = [note for note in notes if note.owner_id == owner_id]
        logger.debug(f'Temporal lookup {constraints} returned {len(notes)} notes for user {owner_id}')
        return notes

    def lookup(self, owner_id: str, constraints: TimeConstraints) -> List[str]:
        """Note texts for one owner inside the constrained period."""
        return [note.text for note in self.lookup_notes(owner_id, constraints)]
