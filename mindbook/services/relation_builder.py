"""
Relation Builder: links a freshly indexed note to its near neighbours of the same owner.
"""

from typing import List, Optional

from ..models.core import Note
from ..utils.config import RelationConfig, config
from ..utils.logging_config import get_logger
from ..utils.neptune_client import RELATED_TO, NeptuneClient, NeptuneError
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError

logger = get_logger(__name__)


class RelationBuildError(Exception):
    """Raised when related-note edges could not be built."""
    pass


class RelationBuilder:
    """Create scored RELATED_TO edges from a note to similar notes.

    Scores are the similarity index's scores at link time; an existing edge
    keeps its original score when the same pair is linked again.
    """

    def __init__(self,
                 neptune: Optional[NeptuneClient] = None,
                 opensearch: Optional[OpenSearchClient] = None,
                 relation_config: Optional[RelationConfig] = None):
        self.neptune = neptune or NeptuneClient(config.neptune)
        self.opensearch = opensearch or OpenSearchClient(config.opensearch)
        self.config = relation_config or config.relation

    def link(self, note: Note) -> List[str]:
        """Link note to every same-owner neighbour scoring at or above the threshold.

        Args:
            note: Note that is already stored and carries its embedding

        Returns:
            IDs of the neighbours linked from the note

        Raises:
            RelationBuildError: If the index or graph store fails
        """
        if not note.embedding:
            raise RelationBuildError(f'Note {note.id} has no embedding')

        try:
            candidates = self.opensearch.vector_search(query_vector=note.embedding,
                                                       user_id=note.owner_id,
                                                       top_k=self.config.top_n,
                                                       exclude_ids=[note.id])

            linked = []
            for candidate in candidates:
                neighbour_id = candidate['id']
                score = float(candidate['score'])
                if neighbour_id == note.id or score < self.config.similarity_threshold:
                    continue
                if candidate['document'].get('user_id') != note.owner_id:
                    continue

                properties = {'similarity_score': score}
                if not self.neptune.merge_edge(RELATED_TO, note.id, neighbour_id, note.owner_id, properties):
                    logger.debug(f'Skipped relation {note.id} -> {neighbour_id}: endpoint missing')
                    continue
                if self.config.bidirectional:
                    self.neptune.merge_edge(RELATED_TO, neighbour_id, note.id, note.owner_id, properties)
                linked.append(neighbour_id)

        except (OpenSearchError, NeptuneError) as e:
            logger.warning(f'Relation building failed for note {note.id}: {e}')
            raise RelationBuildError(f'Relation building failed: {e}')

        logger.debug(f'Linked note {note.id} to {len(linked)} related notes')
        return linked
