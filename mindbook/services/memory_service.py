"""
Memory Service: note ingestion, question answering and the destructive reset.
"""

import uuid
from typing import List, Optional

from ..models.core import STRATEGY_SIMILARITY, STRATEGY_TEMPORAL, Note, QueryOutcome, RetrievalResult
from ..utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from ..utils.bedrock_llm import BedrockLLM
from ..utils.config import config
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient, NeptuneError
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
from ..utils.timestamp_utils import TimestampLike, to_utc_datetime
from .answer_synthesizer import AnswerSynthesisError, AnswerSynthesizer
from .context_assembler import ContextAssembler
from .date_normalizer import DateNormalizationError, DateNormalizer
from .query_classifier import QueryClassificationError, QueryClassifier
from .relation_builder import RelationBuildError, RelationBuilder
from .similarity_retriever import SimilarityRetrievalError, SimilarityRetriever
from .temporal_hierarchy import TemporalHierarchyError, TemporalHierarchyManager
from .temporal_retriever import TemporalRetrievalError, TemporalRetriever

logger = get_logger(__name__)

DELETE_CONFIRMATION = 'delete'
DELETE_CANCELLED = "Operation cancelled. Please pass 'delete' to confirm data deletion."
DELETE_SUCCESS = 'success'


class MemoryServiceError(Exception):
    """Custom exception for memory service errors."""
    pass


def _require_owner(owner_id: str) -> str:
    if not owner_id or not owner_id.strip():
        raise ValueError('User ID is required')
    return owner_id.strip()


class MemoryService:
    """Orchestrates ingestion into the dual index and retrieval-grounded answering."""

    def __init__(self,
                 neptune: Optional[NeptuneClient] = None,
                 opensearch: Optional[OpenSearchClient] = None,
                 embed: Optional[BedrockEmbed] = None,
                 llm: Optional[BedrockLLM] = None):
        """Initialize the memory service; clients default to the configured AWS services."""
        self.neptune = neptune or NeptuneClient(config.neptune)
        self.opensearch = opensearch or OpenSearchClient(config.opensearch)
        self.embed = embed or BedrockEmbed(config.bedrock_embed)
        self.llm = llm or BedrockLLM(config.bedrock_llm)

        self.normalizer = DateNormalizer(self.llm)
        self.hierarchy = TemporalHierarchyManager(self.neptune)
        self.relations = RelationBuilder(self.neptune, self.opensearch)
        self.classifier = QueryClassifier(self.llm)
        self.temporal = TemporalRetriever(self.neptune)
        self.similarity = SimilarityRetriever(self.neptune, self.opensearch, self.embed)
        self.assembler = ContextAssembler()
        self.synthesizer = AnswerSynthesizer(self.llm, self.assembler)

        self._index_ready = False
        try:
            self._ensure_index()
        except OpenSearchError as e:
            logger.warning(f'Failed to create OpenSearch index: {e}')

        logger.info('Initialized MemoryService')

    def _ensure_index(self) -> None:
        if not self._index_ready:
            self.opensearch.create_index_if_not_exists()
            self._index_ready = True

    def _discard_note_vertex(self, note_id: str) -> None:
        """Remove a note vertex whose storage did not complete."""
        try:
            self.neptune.delete_note_vertex(note_id)
            logger.warning(f'Rolled back note vertex {note_id} after a failed write')
        except NeptuneError as e:
            logger.error(f'Failed to roll back note vertex {note_id}: {e}')

    def add_note(self, text: str, owner_id: str, timestamp: TimestampLike = None) -> str:
        """Normalize, embed, store and link a note.

        Relation building is best effort: its failure is logged and reported
        in the status, but the note is kept. A note whose attach or indexing
        step fails is removed from the graph before the error is raised.

        Args:
            text: Raw note text
            owner_id: User partition
            timestamp: Creation time (defaults to now, UTC)

        Returns:
            Human readable status string

        Raises:
            ValueError: If owner_id is empty
            MemoryServiceError: If normalization, embedding or storage fails
        """
        owner_id = _require_owner(owner_id)
        if not text or not text.strip():
            logger.warning('Empty note text provided')
            return 'Nothing to add: the note is empty.'

        created_at = to_utc_datetime(timestamp)

        try:
            normalized = self.normalizer.normalize(text.strip(), is_query=False, now=created_at)
            embedding = self.embed.embed_document(normalized)

            self._ensure_index()
            day = self.hierarchy.upsert(owner_id, created_at)
            note = Note(id=str(uuid.uuid4()),
                        owner_id=owner_id,
                        text=normalized,
                        day_name=day.day_name,
                        created_at=created_at,
                        embedding=embedding)

            self.neptune.create_note_vertex(note)
            try:
                self.hierarchy.attach(day, note.id)
                indexed = self.opensearch.index_note({
                    'id': note.id,
                    'user_id': note.owner_id,
                    'text': note.text,
                    'day_name': note.day_name,
                    'embedding': note.embedding,
                    'created_at': note.created_at.isoformat()
                })
                if not indexed:
                    raise OpenSearchError(f'Note {note.id} was not indexed')
            except Exception:
                self._discard_note_vertex(note.id)
                raise
            logger.debug(f'Stored note {note.id} under {day.key}')

        except (DateNormalizationError, BedrockEmbedError, TemporalHierarchyError, NeptuneError, OpenSearchError) as e:
            logger.error(f'Service error while adding note: {e}')
            raise MemoryServiceError(f'Note add failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error while adding note: {e}')
            raise MemoryServiceError(f'Note add failed: {e}')

        added = f'Note added on {day.day_name}, {day.month} {day.day}, {day.year}'
        try:
            linked = self.relations.link(note)
        except RelationBuildError as e:
            logger.warning(f'Note {note.id} stored without related links: {e}')
            return f'{added}; related notes could not be linked.'

        return f'{added} and linked to {len(linked)} related notes.'

    def find_similar_notes(self, text: str, owner_id: str, threshold: Optional[float] = None) -> List[RetrievalResult]:
        """Similarity search with related-note expansion.

        Raises:
            ValueError: If owner_id is empty
            MemoryServiceError: If the search fails
        """
        owner_id = _require_owner(owner_id)
        try:
            return self.similarity.search(owner_id, text, threshold)
        except SimilarityRetrievalError as e:
            raise MemoryServiceError(f'Memory search failed: {e}')

    def run_query(self, question: str, owner_id: str, now: TimestampLike = None) -> QueryOutcome:
        """Classify, retrieve, assemble and synthesize an answer.

        Relative dates in the question are resolved first. Temporal questions
        whose period holds no notes fall back to similarity search.

        Raises:
            ValueError: If owner_id is empty
            MemoryServiceError: If classification or any provider call fails
        """
        owner_id = _require_owner(owner_id)

        try:
            current = to_utc_datetime(now)
            question = self.normalizer.normalize(question.strip() if question else '', is_query=True, now=current)
            decision = self.classifier.classify(question, current)

            strategy = STRATEGY_SIMILARITY
            fell_back = False
            results: List[RetrievalResult] = []
            blocks: List[str] = []

            if decision.is_temporal:
                texts = self.temporal.lookup(owner_id, decision.time_constraints)
                if texts:
                    strategy = STRATEGY_TEMPORAL
                    blocks = self.assembler.assemble_texts(texts)
                else:
                    logger.debug(f'No notes in {decision.time_constraints}, falling back to similarity search')
                    fell_back = True

            if strategy == STRATEGY_SIMILARITY:
                results = self.similarity.search(owner_id, decision.processed_query)
                blocks = self.assembler.assemble(results)

            if not blocks:
                logger.debug(f'No memories found for question: {decision.processed_query}')

            answer = self.synthesizer.answer(decision.processed_query or question, blocks)

        except (DateNormalizationError, QueryClassificationError) as e:
            logger.error(f'Query interpretation error: {e}')
            raise MemoryServiceError(f'Query failed: {e}')
        except (TemporalRetrievalError, SimilarityRetrievalError, AnswerSynthesisError) as e:
            logger.error(f'Service error during query: {e}')
            raise MemoryServiceError(f'Query failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error during query: {e}')
            raise MemoryServiceError(f'Query failed: {e}')

        logger.info(f'Answered query for user {owner_id} using {strategy} retrieval '
                    f'({len(blocks)} context blocks{", after fallback" if fell_back else ""})')
        return QueryOutcome(decision=decision,
                            strategy=strategy,
                            fell_back=fell_back,
                            context_blocks=blocks,
                            answer=answer,
                            results=results)

    def query_system(self, question: str, owner_id: str, now: TimestampLike = None) -> str:
        """Answer a question from the owner's stored notes."""
        if not question or not question.strip():
            return 'Please ask a question.'
        return self.run_query(question, owner_id, now).answer

    def delete_all_data(self, confirmation: str) -> str:
        """Drop every vertex, edge and the notes index.

        Only runs when confirmation is 'delete' (any case); anything else
        returns the cancellation message without touching the stores.

        Raises:
            MemoryServiceError: If a store fails during deletion
        """
        if not isinstance(confirmation, str) or confirmation.lower() != DELETE_CONFIRMATION:
            logger.info('Delete-all request cancelled: confirmation mismatch')
            return DELETE_CANCELLED

        try:
            self.neptune.cleanup()
            self.opensearch.cleanup()
        except (NeptuneError, OpenSearchError) as e:
            logger.error(f'Error deleting all data: {e}')
            raise MemoryServiceError(f'Delete all failed: {e}')
        finally:
            self._index_ready = False

        logger.info('Deleted all memory data')
        return DELETE_SUCCESS
