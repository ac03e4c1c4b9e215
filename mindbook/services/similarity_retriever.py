"""
Similarity Retriever: top-k semantic matches expanded through RELATED_TO links.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..models.core import Note, RetrievalResult
from ..utils.bedrock_embed import BedrockEmbed, BedrockEmbedError
from ..utils.config import RetrievalConfig, config
from ..utils.logging_config import get_logger
from ..utils.neptune_client import NeptuneClient, NeptuneError
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError

logger = get_logger(__name__)


class SimilarityRetrievalError(Exception):
    """Custom exception for similarity retrieval errors."""
    pass


def _parse_created_at(value: Any) -> datetime:
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.fromtimestamp(0, tz=timezone.utc)


def note_from_document(document: Dict[str, Any]) -> Note:
    """Build a Note from a similarity index document (embedding excluded)."""
    return Note(id=document.get('id', ''),
                owner_id=document.get('user_id', ''),
                text=document.get('text', ''),
                day_name=document.get('day_name', ''),
                created_at=_parse_created_at(document.get('created_at')))


class SimilarityRetriever:
    """Semantic search over one owner's notes."""

    def __init__(self,
                 neptune: Optional[NeptuneClient] = None,
                 opensearch: Optional[OpenSearchClient] = None,
                 embed: Optional[BedrockEmbed] = None,
                 retrieval_config: Optional[RetrievalConfig] = None):
        self.neptune = neptune or NeptuneClient(config.neptune)
        self.opensearch = opensearch or OpenSearchClient(config.opensearch)
        self.embed = embed or BedrockEmbed(config.bedrock_embed)
        self.config = retrieval_config or config.retrieval

    def search(self, owner_id: str, query_text: str, threshold: Optional[float] = None) -> List[RetrievalResult]:
        """Find notes similar to query_text with their related notes.

        Args:
            owner_id: User partition to search
            query_text: Question or text to match
            threshold: Minimum similarity score (defaults to the configured 0.6)

        Returns:
            RetrievalResults sorted by score descending; a note that is a
            primary hit never appears among any hit's related notes

        Raises:
            SimilarityRetrievalError: If embedding, index or graph calls fail
        """
        if not query_text or not query_text.strip():
            return []

        threshold = self.config.similarity_threshold if threshold is None else threshold

        try:
            query_vector = self.embed.embed_query(query_text)
            hits = self.opensearch.vector_search(query_vector=query_vector, user_id=owner_id, top_k=self.config.top_k)

            primary = []
            for hit in hits:
                score = float(hit['score'])
                if score < threshold or hit['document'].get('user_id') != owner_id:
                    continue
                primary.append((note_from_document(hit['document']), score))

            primary_ids = {note.id for note, _ in primary}

            results = []
            for note, score in primary:
                related_texts = []
                for related_id, related_text in self.neptune.get_related_notes(owner_id, note.id):
                    if related_id in primary_ids or related_text in related_texts:
                        continue
                    related_texts.append(related_text)
                results.append(RetrievalResult(note=note, score=score, related_notes=related_texts))

        except (BedrockEmbedError, OpenSearchError, NeptuneError) as e:
            logger.error(f'Similarity search failed for user {owner_id}: {e}')
            raise SimilarityRetrievalError(f'Similarity search failed: {e}')

        # Equal scores: older notes first
        results = sorted(results, key=lambda result: (-result.score, result.note.created_at))
        logger.debug(f'Similarity search returned {len(results)} notes for user {owner_id}')
        return results
