"""
OpenSearch client wrapper for the note similarity index.
"""

import time
from typing import Any, Dict, Iterable, List, Optional

import boto3
from opensearchpy import AWSV4SignerAuth, OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import OpenSearchException

from .config import OpenSearchConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


class OpenSearchClient:
    """OpenSearch k-NN index over note embeddings, partitioned by user_id."""

    # Seconds to wait for a freshly created serverless index to accept writes
    index_sync_wait = 15

    def __init__(self, config: OpenSearchConfig):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
        """
        self.config = config
        self.index_name = config.index_name

        # Get AWS credentials and create auth
        credentials = boto3.Session().get_credentials()
        auth = AWSV4SignerAuth(credentials, config.region, 'aoss')
        # Parse endpoint to get host and port
        endpoint = config.endpoint
        if '://' in endpoint:
            # Remove protocol if present
            endpoint = endpoint.split('://', 1)[1]

        self.client = OpenSearch(hosts=[{
            'host': endpoint,
            'port': config.port
        }],
                                 http_auth=auth,
                                 use_ssl=True,
                                 verify_certs=True,
                                 connection_class=RequestsHttpConnection)

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def _index_body(self) -> Dict[str, Any]:
        return {
            'mappings': {
                'properties': {
                    'id': {
                        'type': 'keyword'
                    },
                    'user_id': {
                        'type': 'keyword'
                    },
                    'text': {
                        'type': 'text'
                    },
                    'day_name': {
                        'type': 'keyword'
                    },
                    'embedding': {
                        'type': 'knn_vector',
                        'dimension': self.config.dimension,
                        'method': {
                            'name': 'hnsw',
                            'space_type': 'cosinesimil',
                            'engine': 'nmslib'
                        }
                    },
                    'created_at': {
                        'type': 'date'
                    }
                }
            },
            'settings': {
                'index': {
                    'knn': True,
                    'knn.algo_param.ef_search': 100
                }
            }
        }

    def create_index_if_not_exists(self) -> str:
        """
        Create the notes index if it doesn't exist.

        Returns:
            'exists', 'created' or 'failed'
        """
        try:
            if self.client.indices.exists(index=self.index_name):
                logger.debug(f'Index {self.index_name} already exists')
                return 'exists'

            response = self.client.indices.create(index=self.index_name, body=self._index_body())
            logger.info(f'Created index {self.index_name}')
            if response.get('acknowledged', False):
                logger.info(f'Waiting {self.index_sync_wait}s for index {self.index_name} sync-up...')
                time.sleep(self.index_sync_wait)
                return 'created'
            else:
                return 'failed'
        except OpenSearchException as e:
            logger.error(f'Error creating index {self.index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')
        except Exception as e:
            logger.error(f'Unexpected error creating index {self.index_name}: {e}')
            raise OpenSearchError(f'Unexpected error creating index: {e}')

    def index_note(self, document: Dict[str, Any]) -> bool:
        """
        Index a note document (id, user_id, text, day_name, embedding, created_at).

        Returns:
            True if indexing was successful, False otherwise
        """
        try:
            response = self.client.index(index=self.index_name, body=document)

            success = response.get('result') in ['created', 'updated']
            if success:
                logger.debug(f"Indexed note {document.get('id')} in {self.index_name}")
            else:
                logger.warning(f'Unexpected result indexing note: {response}')

            return success

        except OpenSearchException as e:
            logger.error(f'Error indexing note: {e}')
            raise OpenSearchError(f'Failed to index note: {e}')
        except Exception as e:
            logger.error(f'Unexpected error indexing note: {e}')
            raise OpenSearchError(f'Unexpected error indexing note: {e}')

    def vector_search(self,
                      query_vector: List[float],
                      user_id: str,
                      top_k: int = 10,
                      exclude_ids: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
        """
        Top-k nearest notes to a vector, restricted to one user.

        Args:
            query_vector: Query vector for similarity search
            user_id: User ID to filter results
            top_k: Number of results to return
            exclude_ids: Note IDs that must not be returned

        Returns:
            List of {'id', 'score', 'document'} dicts in descending score order
        """
        search_body = {
            'size': top_k,
            'query': {
                'bool': {
                    'must': [{
                        'knn': {
                            'embedding': {
                                'vector': query_vector,
                                'k': top_k
                            }
                        }
                    }],
                    'filter': [{
                        'term': {
                            'user_id': user_id
                        }
                    }]
                }
            },
            '_source': {
                'excludes': ['embedding']  # Don't return embedding in results
            }
        }

        exclude_ids = list(exclude_ids or [])
        if exclude_ids:
            search_body['query']['bool']['must_not'] = [{'terms': {'id': exclude_ids}}]

        try:
            response = self.client.search(index=self.index_name, body=search_body)
        except OpenSearchException as e:
            logger.error(f'Error performing vector search: {e}')
            raise OpenSearchError(f'Vector search failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in vector search: {e}')
            raise OpenSearchError(f'Unexpected error in vector search: {e}')

        results = []
        for hit in response['hits']['hits']:
            document = hit['_source']
            # Post-filter guards against engines that apply the filter approximately
            if document.get('user_id') != user_id or document.get('id') in exclude_ids:
                continue
            results.append({'id': document.get('id', hit['_id']), 'score': hit['_score'], 'document': document})

        logger.debug(f'Vector search returned {len(results)} results for user {user_id}')
        return results

    def cleanup(self) -> bool:
        """
        Drop the notes index.

        Returns:
            True if cleanup was successful
        """
        try:
            if self.client.indices.exists(index=self.index_name):
                self.client.indices.delete(index=self.index_name)
                logger.info(f'✓ Deleted notes index: {self.index_name}')
            else:
                logger.info(f'Notes index {self.index_name} does not exist')

            return True

        except OpenSearchException as e:
            logger.error(f'Error during OpenSearch cleanup: {e}')
            raise OpenSearchError(f'Failed to cleanup OpenSearch: {e}')
        except Exception as e:
            logger.error(f'Unexpected error during OpenSearch cleanup: {e}')
            raise OpenSearchError(f'Unexpected error during OpenSearch cleanup: {e}')

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.index_name)

            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
