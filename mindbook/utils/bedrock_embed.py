"""
Amazon Bedrock embedding client wrapper with retry logic and error handling.
"""

import json
import random
import time
from typing import List

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockEmbedConfig
from .logging_config import get_logger

logger = get_logger(__name__)

# Cohere accepts at most this many texts per invoke_model call
COHERE_BATCH_SIZE = 96


class BedrockEmbedError(Exception):
    """Custom exception for Bedrock embedding errors."""
    pass


class BedrockEmbed:
    """Amazon Bedrock embedding client with retry logic and error handling."""

    def __init__(self, config: BedrockEmbedConfig):
        """
        Initialize Bedrock embedding client.

        Args:
            config: BedrockEmbedConfig instance with connection parameters
        """
        self.config = config
        self.model_id = config.model_id
        self.output_embedding_length = config.dimension

        # Create Bedrock runtime client
        self.bedrock = boto3.client(service_name='bedrock-runtime', region_name=config.region)

        logger.info(f'Initialized Bedrock Embed client with model: {self.model_id}')

    def _call_with_retry(self, data: dict) -> dict:
        """
        Make a Bedrock API call with retry logic.

        Args:
            data: Request data dictionary

        Returns:
            Response dictionary from Bedrock API

        Raises:
            BedrockEmbedError: If all retry attempts fail
        """
        body = json.dumps(data)

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock Embed request attempt {attempt + 1}/{self.config.retry_attempts}')

                response = self.bedrock.invoke_model(body=body,
                                                     modelId=self.model_id,
                                                     accept='application/json',
                                                     contentType='application/json')

                result = json.loads(response.get('body').read())
                logger.debug('Bedrock Embed request successful')
                return result

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock Embed attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    # Exponential backoff with jitter
                    delay = self.config.retry_delay * (2**attempt) + random.uniform(0, 1)
                    time.sleep(delay)
                else:
                    raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock Embed: {e}')
                raise BedrockEmbedError(f'Unexpected Bedrock Embed error: {e}')

        raise BedrockEmbedError(f'Bedrock Embed failed after {self.config.retry_attempts} attempts')

    def _check_dimension(self, vector: List[float]) -> List[float]:
        if len(vector) != self.output_embedding_length:
            raise BedrockEmbedError(f'Expected {self.output_embedding_length}-dimensional embedding, got {len(vector)}')
        return vector

    def embed(self, texts: List[str], input_type: str = 'search_document') -> List[List[float]]:
        """
        Generate one embedding per text, preserving order.

        Args:
            texts: Texts to embed
            input_type: Cohere input type ('search_document' or 'search_query')

        Returns:
            List of embedding vectors, same length and order as texts

        Raises:
            BedrockEmbedError: If embedding generation fails
        """
        if not texts:
            return []

        if any(not text or not text.strip() for text in texts):
            raise BedrockEmbedError('Cannot embed empty text')

        try:
            if 'titan' in self.model_id.lower():
                # Titan embeds a single input per call
                vectors = []
                for text in texts:
                    data = {'inputText': text, 'dimensions': self.output_embedding_length}
                    response = self._call_with_retry(data)
                    vectors.append(self._check_dimension(response.get('embedding', [])))
                return vectors

            elif 'cohere' in self.model_id.lower():
                if self.output_embedding_length != 1024:
                    raise BedrockEmbedError(f'Cohere models only support 1024 dimensions, got {self.output_embedding_length}')

                vectors = []
                for start in range(0, len(texts), COHERE_BATCH_SIZE):
                    batch = texts[start:start + COHERE_BATCH_SIZE]
                    response = self._call_with_retry({'input_type': input_type, 'texts': batch})
                    embeddings = response.get('embeddings', [])
                    if len(embeddings) != len(batch):
                        raise BedrockEmbedError(f'Expected {len(batch)} embeddings, got {len(embeddings)}')
                    vectors.extend(self._check_dimension(vector) for vector in embeddings)
                return vectors

            else:
                raise BedrockEmbedError(f'Unsupported embedding model: {self.model_id}')

        except BedrockEmbedError:
            raise
        except Exception as e:
            logger.error(f'Error generating embeddings: {e}')
            raise BedrockEmbedError(f'Embedding failed: {e}')

    def embed_document(self, text: str) -> List[float]:
        """Embed a note text for indexing."""
        return self.embed([text], input_type='search_document')[0]

    def embed_query(self, text: str) -> List[float]:
        """Embed a question for similarity search."""
        return self.embed([text], input_type='search_query')[0]

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock embedding service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            test_embedding = self.embed_document('test')
            return len(test_embedding) == self.output_embedding_length

        except Exception as e:
            logger.error(f'Bedrock Embed health check failed: {e}')
            return False
