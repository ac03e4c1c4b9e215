"""
Amazon Bedrock text model client: single-turn Converse completions with retry logic.
"""

import random
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import BedrockLLMConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class BedrockLLMError(Exception):
    """Custom exception for Bedrock LLM errors."""
    pass


def read_stream(stream: Optional[Iterable[Dict[str, Any]]]) -> Tuple[str, Dict[str, Any]]:
    """Collect the text deltas and usage metadata of a ConverseStream response."""
    text = ''
    usage: Dict[str, Any] = {}
    for event in stream or []:
        if 'contentBlockDelta' in event:
            text += event['contentBlockDelta']['delta'].get('text', '')
        if 'metadata' in event:
            usage = {**event['metadata'].get('usage', {}), **event['metadata'].get('metrics', {})}
    return text, usage


class BedrockLLM:
    """Amazon Bedrock LLM client, the text model provider for Mindbook."""

    def __init__(self, config: BedrockLLMConfig):
        """
        Initialize Bedrock LLM client.

        Args:
            config: BedrockLLMConfig instance with connection parameters
        """
        self.config = config
        self.model_id = config.model_id

        self.bedrock_runtime = boto3.client(
            'bedrock-runtime',
            region_name=config.region,
            config=BotoConfig(
                connect_timeout=600,
                read_timeout=600,
                retries={'max_attempts': 0}  # We handle retries manually
            ))

        logger.info(f'Initialized Bedrock LLM client with model: {self.model_id}')

    def _backoff(self, attempt: int) -> None:
        # Exponential backoff with jitter
        time.sleep(self.config.retry_delay * (2**attempt) + random.uniform(0, 1))

    def complete(self,
                 system_instruction: str,
                 user_text: str,
                 temperature: Optional[float] = None,
                 prefill: Optional[str] = None,
                 stop_sequences: Optional[List[str]] = None) -> str:
        """
        Single-turn completion: one system instruction, one user message.

        Args:
            system_instruction: System prompt
            user_text: User message text
            temperature: Sampling temperature (uses config default if None)
            prefill: Optional start of the assistant turn (e.g. '```json')
            stop_sequences: Stop sequences for generation

        Returns:
            Completion text (without the prefill)

        Raises:
            BedrockLLMError: If all retry attempts fail
        """
        messages = [{'role': 'user', 'content': [{'text': user_text}]}]
        if prefill:
            messages.append({'role': 'assistant', 'content': [{'text': prefill}]})

        inference_config = {
            'maxTokens': self.config.max_tokens,
            'temperature': self.config.temperature if temperature is None else temperature,
            'stopSequences': stop_sequences or [],
        }

        for attempt in range(self.config.retry_attempts):
            try:
                logger.debug(f'Bedrock LLM request attempt {attempt + 1}/{self.config.retry_attempts}')

                response = self.bedrock_runtime.converse_stream(modelId=self.model_id,
                                                                messages=messages,
                                                                system=[{'text': system_instruction}],
                                                                inferenceConfig=inference_config)
                text, usage = read_stream(response.get('stream'))

                logger.debug(f'Bedrock LLM completion length {len(text)}, usage {usage}')
                return text

            except (ClientError, BotoCoreError) as e:
                logger.warning(f'Bedrock LLM attempt {attempt + 1}/{self.config.retry_attempts} failed: {e}')

                if attempt < self.config.retry_attempts - 1:
                    self._backoff(attempt)
                else:
                    raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts: {e}')

            except Exception as e:
                logger.error(f'Unexpected error in Bedrock LLM: {e}')
                raise BedrockLLMError(f'Unexpected Bedrock LLM error: {e}')

        raise BedrockLLMError(f'Bedrock LLM failed after {self.config.retry_attempts} attempts')

    def health_check(self) -> bool:
        """
        Perform a health check on the Bedrock LLM service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.complete(system_instruction="You are a helpful assistant. Respond with just 'OK'.",
                                     user_text='Hi',
                                     temperature=0.0)
            return len(response.strip()) > 0

        except Exception as e:
            logger.error(f'Bedrock LLM health check failed: {e}')
            return False
