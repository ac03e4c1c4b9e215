"""
Health check utilities for the application.
"""

from typing import Any, Callable, Dict

from .bedrock_embed import BedrockEmbed
from .bedrock_llm import BedrockLLM
from .config import config
from .logging_config import get_logger
from .neptune_client import NeptuneClient
from .opensearch_client import OpenSearchClient

logger = get_logger(__name__)


def _component_status(service: str, details: Dict[str, Any], factory: Callable[[], Any]) -> Dict[str, Any]:
    """Instantiate a client and run its health_check, never raising."""
    try:
        healthy = factory().health_check()
        return {'healthy': healthy, 'service': service, **details}
    except Exception as e:
        return {'healthy': False, 'service': service, 'error': str(e)}


def get_health_status() -> Dict[str, Any]:
    """Get detailed health status of all components.

    Returns:
        Dictionary with health status of each component
    """
    return {
        'bedrock_llm': _component_status('Amazon Bedrock LLM', {'model': config.bedrock_llm.model_id},
                                         lambda: BedrockLLM(config.bedrock_llm)),
        'bedrock_embed': _component_status('Amazon Bedrock Embed', {'model': config.bedrock_embed.model_id},
                                           lambda: BedrockEmbed(config.bedrock_embed)),
        'neptune': _component_status('Amazon Neptune', {'endpoint': config.neptune.endpoint},
                                     lambda: NeptuneClient(config.neptune)),
        'opensearch': _component_status('Amazon OpenSearch', {'endpoint': config.opensearch.endpoint},
                                        lambda: OpenSearchClient(config.opensearch)),
    }


def check_health() -> bool:
    """Check the health of all system components.

    Returns:
        True if all components are healthy, False otherwise
    """
    try:
        health_status = get_health_status()

        all_healthy = all(status.get('healthy', False) for status in health_status.values())

        if all_healthy:
            logger.info('All system components are healthy')
        else:
            unhealthy = [name for name, status in health_status.items() if not status.get('healthy', False)]
            logger.warning(f'Unhealthy components: {", ".join(unhealthy)}')

        return all_healthy

    except Exception as e:
        logger.error(f'Health check failed: {e}')
        return False
