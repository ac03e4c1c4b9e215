"""
MCP Interface Layer using fastmcp for the personal memory store.
"""
from typing import Any, Dict, List

from fastmcp import FastMCP

from mindbook.services.memory_service import MemoryService, MemoryServiceError
from mindbook.utils.config import config
from mindbook.utils.health_check import get_health_status
from mindbook.utils.logging_config import get_logger

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Mindbook Memory')
memory_service = MemoryService()


@mcp.tool()
def add_note(text: str, user_id: str) -> str:
    """Store a note in the user's memory.

    Args:
        text: Note text; relative dates are resolved against today
        user_id: User ID

    Returns:
        Status message
    """
    try:
        return memory_service.add_note(text, user_id)
    except MemoryServiceError as e:
        logger.error(f'Memory service error in MCP add_note: {e}')
        raise Exception(f'Adding note failed: {e}')


@mcp.tool()
def query_system(question: str, user_id: str) -> str:
    """Answer a question from the user's stored notes.

    Args:
        question: Natural language question
        user_id: User ID

    Returns:
        Answer text
    """
    try:
        return memory_service.query_system(question, user_id)
    except MemoryServiceError as e:
        logger.error(f'Memory service error in MCP query_system: {e}')
        raise Exception(f'Query failed: {e}')


@mcp.tool()
def find_similar_notes(text: str, user_id: str, threshold: float = 0.6) -> List[Dict[str, Any]]:
    """Search the user's notes by meaning.

    Args:
        text: Text to match
        user_id: User ID
        threshold: Minimum similarity score (default: 0.6)

    Returns:
        List of {'text', 'score', 'day_name', 'related_notes'} dicts, best match first
    """
    try:
        results = memory_service.find_similar_notes(text, user_id, threshold)
    except MemoryServiceError as e:
        logger.error(f'Memory service error in MCP find_similar_notes: {e}')
        raise Exception(f'Memory search failed: {e}')

    return [{
        'text': result.note.text,
        'score': result.score,
        'day_name': result.note.day_name,
        'related_notes': result.related_notes
    } for result in results]


@mcp.tool()
def delete_all_data(confirmation: str) -> str:
    """Delete every stored note for every user. Pass 'delete' to confirm.

    Args:
        confirmation: Must be 'delete' (any case)

    Returns:
        'success' or a cancellation message
    """
    try:
        return memory_service.delete_all_data(confirmation)
    except MemoryServiceError as e:
        logger.error(f'Memory service error in MCP delete_all_data: {e}')
        raise Exception(f'Delete failed: {e}')


@mcp.tool()
def health() -> Dict[str, Any]:
    """Health status of every backing service."""
    return get_health_status()


if __name__ == '__main__':
    mcp.run(transport=config.mcp.transport, host=config.mcp.host, port=config.mcp.port)
