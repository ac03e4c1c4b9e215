"""
JSON utilities for parsing structured LLM responses.
"""

import json
from typing import Any, Dict


def clean_json_response(response: str) -> str:
    """Clean LLM response by removing code block markers.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned JSON string
    """
    response = response.strip()

    # Remove ```json and ``` markers
    if response.startswith('```json'):
        response = response[7:]
    elif response.startswith('```'):
        response = response[3:]

    if response.endswith('```'):
        response = response[:-3]

    return response.strip()


def load_json_object(response: str) -> Dict[str, Any]:
    """Parse an LLM response that must contain a single JSON object.

    Raises:
        ValueError: If the response is not valid JSON or not an object
    """
    try:
        data = json.loads(clean_json_response(response))
    except json.JSONDecodeError as e:
        raise ValueError(f'Response is not valid JSON: {e}')

    if not isinstance(data, dict):
        raise ValueError(f'Expected a JSON object, got {type(data).__name__}')

    return data
