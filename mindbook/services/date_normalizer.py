"""
Date Normalizer: rewrites relative date phrases into absolute dates.
"""

from datetime import datetime
from typing import Optional

from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.config import config
from ..utils.json_utils import load_json_object
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import TimestampLike, describe_now, to_utc_datetime

logger = get_logger(__name__)

NOTE_INSTRUCTION = """Current date is {now}.

You rewrite personal notes before they are stored.
1. Convert every relative date reference in the note (today, yesterday, tomorrow, last Sunday, next Monday, next week, ...) to the actual calendar date it refers to, counted from the current date.
2. Add 'on [date]' where the note describes something happening at a relative time, written like 'on January 5, 2024'.
3. Do NOT change any other wording, facts, names or punctuation.
4. If the note contains no relative date reference, return it exactly as it is.

Respond with JSON:
```json
{{"text": "the converted note"}}
```"""  # noqa: E501

QUERY_INSTRUCTION = """Current date is {now}.

You rewrite questions about a person's stored notes.
1. Convert every relative date reference in the question (today, yesterday, tomorrow, last Sunday, next Monday, last week, ...) to the actual calendar date, counted from the current date, written like 'January 5, 2024'.
2. Do NOT change any other wording.
3. If the question contains no relative date reference, return it exactly as it is.

Respond with JSON:
```json
{{"text": "the converted question"}}
```"""  # noqa: E501


class DateNormalizationError(Exception):
    """Raised when relative dates cannot be normalized."""
    pass


class DateNormalizer:
    """Resolve relative date expressions against the current date using the text model."""

    def __init__(self, llm: Optional[BedrockLLM] = None, temperature: Optional[float] = None):
        self.llm = llm or BedrockLLM(config.bedrock_llm)
        self.temperature = config.prompt.normalizer_temperature if temperature is None else temperature

    def normalize(self, text: str, is_query: bool = False, now: TimestampLike = None) -> str:
        """Rewrite relative dates in text into absolute dates.

        Args:
            text: Note text or question
            is_query: True for question phrasing, False for note phrasing
            now: Current time (defaults to the wall clock, UTC)

        Returns:
            The rewritten text

        Raises:
            DateNormalizationError: If the model fails or returns unusable output
        """
        if not text or not text.strip():
            return text

        current: datetime = to_utc_datetime(now)
        template = QUERY_INSTRUCTION if is_query else NOTE_INSTRUCTION
        instruction = template.format(now=describe_now(current))
        kind = 'query' if is_query else 'note'

        try:
            response = self.llm.complete(system_instruction=instruction,
                                         user_text=text,
                                         temperature=self.temperature,
                                         prefill='```json',
                                         stop_sequences=['```'])
        except BedrockLLMError as e:
            logger.error(f'LLM error normalizing {kind} dates: {e}')
            raise DateNormalizationError(f'Date normalization failed: {e}')

        try:
            normalized = load_json_object(response).get('text')
        except ValueError as e:
            logger.error(f'Unparseable date normalization output: {response!r}')
            raise DateNormalizationError(f'Date normalization returned invalid output: {e}')

        if not isinstance(normalized, str) or not normalized.strip():
            logger.error(f'Date normalization output has no text: {response!r}')
            raise DateNormalizationError('Date normalization returned no text')

        normalized = normalized.strip()
        if normalized != text.strip():
            logger.debug(f'Normalized {kind}: {text!r} -> {normalized!r}')
        return normalized
