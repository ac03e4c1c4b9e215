"""
Query Classifier: decides between temporal lookup and similarity search for a question.

The text model proposes a decision; everything it returns is validated here
before any retrieval strategy is chosen. Invalid output is an error, never a
default guess.
"""

from datetime import date, datetime
from typing import Any, Dict, Optional

from ..models.core import QUERY_TYPE_GENERAL, QUERY_TYPE_SIMILARITY, QUERY_TYPES, QueryDecision, TimeConstraints
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError
from ..utils.config import config
from ..utils.json_utils import load_json_object
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import TimestampLike, describe_now, month_name, month_number, to_utc_datetime

logger = get_logger(__name__)

CLASSIFIER_INSTRUCTION = """Current date is {now}.

You route questions about a person's stored notes. Notes are indexed by the year, month and day they were written.

Steps:
1. Rewrite every relative date reference in the question (today, yesterday, last Sunday, last month, ...) to the actual calendar date counted from the current date. Keep all other wording.
2. Set "query_type" to "general" ONLY if the question refers to a specific time period that can be resolved to a year, month and/or day (e.g. "what did I do on January 5, 2024", "what happened in March 2023"). Otherwise set it to "similarity".
3. For "general" questions fill only the time fields needed to pin the period down; leave the others null. A question about a whole month leaves "day" null, a question about a whole year leaves "month" and "day" null.
4. Questions about the future can have no notes yet: use "similarity" with all time fields null.
5. Questions without any time reference use "similarity" with all time fields null.

Field formats: "year" is four digits ("2024"), "month" is the full English month name ("January"), "day" is the day of the month without leading zero ("5").

Respond with JSON:
```json
{{
    "processed_query": "question with absolute dates",
    "query_type": "general" or "similarity",
    "time_constraints": {{"year": "2024" or null, "month": "January" or null, "day": "5" or null}}
}}
```"""  # noqa: E501


class QueryClassificationError(Exception):
    """Raised when a question cannot be classified or the model output is invalid."""
    pass


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise QueryClassificationError(f'Invalid time constraint value: {value!r}')
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        value = value.strip()
        return value or None
    raise QueryClassificationError(f'Invalid time constraint value: {value!r}')


def parse_time_constraints(data: Any) -> TimeConstraints:
    """Validate and normalize the time_constraints object of a model response."""
    if data is None:
        return TimeConstraints()
    if not isinstance(data, dict):
        raise QueryClassificationError(f'time_constraints must be an object, got {type(data).__name__}')

    year = _as_text(data.get('year'))
    if year is not None and not (year.isdigit() and len(year) == 4):
        raise QueryClassificationError(f'Invalid year: {year!r}')

    month = _as_text(data.get('month'))
    if month is not None:
        if month.isdigit() and 1 <= int(month) <= 12:
            month = month_name(int(month))
        elif month_number(month) is not None:
            month = month_name(month_number(month))
        else:
            raise QueryClassificationError(f'Invalid month: {month!r}')

    day = _as_text(data.get('day'))
    if day is not None:
        if not day.isdigit() or not 1 <= int(day) <= 31:
            raise QueryClassificationError(f'Invalid day: {day!r}')
        day = str(int(day))

    if year is not None and month is not None and day is not None:
        try:
            date(int(year), month_number(month), int(day))
        except ValueError as e:
            raise QueryClassificationError(f'Invalid date {month} {day}, {year}: {e}')

    return TimeConstraints(year=year, month=month, day=day)


def is_future_period(constraints: TimeConstraints, today: date) -> bool:
    """True when the constrained period starts after today.

    Periods without a year cannot be placed on the calendar and are never future.
    """
    if constraints.year is None:
        return False
    year = int(constraints.year)
    if constraints.month is None:
        return year > today.year
    month = month_number(constraints.month)
    if constraints.day is None:
        return (year, month) > (today.year, today.month)
    return date(year, month, int(constraints.day)) > today


def parse_decision(payload: Dict[str, Any], question: str, now: datetime) -> QueryDecision:
    """Turn a raw model payload into a validated QueryDecision."""
    processed_query = payload.get('processed_query')
    if not isinstance(processed_query, str) or not processed_query.strip():
        raise QueryClassificationError(f'No processed_query for question {question!r}: got {processed_query!r}')
    processed_query = processed_query.strip()

    query_type = payload.get('query_type')
    if query_type not in QUERY_TYPES:
        raise QueryClassificationError(f'Invalid query_type: {query_type!r}')

    constraints = parse_time_constraints(payload.get('time_constraints'))

    if query_type == QUERY_TYPE_GENERAL:
        if constraints.is_empty():
            logger.debug('General query without time constraints, using similarity search')
            query_type = QUERY_TYPE_SIMILARITY
        elif is_future_period(constraints, now.date()):
            logger.debug(f'Question refers to a future period {constraints}, using similarity search')
            query_type = QUERY_TYPE_SIMILARITY
            constraints = TimeConstraints()
    else:
        constraints = TimeConstraints()

    return QueryDecision(processed_query=processed_query, query_type=query_type, time_constraints=constraints)


class QueryClassifier:
    """Classify questions as temporal ('general') or semantic ('similarity')."""

    def __init__(self, llm: Optional[BedrockLLM] = None, temperature: Optional[float] = None):
        self.llm = llm or BedrockLLM(config.bedrock_llm)
        self.temperature = config.prompt.classifier_temperature if temperature is None else temperature

    def classify(self, question: str, now: TimestampLike = None) -> QueryDecision:
        """Classify a question.

        Args:
            question: Raw user question
            now: Current time (defaults to the wall clock, UTC)

        Returns:
            Validated QueryDecision

        Raises:
            QueryClassificationError: If the model fails or returns invalid output
        """
        if not question or not question.strip():
            return QueryDecision(processed_query='', query_type=QUERY_TYPE_SIMILARITY)

        current = to_utc_datetime(now)
        instruction = CLASSIFIER_INSTRUCTION.format(now=describe_now(current))

        try:
            response = self.llm.complete(system_instruction=instruction,
                                         user_text=question,
                                         temperature=self.temperature,
                                         prefill='```json',
                                         stop_sequences=['```'])
        except BedrockLLMError as e:
            logger.error(f'LLM error during query classification: {e}')
            raise QueryClassificationError(f'Query classification failed: {e}')

        try:
            payload = load_json_object(response)
        except ValueError as e:
            logger.error(f'Unparseable classifier output: {response!r}')
            raise QueryClassificationError(f'Query classification returned invalid output: {e}')

        decision = parse_decision(payload, question.strip(), current)
        logger.debug(f'Classified {question!r} as {decision.query_type} {decision.time_constraints}')
        return decision
