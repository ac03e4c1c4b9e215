"""
Amazon Neptune graph database client using openCypher over the boto3 neptunedata API.

Graph schema (every vertex and edge carries user_id):

    (User)-[HAS_YEAR]->(Year)-[HAS_MONTH]->(Month)-[HAS_DAY]->(Day)-[HAS_NOTE]->(Note)
    (Note)-[RELATED_TO {similarity_score}]->(Note)

Hierarchy vertices and all edges use deterministic ids, so a merge that loses
a race against a concurrent writer is rejected by Neptune and re-run, picking
up the winner's element instead of duplicating it.
"""

import json
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..models.core import Note, TimeConstraints
from .config import NeptuneConfig
from .logging_config import get_logger

logger = get_logger(__name__)

USER = 'User'
YEAR = 'Year'
MONTH = 'Month'
DAY = 'Day'
NOTE = 'Note'

HAS_YEAR = 'HAS_YEAR'
HAS_MONTH = 'HAS_MONTH'
HAS_DAY = 'HAS_DAY'
HAS_NOTE = 'HAS_NOTE'
RELATED_TO = 'RELATED_TO'

# Neptune error codes raised when a concurrent writer created the same element first
CONCURRENT_WRITE_CODES = ('ConcurrentModificationException', 'ConstraintViolationException')

MERGE_VERTEX_QUERY = """
MERGE (v:{label} {{`~id`: $id}})
ON CREATE SET v += $properties
RETURN id(v) AS id
"""

MERGE_EDGE_QUERY = """
MATCH (a), (b)
WHERE id(a) = $from_id AND id(b) = $to_id AND a.user_id = $user_id AND b.user_id = $user_id
MERGE (a)-[r:{label} {{`~id`: $edge_id}}]->(b)
ON CREATE SET r += $properties
RETURN id(r) AS id
"""

CREATE_NOTE_QUERY = f"""
CREATE (n:{NOTE} {{`~id`: $id, user_id: $user_id, text: $text, day_name: $day_name, created_at: $created_at}})
RETURN id(n) AS id
"""

NOTES_BY_PERIOD_QUERY = f"""
MATCH (u:{USER})-[:{HAS_YEAR}]->(y:{YEAR})-[:{HAS_MONTH}]->(m:{MONTH})-[:{HAS_DAY}]->(d:{DAY})-[:{HAS_NOTE}]->(n:{NOTE})
WHERE {{conditions}}
RETURN DISTINCT id(n) AS id, n.user_id AS user_id, n.text AS text, n.day_name AS day_name, n.created_at AS created_at
ORDER BY created_at
"""

RELATED_NOTES_QUERY = f"""
MATCH (n:{NOTE})-[r:{RELATED_TO}]->(m:{NOTE})
WHERE id(n) = $note_id AND n.user_id = $user_id AND r.user_id = $user_id AND m.user_id = $user_id
RETURN id(m) AS id, m.text AS text, r.similarity_score AS score
ORDER BY score DESC
"""

DELETE_NOTE_QUERY = f"""
MATCH (n:{NOTE})
WHERE id(n) = $id
DETACH DELETE n
"""

DELETE_ALL_QUERY = """
MATCH (n)
DETACH DELETE n
"""


def user_vertex_id(user_id: str) -> str:
    return f'user:{user_id}'


def year_vertex_id(user_id: str, year: int) -> str:
    return f'{user_vertex_id(user_id)}/{year}'


def month_vertex_id(user_id: str, year: int, month: str) -> str:
    return f'{year_vertex_id(user_id, year)}/{month}'


def day_vertex_id(user_id: str, year: int, month: str, day: int) -> str:
    return f'{month_vertex_id(user_id, year, month)}/{day}'


def edge_id(label: str, from_id: str, to_id: str) -> str:
    return f'{label}:{from_id}->{to_id}'


class NeptuneError(Exception):
    """Custom exception for Neptune errors."""
    pass


def _error_code(error: Exception) -> str:
    if isinstance(error, ClientError):
        return error.response.get('Error', {}).get('Code', '')
    return ''


def _is_concurrent_write(error: Exception) -> bool:
    return _error_code(error) in CONCURRENT_WRITE_CODES


def wrap_neptune_errors(func):
    """Decorator turning driver failures into NeptuneError."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except NeptuneError:
            raise
        except (ClientError, BotoCoreError) as e:
            logger.error(f'Error in {func.__name__}: {e}')
            raise NeptuneError(f'Failed to {func.__name__}: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in {func.__name__}: {e}')
            raise NeptuneError(f'Failed to {func.__name__}: {e}')

    return wrapper


class NeptuneClient:
    """Amazon Neptune client holding the temporal hierarchy and the note relation graph."""

    def __init__(self, config: NeptuneConfig):
        """
        Initialize Neptune client; requests are signed with SigV4 by boto3.

        Args:
            config: NeptuneConfig instance with connection parameters
        """
        self.config = config
        self.client = None
        self._connect()

        logger.info(f'Connected to Neptune at {config.endpoint}')

    def _connect(self):
        """Create the neptunedata client for the cluster endpoint."""
        endpoint = self.config.endpoint
        if '://' in endpoint:
            endpoint = endpoint.split('://', 1)[1]

        self.client = boto3.client('neptunedata',
                                   region_name=self.config.region,
                                   endpoint_url=f'https://{endpoint}:{self.config.port}',
                                   config=BotoConfig(retries={'max_attempts': 0}))  # Merge retries are handled manually

    def _execute(self, query: str, parameters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        request = {'openCypherQuery': query}
        if parameters:
            request['parameters'] = json.dumps(parameters)
        response = self.client.execute_open_cypher_query(**request)
        return response.get('results', [])

    def _run_merge(self, query: str, parameters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Run a MERGE, re-running once if a concurrent writer won the insert."""
        try:
            return self._execute(query, parameters)
        except ClientError as e:
            if not _is_concurrent_write(e):
                raise
            logger.debug(f'Concurrent insert detected, re-running merge: {e}')
            return self._execute(query, parameters)

    @wrap_neptune_errors
    def merge_vertex(self, vertex_id: str, label: str, properties: Dict[str, Any]) -> str:
        """
        Create a vertex with a fixed id unless it already exists.

        Args:
            vertex_id: Deterministic vertex id
            label: Vertex label
            properties: Properties set only when the vertex is created

        Returns:
            The vertex id
        """
        self._run_merge(MERGE_VERTEX_QUERY.format(label=label), {'id': vertex_id, 'properties': properties})
        logger.debug(f'Merged {label} vertex: {vertex_id}')
        return vertex_id

    @wrap_neptune_errors
    def merge_edge(self,
                   label: str,
                   from_id: str,
                   to_id: str,
                   user_id: str,
                   properties: Optional[Dict[str, Any]] = None) -> bool:
        """
        Create an edge between two vertices of the same user unless it already exists.

        Existing edges are returned untouched, including their properties.

        Returns:
            True if the edge exists after the call, False if an endpoint is
            missing or belongs to another user
        """
        parameters = {
            'from_id': from_id,
            'to_id': to_id,
            'user_id': user_id,
            'edge_id': edge_id(label, from_id, to_id),
            'properties': {**(properties or {}), 'user_id': user_id}
        }
        result = self._run_merge(MERGE_EDGE_QUERY.format(label=label), parameters)
        if not result:
            logger.debug(f'No {label} edge merged between {from_id} and {to_id} for user {user_id}')
            return False
        logger.debug(f'Merged {label} edge: {from_id} -> {to_id}')
        return True

    @wrap_neptune_errors
    def create_note_vertex(self, note: Note) -> str:
        """
        Create a note vertex.

        Args:
            note: Note to persist (embedding is stored in the similarity index only)

        Returns:
            The note id
        """
        self._execute(CREATE_NOTE_QUERY, {
            'id': note.id,
            'user_id': note.owner_id,
            'text': note.text,
            'day_name': note.day_name,
            'created_at': int(note.created_at.timestamp())
        })
        logger.debug(f'Created note vertex: {note.id}')
        return note.id

    @wrap_neptune_errors
    def delete_note_vertex(self, note_id: str) -> None:
        """Remove a note vertex together with its HAS_NOTE and RELATED_TO edges."""
        self._execute(DELETE_NOTE_QUERY, {'id': note_id})
        logger.debug(f'Deleted note vertex: {note_id}')

    def _notes_by_period_query(self, user_id: str, constraints: TimeConstraints) -> Tuple[str, Dict[str, Any]]:
        conditions = ['id(u) = $user_vertex', 'n.user_id = $user_id']
        parameters = {'user_vertex': user_vertex_id(user_id), 'user_id': user_id}
        if constraints.year is not None:
            conditions.append('y.value = $year')
            parameters['year'] = int(constraints.year)
        if constraints.month is not None:
            conditions.append('m.value = $month')
            parameters['month'] = constraints.month
        if constraints.day is not None:
            conditions.append('d.value = $day')
            parameters['day'] = int(constraints.day)
        return NOTES_BY_PERIOD_QUERY.format(conditions=' AND '.join(conditions)), parameters

    @wrap_neptune_errors
    def get_notes_by_period(self, user_id: str, constraints: TimeConstraints) -> List[Note]:
        """
        Walk a user's hierarchy down to the Day vertices matching the constraints.

        Levels whose constraint is None fan out over every child.

        Returns:
            Notes attached to the matching days, oldest first
        """
        query, parameters = self._notes_by_period_query(user_id, constraints)
        notes = []
        for row in self._execute(query, parameters):
            notes.append(
                Note(id=str(row['id']),
                     owner_id=row.get('user_id', ''),
                     text=row.get('text', ''),
                     day_name=row.get('day_name', ''),
                     created_at=datetime.fromtimestamp(int(row.get('created_at') or 0), tz=timezone.utc)))

        logger.debug(f'Found {len(notes)} notes for user {user_id} in period {constraints}')
        return notes

    @wrap_neptune_errors
    def get_related_notes(self, user_id: str, note_id: str) -> List[Tuple[str, str]]:
        """
        Notes reachable over one outgoing RELATED_TO edge.

        Returns:
            (note_id, text) tuples, highest similarity score first
        """
        rows = self._execute(RELATED_NOTES_QUERY, {'note_id': note_id, 'user_id': user_id})
        related = [(str(row['id']), row.get('text', '')) for row in rows]
        logger.debug(f'Found {len(related)} related notes for note {note_id}')
        return related

    @wrap_neptune_errors
    def cleanup(self) -> bool:
        """
        Clean up all data from Neptune (vertices and edges).

        Returns:
            True if cleanup was successful
        """
        logger.info('Deleting all vertices and edges from Neptune...')
        self._execute(DELETE_ALL_QUERY)
        logger.info('✓ All vertices and edges deleted')

        return True

    @wrap_neptune_errors
    def health_check(self) -> bool:
        """
        Perform a health check on the Neptune service.

        Returns:
            True if service is healthy
        """
        status = self.client.get_engine_status()
        return status.get('status') == 'healthy'
