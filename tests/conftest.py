"""
Shared pytest fixtures for Mindbook tests.

Provides in-memory stand-ins for Bedrock, Neptune and OpenSearch so the
orchestration logic runs without AWS.
"""

import json
import math
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from mindbook.models.core import Note, TimeConstraints
from mindbook.services.answer_synthesizer import NO_CONTEXT
from mindbook.services.memory_service import MemoryService
from mindbook.utils.neptune_client import (HAS_DAY, HAS_MONTH, HAS_NOTE, HAS_YEAR, NOTE, RELATED_TO, NeptuneError,
                                           edge_id, user_vertex_id)
from mindbook.utils.opensearch_client import OpenSearchError

VOCABULARY = ['alice', 'coffee', 'bob', 'tennis', 'dentist', 'paris', 'trip', 'book', 'dinner', 'work']


def cosine(a: List[float], b: List[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class MockEmbedding:
    """
    Deterministic embedding provider.

    Texts registered in `vectors` get that exact vector; anything else gets a
    bag-of-words vector over VOCABULARY (plus a bias dimension so it is never zero).
    """

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None):
        self.vectors = dict(vectors or {})
        self.calls: List[str] = []

    def _vector(self, text: str) -> List[float]:
        if text in self.vectors:
            return list(self.vectors[text])
        lowered = text.lower()
        return [float(lowered.count(word)) for word in VOCABULARY] + [0.1]

    def embed(self, texts: List[str], input_type: str = 'search_document') -> List[List[float]]:
        self.calls.extend(texts)
        return [self._vector(text) for text in texts]

    def embed_document(self, text: str) -> List[float]:
        return self.embed([text])[0]

    def embed_query(self, text: str) -> List[float]:
        return self.embed([text], input_type='search_query')[0]


class MockLLM:
    """
    Scripted text model routed on the system instruction.

    - note/query normalization: `rewrites` maps input -> output (default: unchanged)
    - classification: `classifications` maps question -> payload dict or raw string
      (default: similarity with null constraints)
    - answers: echo the context, or say nothing is remembered when empty
    """

    def __init__(self):
        self.rewrites: Dict[str, str] = {}
        self.classifications: Dict[str, Any] = {}
        self.answer_fn: Optional[Callable[[str], str]] = None
        self.calls: List[Dict[str, Any]] = []

    def complete(self, system_instruction: str, user_text: str, temperature: float, prefill=None, stop_sequences=None) -> str:
        self.calls.append({'system': system_instruction, 'user': user_text, 'temperature': temperature, 'prefill': prefill})

        if 'You rewrite personal notes' in system_instruction or 'You rewrite questions' in system_instruction:
            return json.dumps({'text': self.rewrites.get(user_text, user_text)})

        if 'You route questions' in system_instruction:
            payload = self.classifications.get(user_text, {
                'processed_query': user_text,
                'query_type': 'similarity',
                'time_constraints': {'year': None, 'month': None, 'day': None}
            })
            return payload if isinstance(payload, str) else '\n' + json.dumps(payload) + '\n'

        if self.answer_fn is not None:
            return self.answer_fn(user_text)
        if NO_CONTEXT in user_text:
            return "No, I don't remember you telling me about that."
        return 'Yes, I remember that. ' + user_text

    def calls_for(self, marker: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if marker in call['system']]


class MockNeptune:
    """In-memory graph honouring NeptuneClient's merge and traversal contract."""

    def __init__(self):
        self.vertices: Dict[str, Dict[str, Any]] = {}
        self.edges: Dict[str, Dict[str, Any]] = {}
        self.fail_merge_edge_label: Optional[str] = None
        self.fail_delete = False
        self.deleted: List[str] = []
        self.cleanup_calls = 0

    def merge_vertex(self, vertex_id: str, label: str, properties: Dict[str, Any]) -> str:
        if vertex_id not in self.vertices:
            self.vertices[vertex_id] = {'label': label, **properties}
        return vertex_id

    def merge_edge(self, label, from_id, to_id, user_id, properties=None) -> bool:
        if label == self.fail_merge_edge_label:
            raise NeptuneError(f'Failed to merge_edge: {label} unavailable')
        source = self.vertices.get(from_id)
        target = self.vertices.get(to_id)
        if not source or not target or source.get('user_id') != user_id or target.get('user_id') != user_id:
            return False
        key = edge_id(label, from_id, to_id)
        if key not in self.edges:
            self.edges[key] = {'label': label, 'from': from_id, 'to': to_id, 'user_id': user_id, **(properties or {})}
        return True

    def create_note_vertex(self, note: Note) -> str:
        self.vertices[note.id] = {
            'label': NOTE,
            'user_id': note.owner_id,
            'text': note.text,
            'day_name': note.day_name,
            'created_at': note.created_at
        }
        return note.id

    def delete_note_vertex(self, note_id: str) -> None:
        if self.fail_delete:
            raise NeptuneError(f'Failed to delete_note_vertex: {note_id}')
        self.deleted.append(note_id)
        self.vertices.pop(note_id, None)
        for key in [key for key, edge in self.edges.items() if note_id in (edge['from'], edge['to'])]:
            del self.edges[key]

    def _out(self, vertex_ids: List[str], label: str) -> List[str]:
        found = []
        for vertex_id in vertex_ids:
            for edge in self.edges.values():
                if edge['label'] == label and edge['from'] == vertex_id and edge['to'] not in found:
                    found.append(edge['to'])
        return found

    def _filter(self, vertex_ids: List[str], value: Any) -> List[str]:
        if value is None:
            return vertex_ids
        return [vertex_id for vertex_id in vertex_ids if self.vertices[vertex_id].get('value') == value]

    def get_notes_by_period(self, user_id: str, constraints: TimeConstraints) -> List[Note]:
        level = [user_vertex_id(user_id)] if user_vertex_id(user_id) in self.vertices else []
        level = self._filter(self._out(level, HAS_YEAR), None if constraints.year is None else int(constraints.year))
        level = self._filter(self._out(level, HAS_MONTH), constraints.month)
        level = self._filter(self._out(level, HAS_DAY), None if constraints.day is None else int(constraints.day))
        note_ids = [note_id for note_id in self._out(level, HAS_NOTE) if self.vertices[note_id]['user_id'] == user_id]
        notes = [
            Note(id=note_id,
                 owner_id=self.vertices[note_id]['user_id'],
                 text=self.vertices[note_id]['text'],
                 day_name=self.vertices[note_id]['day_name'],
                 created_at=self.vertices[note_id]['created_at']) for note_id in note_ids
        ]
        return sorted(notes, key=lambda note: note.created_at)

    def get_related_notes(self, user_id: str, note_id: str) -> List[Tuple[str, str]]:
        edges = [
            edge for edge in self.edges.values()
            if edge['label'] == RELATED_TO and edge['from'] == note_id and edge['user_id'] == user_id
        ]
        edges.sort(key=lambda edge: edge['similarity_score'], reverse=True)
        return [(edge['to'], self.vertices[edge['to']]['text']) for edge in edges]

    def cleanup(self) -> bool:
        self.cleanup_calls += 1
        self.vertices.clear()
        self.edges.clear()
        return True

    # Helpers for assertions
    def labelled(self, label: str) -> List[str]:
        return [vertex_id for vertex_id, vertex in self.vertices.items() if vertex['label'] == label]

    def related_edges(self) -> List[Dict[str, Any]]:
        return [edge for edge in self.edges.values() if edge['label'] == RELATED_TO]


class MockOpenSearch:
    """In-memory k-NN index scoring by cosine similarity."""

    def __init__(self):
        self.documents: List[Dict[str, Any]] = []
        self.index_exists = False
        self.create_calls = 0
        self.cleanup_calls = 0
        self.fail_search = False

    def create_index_if_not_exists(self) -> str:
        self.create_calls += 1
        if self.index_exists:
            return 'exists'
        self.index_exists = True
        return 'created'

    def index_note(self, document: Dict[str, Any]) -> bool:
        self.documents.append(dict(document))
        return True

    def vector_search(self, query_vector, user_id, top_k=10, exclude_ids=None) -> List[Dict[str, Any]]:
        if self.fail_search:
            raise OpenSearchError('Vector search failed: index not ready')
        exclude = set(exclude_ids or [])
        scored = []
        for document in self.documents:
            if document['user_id'] != user_id or document['id'] in exclude:
                continue
            score = max(0.0, cosine(query_vector, document['embedding']))
            source = {key: value for key, value in document.items() if key != 'embedding'}
            scored.append({'id': document['id'], 'score': score, 'document': source})
        scored.sort(key=lambda result: result['score'], reverse=True)
        return scored[:top_k]

    def cleanup(self) -> bool:
        self.cleanup_calls += 1
        self.documents.clear()
        self.index_exists = False
        return True


@pytest.fixture
def mock_embedding():
    return MockEmbedding()


@pytest.fixture
def mock_llm():
    return MockLLM()


@pytest.fixture
def mock_neptune():
    return MockNeptune()


@pytest.fixture
def mock_opensearch():
    return MockOpenSearch()


@pytest.fixture
def service(mock_neptune, mock_opensearch, mock_embedding, mock_llm):
    """MemoryService wired to in-memory collaborators."""
    return MemoryService(neptune=mock_neptune, opensearch=mock_opensearch, embed=mock_embedding, llm=mock_llm)
