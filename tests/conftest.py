"""
In-memory fakes of the embedder, vector store and graph store.
"""

import hashlib
import math
import re
from typing import Dict, List, Optional, Tuple

import pytest

from deepmem.models.core import Memory, RelatedMemory, SessionIngestMeta, VectorMatch
from deepmem.utils.errors import UpstreamError

FAKE_DIMENSION = 1024


def _bucket(token: str) -> int:
    return int(hashlib.md5(token.encode('utf-8')).hexdigest(), 16) % FAKE_DIMENSION


def cosine(a: List[float], b: List[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class FakeEmbedder:
    """Bag-of-words embedding: identical texts have similarity 1.0."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.embedded: List[str] = []

    def embed(self, text: str) -> List[float]:
        self.embedded.append(text)
        if self.fail:
            raise UpstreamError('embedder unavailable')
        vector = [0.0] * FAKE_DIMENSION
        for token in re.findall(r'[0-9a-z\u4e00-\u9fff]+', text.lower()):
            vector[_bucket(token)] += 1.0
        return vector

    def embed_query(self, text: str) -> List[float]:
        return self.embed(text)


class FakeVectorStore:

    def __init__(self, fail_upserts: int = 0, fail_search: bool = False, fail_deletes: bool = False):
        self.fail_upserts = fail_upserts
        self.fail_search = fail_search
        self.fail_deletes = fail_deletes
        self.memories: Dict[str, Tuple[Memory, List[float]]] = {}

    def upsert_memory(self, memory: Memory, embedding: List[float]) -> bool:
        if self.fail_upserts > 0:
            self.fail_upserts -= 1
            raise UpstreamError('vector store write failed')
        self.memories[memory.id] = (memory, embedding)
        return True

    def get_memory(self, memory_id: str) -> Optional[Memory]:
        stored = self.memories.get(memory_id)
        return stored[0] if stored else None

    def search(self, vector, namespace, session_id=None, top_k=5, min_score=None) -> List[VectorMatch]:
        if self.fail_search:
            raise UpstreamError('vector search failed')
        matches = []
        for memory, embedding in self.memories.values():
            if memory.namespace != namespace or (session_id and memory.session_id != session_id):
                continue
            score = cosine(vector, embedding)
            if min_score is not None and score < min_score:
                continue
            matches.append(VectorMatch(id=memory.id, score=score, document=memory.to_document()))
        matches.sort(key=lambda match: match.score, reverse=True)
        return matches[:top_k]

    def find_memory_ids(self, namespace, session_id=None, expired_before=None, limit=1000) -> List[str]:
        found = []
        for memory, _ in self.memories.values():
            if memory.namespace != namespace or (session_id and memory.session_id != session_id):
                continue
            if expired_before and not (memory.expires_at and memory.expires_at <= expired_before):
                continue
            found.append(memory.id)
        return found[:limit]

    def delete_memories(self, memory_ids) -> int:
        if self.fail_deletes:
            raise UpstreamError('vector store delete failed')
        return sum(1 for memory_id in memory_ids if self.memories.pop(memory_id, None) is not None)


class FakeGraphStore:

    def __init__(self):
        self.meta: Dict[Tuple[str, str], SessionIngestMeta] = {}
        self.meta_reads = 0
        self.fail_meta_read = False
        self.fail_meta_write = False
        self.fail_session = False
        self.fail_topics = False
        self.sessions = set()
        self.topics = {}
        self.entities = {}
        self.events = {}
        self.memories: Dict[str, Memory] = {}
        self.links: List[tuple] = []
        self.related: List[Tuple[str, str, float]] = []
        self.related_results: List[RelatedMemory] = []
        self.fail_related_query = False

    def get_session_ingest_meta(self, namespace, session_id) -> SessionIngestMeta:
        self.meta_reads += 1
        if self.fail_meta_read:
            raise UpstreamError('graph unavailable')
        return self.meta.get((namespace, session_id), SessionIngestMeta())

    def set_session_ingest_meta(self, namespace, session_id, meta) -> None:
        if self.fail_meta_write:
            raise UpstreamError('graph write failed')
        self.meta[(namespace, session_id)] = meta

    def upsert_session(self, namespace, session_id, summary=None) -> None:
        if self.fail_session:
            raise UpstreamError('session upsert failed')
        self.sessions.add((namespace, session_id))

    def upsert_topic(self, namespace, topic) -> None:
        if self.fail_topics:
            raise UpstreamError('topic upsert failed')
        self.topics[(namespace, topic.name)] = topic

    def upsert_entity(self, namespace, entity) -> None:
        self.entities[(namespace, entity.name)] = entity

    def upsert_event(self, namespace, event) -> str:
        event_id = f'{namespace}::event::{len(self.events)}'
        self.events[event_id] = event
        return event_id

    def upsert_memory(self, memory) -> None:
        self.memories[memory.id] = memory

    def find_memory_ids(self, namespace, session_id=None, expired_before=None, limit=1000) -> List[str]:
        found = []
        for memory in self.memories.values():
            if memory.namespace != namespace or (session_id and memory.session_id != session_id):
                continue
            if expired_before and not (memory.expires_at and memory.expires_at <= expired_before):
                continue
            found.append(memory.id)
        return found[:limit]

    def delete_memories(self, namespace, memory_ids) -> int:
        dropped = [memory_id for memory_id in memory_ids if memory_id in self.memories
                   and self.memories[memory_id].namespace == namespace]
        for memory_id in dropped:
            del self.memories[memory_id]
        self.related = [edge for edge in self.related if edge[0] not in dropped and edge[1] not in dropped]
        return len(dropped)

    def link_session_topic(self, namespace, session_id, topic_name) -> None:
        self.links.append(('CONTAINS', session_id, topic_name))

    def link_topic_entity(self, namespace, topic_name, entity_name, entity_type) -> None:
        self.links.append(('MENTIONS', topic_name, entity_name))

    def link_session_event(self, namespace, session_id, event_id) -> None:
        self.links.append(('HAS_EVENT', session_id, event_id))

    def link_event_topic(self, namespace, event_id, topic_name) -> None:
        self.links.append(('ABOUT_TOPIC', event_id, topic_name))

    def link_event_entity(self, namespace, event_id, entity_name, entity_type) -> None:
        self.links.append(('ABOUT_ENTITY', event_id, entity_name))

    def link_memory_topic(self, namespace, memory_id, topic_name) -> None:
        self.links.append(('ABOUT_TOPIC', memory_id, topic_name))

    def link_memory_entity(self, namespace, memory_id, entity_name, entity_type) -> None:
        self.links.append(('ABOUT_ENTITY', memory_id, entity_name))

    def link_memory_related(self, from_memory_id, to_memory_id, score) -> None:
        self.related.append((from_memory_id, to_memory_id, score))

    def query_related_memories(self, namespace, entities, topics, limit) -> List[RelatedMemory]:
        if self.fail_related_query:
            raise UpstreamError('graph query failed')
        return self.related_results[:limit]


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def vector_store():
    return FakeVectorStore()


@pytest.fixture
def graph_store():
    return FakeGraphStore()


@pytest.fixture
def transcript():
    return [
        {
            'role': 'user',
            'content': 'Please remember this: our deployment region for the Atlas project is eu-west-1.'
        },
        {
            'role': 'assistant',
            'content': 'Understood, I will remember that the Atlas project deploys to eu-west-1.'
        },
    ]
