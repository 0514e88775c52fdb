"""
Amazon Neptune graph store client with Gremlin Python driver and AWS SigV4 authentication.

Vertices (label: id property):
    Session: '<ns>::session::<session_id>'
    Topic:   '<ns>::topic::<name>'
    Entity:  '<ns>::entity::<type>::<name>'
    Event:   '<ns>::event::<hash>'
    Memory:  memory id shared with the vector store

Every write is an upsert keyed by these deterministic ids, so replaying an update
never duplicates vertices or edges.
"""

from collections import Counter
from functools import wraps
from typing import Any, Dict, Iterable, List, Optional

from boto3 import Session
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from gremlin_python.driver.aiohttp.transport import AiohttpTransport
from gremlin_python.driver.driver_remote_connection import DriverRemoteConnection
from gremlin_python.process.anonymous_traversal import traversal
from gremlin_python.process.graph_traversal import __
from gremlin_python.process.traversal import Cardinality, P

from ..models.core import ExtractedEntity, ExtractedEvent, ExtractedTopic, Memory, RelatedMemory, SessionIngestMeta
from .config import NeptuneConfig
from .errors import UpstreamError
from .hash_utils import stable_hash
from .logging_config import get_logger
from .timestamp_utils import to_iso

logger = get_logger(__name__)

ENTITY_HIT_SCORE = 1.0
TOPIC_HIT_SCORE = 0.8
RELATED_BOOST_WEIGHT = 0.6


class NeptuneError(UpstreamError):
    """Custom exception for Neptune errors."""
    pass


def retry_on_connection_error(func):
    """Decorator to retry Neptune operations once on connection errors."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except Exception as e:
            if 'cannot write to closing transport' in str(e).lower() and self.connection is not None:
                logger.warning(f'Connection error detected: {e}. Reconnecting...')
                self.close()
                self._connect()
                try:
                    return func(self, *args, **kwargs)
                except Exception as retry_e:
                    logger.error(f'Error in {func.__name__}: {retry_e}')
                    raise NeptuneError(f'Failed to {func.__name__}: {retry_e}')
            else:
                logger.error(f'Error in {func.__name__}: {e}')
                raise NeptuneError(f'Failed to {func.__name__}: {e}')

    return wrapper


def _first(data: Dict[str, Any], key: str, default: Any = None) -> Any:
    """Unwrap a value_map entry, which Gremlin returns as a list."""
    value = data.get(key, default)
    if isinstance(value, list):
        return value[0] if value else default
    return value


def session_node_id(namespace: str, session_id: str) -> str:
    return f'{namespace}::session::{session_id}'


def topic_node_id(namespace: str, name: str) -> str:
    return f'{namespace}::topic::{name.lower()}'


def entity_node_id(namespace: str, entity_type: str, name: str) -> str:
    return f'{namespace}::entity::{entity_type}::{name.lower()}'


def event_node_id(namespace: str, event: ExtractedEvent) -> str:
    return f'{namespace}::event::{stable_hash(f"{event.type}:{event.timestamp}:{event.summary}")}'


class NeptuneClient:
    """Amazon Neptune client using Gremlin Python driver with AWS authentication."""

    def __init__(self, config: NeptuneConfig, g: Any = None):
        """
        Initialize Neptune client with Gremlin driver.

        Args:
            config: NeptuneConfig instance with connection parameters
            g: Optional pre-built traversal source (skips connecting)
        """
        self.config = config
        self.connection = None
        self.g = g
        if g is None:
            self._connect()

        logger.info(f'Connected to Neptune at {config.endpoint}')

    def _connect(self):
        """Establish connection to Neptune."""
        conn_string = f'wss://{self.config.endpoint}:{self.config.port}/gremlin'

        credentials = Session().get_credentials()
        if credentials is None:
            raise NeptuneError('No AWS credentials found')
        creds = credentials.get_frozen_credentials()

        region = Session().region_name or self.config.region or 'us-east-1'

        # Create signed request for WebSocket connection
        request = AWSRequest(method='GET', url=conn_string, data=None)
        SigV4Auth(creds, 'neptune-db', region).add_auth(request)

        self.connection = DriverRemoteConnection(conn_string,
                                                 'g',
                                                 headers=request.headers.items(),
                                                 transport_factory=lambda: AiohttpTransport(call_from_event_loop=True))

        # Server-side bound on every traversal
        self.g = traversal().with_remote(self.connection).with_('evaluationTimeout', int(self.config.timeout * 1000))

    def close(self):
        """Close the Neptune connection."""
        if self.connection is not None:
            self.connection.close()

    def _upsert_vertex(self, label: str, vertex_id: str, properties: Dict[str, Any]) -> None:
        t = self.g.V().has(label, 'id', vertex_id).fold().coalesce(__.unfold(), __.add_v(label).property('id', vertex_id))
        for key, value in properties.items():
            if value is not None:
                t = t.property(Cardinality.single, key, value)
        t.iterate()

    def _upsert_edge(self,
                     from_label: str,
                     from_id: str,
                     edge_label: str,
                     to_label: str,
                     to_id: str,
                     properties: Optional[Dict[str, Any]] = None) -> None:
        # No-op when either endpoint is missing
        t = self.g.V().has(from_label, 'id', from_id).as_('a')\
            .V().has(to_label, 'id', to_id)\
            .coalesce(__.in_e(edge_label).where(__.out_v().as_('a')), __.add_e(edge_label).from_('a'))
        for key, value in (properties or {}).items():
            t = t.property(key, value)
        t.iterate()

    def _read_vertex(self, label: str, vertex_id: str) -> Optional[Dict[str, Any]]:
        rows = self.g.V().has(label, 'id', vertex_id).value_map().to_list()
        return rows[0] if rows else None

    @retry_on_connection_error
    def upsert_session(self, namespace: str, session_id: str, summary: Optional[str] = None) -> None:
        """
        Create the session vertex if missing and refresh its properties.

        Args:
            namespace: Namespace of the session
            session_id: Session identifier
            summary: Optional session summary
        """
        node_id = session_node_id(namespace, session_id)
        existing = self._read_vertex('Session', node_id)
        now = to_iso()
        self._upsert_vertex(
            'Session', node_id, {
                'namespace': namespace,
                'session_id': session_id,
                'start_time': _first(existing, 'start_time', now) if existing else now,
                'end_time': now,
                'summary': summary
            })
        logger.debug(f'Upserted session vertex: {node_id}')

    @retry_on_connection_error
    def get_session_ingest_meta(self, namespace: str, session_id: str) -> SessionIngestMeta:
        """
        Read the last ingested transcript record of a session.

        Returns:
            SessionIngestMeta, empty when the session is unknown
        """
        data = self._read_vertex('Session', session_node_id(namespace, session_id))
        if not data:
            return SessionIngestMeta()

        transcript_hash = _first(data, 'last_transcript_hash')
        message_count = _first(data, 'last_message_count')
        return SessionIngestMeta(transcript_hash=transcript_hash if isinstance(transcript_hash, str) and transcript_hash else None,
                                 message_count=int(message_count) if isinstance(message_count, (int, float)) else None,
                                 last_ingested_at=_first(data, 'last_ingested_at'))

    @retry_on_connection_error
    def set_session_ingest_meta(self, namespace: str, session_id: str, meta: SessionIngestMeta) -> None:
        """Overwrite the ingest record of a session."""
        self._upsert_vertex(
            'Session', session_node_id(namespace, session_id), {
                'namespace': namespace,
                'session_id': session_id,
                'last_transcript_hash': meta.transcript_hash,
                'last_message_count': meta.message_count,
                'last_ingested_at': meta.last_ingested_at or to_iso()
            })

    @retry_on_connection_error
    def upsert_topic(self, namespace: str, topic: ExtractedTopic) -> None:
        """
        Upsert a topic vertex; frequency and importance keep their highest observed value.
        """
        node_id = topic_node_id(namespace, topic.name)
        existing = self._read_vertex('Topic', node_id) or {}
        self._upsert_vertex(
            'Topic', node_id, {
                'namespace': namespace,
                'name': topic.name,
                'name_key': topic.name.lower(),
                'frequency': max(int(_first(existing, 'frequency', 0) or 0), topic.frequency),
                'importance': max(float(_first(existing, 'importance', 0.0) or 0.0), topic.importance)
            })

    @retry_on_connection_error
    def upsert_entity(self, namespace: str, entity: ExtractedEntity) -> None:
        node_id = entity_node_id(namespace, entity.type, entity.name)
        existing = self._read_vertex('Entity', node_id) or {}
        self._upsert_vertex(
            'Entity', node_id, {
                'namespace': namespace,
                'name': entity.name,
                'name_key': entity.name.lower(),
                'type': entity.type,
                'frequency': max(int(_first(existing, 'frequency', 0) or 0), entity.frequency)
            })

    @retry_on_connection_error
    def upsert_event(self, namespace: str, event: ExtractedEvent) -> str:
        """
        Upsert an event vertex.

        Returns:
            The event vertex id
        """
        node_id = event_node_id(namespace, event)
        self._upsert_vertex('Event', node_id, {
            'namespace': namespace,
            'type': event.type,
            'summary': event.summary,
            'timestamp': event.timestamp
        })
        return node_id

    @retry_on_connection_error
    def upsert_memory(self, memory: Memory) -> None:
        """
        Upsert a memory vertex and its FROM_SESSION edge.

        Args:
            memory: Memory to store (same id as its vector document)
        """
        self._upsert_vertex(
            'Memory', memory.id, {
                'namespace': memory.namespace,
                'session_id': memory.session_id,
                'content': memory.content,
                'importance': memory.importance,
                'created_at': memory.created_at,
                'updated_at': to_iso(),
                'kind': memory.kind,
                'subject': memory.subject,
                'memory_key': memory.memory_key,
                'expires_at': memory.expires_at,
                'confidence': memory.confidence,
                'source_transcript_hash': memory.source_transcript_hash
            })
        self._upsert_edge('Memory', memory.id, 'FROM_SESSION', 'Session', session_node_id(memory.namespace, memory.session_id))
        logger.debug(f'Upserted memory vertex: {memory.id}')

    @retry_on_connection_error
    def link_session_topic(self, namespace: str, session_id: str, topic_name: str) -> None:
        self._upsert_edge('Session', session_node_id(namespace, session_id), 'CONTAINS', 'Topic',
                          topic_node_id(namespace, topic_name))

    @retry_on_connection_error
    def link_topic_entity(self, namespace: str, topic_name: str, entity_name: str, entity_type: str) -> None:
        self._upsert_edge('Topic', topic_node_id(namespace, topic_name), 'MENTIONS', 'Entity',
                          entity_node_id(namespace, entity_type, entity_name))

    @retry_on_connection_error
    def link_session_event(self, namespace: str, session_id: str, event_id: str) -> None:
        self._upsert_edge('Session', session_node_id(namespace, session_id), 'HAS_EVENT', 'Event', event_id)

    @retry_on_connection_error
    def link_event_topic(self, namespace: str, event_id: str, topic_name: str) -> None:
        self._upsert_edge('Event', event_id, 'ABOUT_TOPIC', 'Topic', topic_node_id(namespace, topic_name))

    @retry_on_connection_error
    def link_event_entity(self, namespace: str, event_id: str, entity_name: str, entity_type: str) -> None:
        self._upsert_edge('Event', event_id, 'ABOUT_ENTITY', 'Entity', entity_node_id(namespace, entity_type, entity_name))

    @retry_on_connection_error
    def link_memory_topic(self, namespace: str, memory_id: str, topic_name: str) -> None:
        """Link a memory to a topic, creating the topic vertex when missing."""
        node_id = topic_node_id(namespace, topic_name)
        if self._read_vertex('Topic', node_id) is None:
            self._upsert_vertex('Topic', node_id, {'namespace': namespace, 'name': topic_name, 'name_key': topic_name.lower()})
        self._upsert_edge('Memory', memory_id, 'ABOUT_TOPIC', 'Topic', node_id)

    @retry_on_connection_error
    def link_memory_entity(self, namespace: str, memory_id: str, entity_name: str, entity_type: str) -> None:
        """Link a memory to an entity, creating the entity vertex when missing."""
        node_id = entity_node_id(namespace, entity_type, entity_name)
        if self._read_vertex('Entity', node_id) is None:
            self._upsert_vertex('Entity', node_id, {
                'namespace': namespace,
                'name': entity_name,
                'name_key': entity_name.lower(),
                'type': entity_type
            })
        self._upsert_edge('Memory', memory_id, 'ABOUT_ENTITY', 'Entity', node_id)

    @retry_on_connection_error
    def link_memory_related(self, from_memory_id: str, to_memory_id: str, score: float) -> None:
        """Create or refresh a RELATED_TO edge carrying the vector similarity."""
        self._upsert_edge('Memory', from_memory_id, 'RELATED_TO', 'Memory', to_memory_id, {'score': float(score)})

    def _memory_hits(self, namespace: str, label: str, edge_label: str, names: Iterable[str]) -> Counter:
        keys = sorted({name.lower() for name in names if name})
        if not keys:
            return Counter()
        memory_ids = self.g.V().has(label, 'namespace', namespace).has('name_key', P.within(keys))\
            .in_(edge_label).has_label('Memory').values('id').to_list()
        return Counter(memory_ids)

    @retry_on_connection_error
    def query_related_memories(self, namespace: str, entities: List[str], topics: List[str], limit: int) -> List[RelatedMemory]:
        """
        Memories linked to the given entities/topics, scored by matched relations.

        Direct entity links score 1.0 each, topic links 0.8 each, plus 0.6 times the
        strongest outgoing RELATED_TO score; the sum is halved and capped at 1.0.

        Args:
            namespace: Namespace to search in
            entities: Entity names
            topics: Topic names
            limit: Maximum number of memories to return

        Returns:
            RelatedMemory list ordered by relation score then importance
        """
        raw_scores: Dict[str, float] = {}
        for memory_id, hits in self._memory_hits(namespace, 'Entity', 'ABOUT_ENTITY', entities).items():
            raw_scores[memory_id] = raw_scores.get(memory_id, 0.0) + ENTITY_HIT_SCORE * hits
        for memory_id, hits in self._memory_hits(namespace, 'Topic', 'ABOUT_TOPIC', topics).items():
            raw_scores[memory_id] = raw_scores.get(memory_id, 0.0) + TOPIC_HIT_SCORE * hits
        if not raw_scores:
            return []

        ids = list(raw_scores)
        related_rows = self.g.V().has('Memory', 'id', P.within(ids)).out_e('RELATED_TO')\
            .project('id', 'score').by(__.out_v().values('id')).by(__.values('score')).to_list()
        strongest: Dict[str, float] = {}
        for row in related_rows:
            memory_id = row.get('id')
            strongest[memory_id] = max(strongest.get(memory_id, 0.0), float(row.get('score') or 0.0))
        for memory_id, score in strongest.items():
            if memory_id in raw_scores:
                raw_scores[memory_id] += RELATED_BOOST_WEIGHT * score

        memories = []
        for data in self.g.V().has('Memory', 'id', P.within(ids)).value_map().to_list():
            memory_id = _first(data, 'id', '')
            if not memory_id:
                continue
            memories.append(
                RelatedMemory(id=memory_id,
                              content=_first(data, 'content', ''),
                              importance=float(_first(data, 'importance', 0.0) or 0.0),
                              created_at=_first(data, 'created_at', ''),
                              relation_score=min(1.0, raw_scores.get(memory_id, 0.0) / 2.0),
                              memory_key=_first(data, 'memory_key'),
                              expires_at=_first(data, 'expires_at')))

        memories.sort(key=lambda m: (m.relation_score, m.importance), reverse=True)
        logger.debug(f'Found {len(memories)} related memories in namespace {namespace}')
        return memories[:limit]

    @retry_on_connection_error
    def find_memory_ids(self,
                        namespace: str,
                        session_id: Optional[str] = None,
                        expired_before: Optional[str] = None,
                        limit: int = 1000) -> List[str]:
        """
        List memory vertex ids in a namespace by session or expiry.

        Args:
            namespace: Namespace to scan
            session_id: Only memories of this session
            expired_before: Only memories whose expires_at is at or before this ISO timestamp
            limit: Maximum number of ids
        """
        t = self.g.V().has('Memory', 'namespace', namespace)
        if session_id:
            t = t.has('session_id', session_id)
        if expired_before:
            # ISO-8601 UTC strings order lexicographically
            t = t.has('expires_at', P.lte(expired_before))
        return t.limit(limit).values('id').to_list()

    @retry_on_connection_error
    def delete_memories(self, namespace: str, memory_ids: List[str]) -> int:
        """
        Drop memory vertices and their edges.

        Returns:
            Number of vertices dropped
        """
        ids = [memory_id for memory_id in memory_ids if memory_id]
        if not ids:
            return 0
        count = self.g.V().has('Memory', 'id', P.within(ids)).has('namespace', namespace).count().next()
        self.g.V().has('Memory', 'id', P.within(ids)).has('namespace', namespace).drop().iterate()
        logger.debug(f'Dropped {count} memory vertices in namespace {namespace}')
        return int(count)

    def delete_memory(self, namespace: str, memory_id: str) -> bool:
        return self.delete_memories(namespace, [memory_id]) > 0

    @retry_on_connection_error
    def health_check(self) -> bool:
        """
        Perform a health check on the Neptune service.

        Returns:
            True if service is healthy, False otherwise
        """
        self.g.V().limit(1).count().next()
        return True
