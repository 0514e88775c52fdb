"""
Memory Retriever: builds a prompt-ready context from long-term memory for a user turn.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models.api import RetrieveContextRequest, RetrieveContextResponse, RetrievedMemory
from ..utils.config import RetrieverConfig, config
from ..utils.errors import UpstreamError
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import parse_iso, utc_now
from .session_analyzer import SessionAnalyzer

logger = get_logger(__name__)

DECAY_FLOOR = 0.1
CONTEXT_HEADER = 'Relevant long-term memory:'


@dataclass
class _Candidate:
    id: str
    content: str
    importance: float
    created_at: str = ''
    memory_key: Optional[str] = None
    expires_at: Optional[str] = None
    semantic_score: Optional[float] = None
    relation_score: Optional[float] = None
    sources: List[str] = field(default_factory=list)


def recency_decay(created_at: Optional[str], half_life_days: float, now: datetime) -> float:
    """Half-life decay of a memory's age, floored at 0.1; unknown ages do not decay."""
    created = parse_iso(created_at)
    if created is None:
        return 1.0
    age_days = max(0.0, (now - created).total_seconds() / 86400.0)
    return max(DECAY_FLOOR, math.pow(0.5, age_days / half_life_days))


def is_expired(expires_at: Optional[str], now: datetime) -> bool:
    expires = parse_iso(expires_at)
    return expires is not None and expires <= now


def format_context(memories: List[RetrievedMemory]) -> str:
    if not memories:
        return ''
    lines = [CONTEXT_HEADER]
    for index, memory in enumerate(memories, start=1):
        lines.append(f'{index}. ({memory.relevance:.2f}, imp={memory.importance:.2f}) {memory.content}')
    return '\n'.join(lines)


class MemoryRetriever:
    """Hybrid semantic + relational retrieval over the two memory stores."""

    def __init__(self,
                 retriever_config: Optional[RetrieverConfig] = None,
                 analyzer: Optional[SessionAnalyzer] = None,
                 embedder: Any = None,
                 vector_store: Any = None,
                 graph_store: Any = None):
        self.config = retriever_config or config.retriever
        self.analyzer = analyzer or SessionAnalyzer()

        if embedder is None:
            from ..utils.bedrock_embed import BedrockEmbed
            embedder = BedrockEmbed(config.bedrock_embed)
        if vector_store is None:
            from ..utils.opensearch_client import OpenSearchClient
            vector_store = OpenSearchClient(config.opensearch)
        if graph_store is None:
            from ..utils.neptune_client import NeptuneClient
            graph_store = NeptuneClient(config.neptune)

        self.embedder = embedder
        self.vector_store = vector_store
        self.graph_store = graph_store

        logger.info('Initialized MemoryRetriever')

    def retrieve(self, request: RetrieveContextRequest, now: Optional[datetime] = None) -> RetrieveContextResponse:
        """Retrieve the memories most relevant to a user turn.

        Both stores are queried best-effort; a failing store only removes its
        candidates from the result.

        Args:
            request: Parsed retrieval request
            now: Reference time for decay and expiry (defaults to current UTC time)

        Returns:
            RetrieveContextResponse with ranked memories and a formatted context string
        """
        now = now or utc_now()
        namespace = request.namespace or config.default_namespace
        limit = request.max_memories or self.config.default_max_memories
        user_input = (request.user_input or '').strip()

        entities, topics = self.analyzer.extract_hints(user_input)
        if not user_input:
            return RetrieveContextResponse(entities=entities, topics=topics)

        candidates: Dict[str, _Candidate] = {}
        fetch_size = limit * 3

        try:
            vector = self.embedder.embed_query(user_input)
            for match in self.vector_store.search(vector, namespace, top_k=fetch_size):
                if match.score < self.config.min_semantic_score:
                    continue
                document = match.document
                candidate = candidates.setdefault(
                    match.id,
                    _Candidate(id=match.id,
                               content=document.get('content', ''),
                               importance=float(document.get('importance', 0.0) or 0.0),
                               created_at=document.get('created_at', ''),
                               memory_key=document.get('memory_key'),
                               expires_at=document.get('expires_at')))
                candidate.semantic_score = max(candidate.semantic_score or 0.0, match.score)
                if 'opensearch' not in candidate.sources:
                    candidate.sources.append('opensearch')
        except UpstreamError as e:
            logger.warning(f'Semantic retrieval failed for session {request.session_id}: {e}')

        if entities or topics:
            try:
                for related in self.graph_store.query_related_memories(namespace, entities, topics, fetch_size):
                    candidate = candidates.setdefault(
                        related.id,
                        _Candidate(id=related.id,
                                   content=related.content,
                                   importance=related.importance,
                                   created_at=related.created_at,
                                   memory_key=related.memory_key,
                                   expires_at=related.expires_at))
                    candidate.relation_score = max(candidate.relation_score or 0.0, related.relation_score)
                    if 'neptune' not in candidate.sources:
                        candidate.sources.append('neptune')
            except UpstreamError as e:
                logger.warning(f'Relational retrieval failed for session {request.session_id}: {e}')

        ranked = []
        for candidate in candidates.values():
            if is_expired(candidate.expires_at, now):
                continue
            ranked.append((self._relevance(candidate, now), candidate))
        ranked.sort(key=lambda item: (item[0], item[1].importance), reverse=True)

        memories = []
        seen_keys = set()
        for relevance, candidate in ranked:
            if candidate.memory_key:
                # Best-ranked memory wins its slot
                if candidate.memory_key in seen_keys:
                    continue
                seen_keys.add(candidate.memory_key)
            memories.append(
                RetrievedMemory(id=candidate.id,
                                content=candidate.content,
                                importance=candidate.importance,
                                relevance=relevance,
                                semantic_score=candidate.semantic_score,
                                relation_score=candidate.relation_score,
                                sources=candidate.sources))
            if len(memories) >= limit:
                break

        logger.debug(f'Retrieved {len(memories)} memories for session {request.session_id} from {len(candidates)} candidates')
        return RetrieveContextResponse(entities=entities, topics=topics, memories=memories, context=format_context(memories))

    def _relevance(self, candidate: _Candidate, now: datetime) -> float:
        base = self.config.semantic_weight * (candidate.semantic_score or 0.0) \
            + self.config.relation_weight * (candidate.relation_score or 0.0)
        boost = 1.0 + self.config.importance_boost * max(0.0, min(1.0, candidate.importance))
        return base * boost * recency_decay(candidate.created_at, self.config.decay_half_life_days, now)
