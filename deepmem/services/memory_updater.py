"""
Deep Memory Updater: turns a session transcript into durable memories in the vector
store (OpenSearch) and the graph store (Neptune).

The update is idempotent per transcript: the hash of the canonical transcript is
recorded on the Session vertex and an identical replay is skipped. Writes to the two
stores are not transactional; deterministic ids make a partially failed update safe
to replay.
"""

import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..models.api import UpdateMemoryIndexResponse
from ..models.core import AnalysisResult, CandidateMemoryDraft, Memory, SessionIngestMeta, VectorMatch
from ..utils.config import UpdaterConfig, config
from ..utils.errors import UpstreamError, ValidationError
from ..utils.hash_utils import memory_id, transcript_hash
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import to_iso
from .importance import ImportanceScorer
from .sensitive_filter import SensitiveFilter
from .session_analyzer import SessionAnalyzer

logger = get_logger(__name__)

DEFAULT_NAMESPACE = 'default'

ADDED = 'added'
FILTERED = 'filtered'
FAILED = 'failed'


@dataclass
class DraftResult:
    """Outcome of processing one draft."""
    outcome: str  # added | filtered | failed
    reached_embedding: bool = False
    error: Optional[str] = None


class DeepMemoryUpdater:
    """Ingest transcripts into long-term memory."""

    def __init__(self,
                 updater_config: Optional[UpdaterConfig] = None,
                 analyzer: Optional[SessionAnalyzer] = None,
                 sensitive_filter: Optional[SensitiveFilter] = None,
                 embedder: Any = None,
                 vector_store: Any = None,
                 graph_store: Any = None,
                 scorer: Optional[ImportanceScorer] = None):
        """Initialize the updater.

        Collaborators left as None are built from the global configuration.

        Args:
            updater_config: Thresholds; defaults to config.updater
            analyzer: Transcript analyzer
            sensitive_filter: Filter screening messages before extraction and drafts before embedding
            embedder: Object with embed(text) -> List[float]
            vector_store: Object with search(...) and upsert_memory(memory, embedding)
            graph_store: Object with the session/topic/entity/event/memory upserts,
                link_* calls and ingest metadata accessors
            scorer: Importance scorer used to re-score drafts with vector novelty
        """
        self.config = updater_config or config.updater
        self.scorer = scorer or ImportanceScorer()
        self.analyzer = analyzer or SessionAnalyzer(self.scorer)
        self.sensitive_filter = sensitive_filter or SensitiveFilter.from_config(config.sensitive)

        if embedder is None:
            from ..utils.bedrock_embed import BedrockEmbed
            embedder = BedrockEmbed(config.bedrock_embed)
        if vector_store is None:
            from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
            vector_store = OpenSearchClient(config.opensearch)
            try:
                vector_store.create_index_if_not_exists()
            except OpenSearchError as e:
                logger.warning(f'Failed to create OpenSearch index: {e}')
        if graph_store is None:
            from ..utils.neptune_client import NeptuneClient
            graph_store = NeptuneClient(config.neptune)

        self.embedder = embedder
        self.vector_store = vector_store
        self.graph_store = graph_store

        logger.info('Initialized DeepMemoryUpdater')

    def update(self, namespace: Optional[str], session_id: str, messages: List[Any]) -> UpdateMemoryIndexResponse:
        """Ingest one transcript window.

        Args:
            namespace: Memory namespace; empty means 'default'
            session_id: Session identifier
            messages: Transcript items

        Returns:
            UpdateMemoryIndexResponse with status processed, skipped or error

        Raises:
            ValidationError: If session_id is empty or messages is not a list
        """
        if not isinstance(session_id, str) or not session_id.strip():
            raise ValidationError('session_id is required')
        if not isinstance(messages, list):
            raise ValidationError('messages must be an array')

        namespace = (namespace or '').strip() or DEFAULT_NAMESPACE
        session_id = session_id.strip()

        try:
            return self._update(namespace, session_id, messages)
        except Exception as e:
            logger.error(f'Unexpected error updating memory index for session {session_id}: {e}')
            return UpdateMemoryIndexResponse(status='error', error=str(e))

    def _update(self, namespace: str, session_id: str, messages: List[Any]) -> UpdateMemoryIndexResponse:
        digest = transcript_hash(messages)

        try:
            meta = self.graph_store.get_session_ingest_meta(namespace, session_id)
        except UpstreamError as e:
            logger.error(f'Failed to read ingest metadata for session {session_id}: {e}')
            return UpdateMemoryIndexResponse(status='error', error=str(e))

        if meta is not None and meta.transcript_hash == digest:
            logger.info(f'Transcript unchanged for session {session_id}, skipping')
            return UpdateMemoryIndexResponse(status='skipped')

        try:
            analysis = self.analyzer.analyze(session_id,
                                             messages,
                                             max_memories_per_session=self.config.max_memories_per_update,
                                             importance_threshold=self.config.importance_threshold,
                                             screen=self._is_sensitive if self.config.sensitive_filter_enabled else None)
        except Exception as e:
            logger.error(f'Session analysis failed for session {session_id}: {e}')
            return UpdateMemoryIndexResponse(status='error', error=str(e))

        try:
            self.graph_store.upsert_session(namespace, session_id)
        except UpstreamError as e:
            logger.error(f'Failed to upsert session {session_id}: {e}')
            return UpdateMemoryIndexResponse(status='error', error=str(e))

        self._write_graph_context(namespace, session_id, analysis)

        entity_types = {entity.name: entity.type for entity in analysis.entities}
        added = 0
        filtered = analysis.filtered.filtered
        attempted = 0
        failed = 0
        last_error = None

        for draft in analysis.drafts:
            result = self._process_draft(namespace, session_id, digest, draft, entity_types)
            if result.reached_embedding:
                attempted += 1
            if result.outcome == ADDED:
                added += 1
            else:
                filtered += 1
            if result.outcome == FAILED:
                failed += 1
                last_error = result.error

        if attempted > 0 and failed == attempted:
            logger.error(f'All {attempted} memories failed for session {session_id}: {last_error}')
            return UpdateMemoryIndexResponse(status='error', memories_added=0, memories_filtered=filtered, error=last_error)

        if failed > 0:
            # no hash recorded, so a replay of this transcript repairs the failed writes
            logger.warning(f'{failed} of {attempted} memories failed for session {session_id}, '
                           f'ingest metadata not recorded')
        else:
            try:
                self.graph_store.set_session_ingest_meta(
                    namespace, session_id, SessionIngestMeta(transcript_hash=digest,
                                                             message_count=len(messages),
                                                             last_ingested_at=to_iso()))
            except UpstreamError as e:
                logger.warning(f'Failed to record ingest metadata for session {session_id}: {e}')

        logger.info(f'Updated memory index for session {session_id} in {namespace}: {added} added, {filtered} filtered')
        return UpdateMemoryIndexResponse(status='processed', memories_added=added, memories_filtered=filtered)

    def _write_graph_context(self, namespace: str, session_id: str, analysis: AnalysisResult) -> None:
        """Upsert topics, entities, events and their links; failures are logged and skipped."""
        for topic in analysis.topics:
            try:
                self.graph_store.upsert_topic(namespace, topic)
                self.graph_store.link_session_topic(namespace, session_id, topic.name)
            except UpstreamError as e:
                logger.warning(f'Failed to upsert topic {topic.name}: {e}')

        for entity in analysis.entities:
            try:
                self.graph_store.upsert_entity(namespace, entity)
            except UpstreamError as e:
                logger.warning(f'Failed to upsert entity {entity.name}: {e}')
                continue
            for topic in analysis.topics:
                try:
                    self.graph_store.link_topic_entity(namespace, topic.name, entity.name, entity.type)
                except UpstreamError as e:
                    logger.warning(f'Failed to link topic {topic.name} to entity {entity.name}: {e}')

        for event in analysis.events:
            try:
                event_id = self.graph_store.upsert_event(namespace, event)
                self.graph_store.link_session_event(namespace, session_id, event_id)
            except UpstreamError as e:
                logger.warning(f'Failed to upsert event {event.type}: {e}')
                continue
            lowered = event.summary.casefold()
            for topic in analysis.topics:
                if topic.name in lowered:
                    try:
                        self.graph_store.link_event_topic(namespace, event_id, topic.name)
                    except UpstreamError as e:
                        logger.warning(f'Failed to link event to topic {topic.name}: {e}')
            for entity in analysis.entities:
                if entity.name.casefold() in lowered:
                    try:
                        self.graph_store.link_event_entity(namespace, event_id, entity.name, entity.type)
                    except UpstreamError as e:
                        logger.warning(f'Failed to link event to entity {entity.name}: {e}')

    def _process_draft(self, namespace: str, session_id: str, digest: str, draft: CandidateMemoryDraft,
                       entity_types: Dict[str, str]) -> DraftResult:
        """Screen, deduplicate, re-score and persist one draft.

        A stored memory with the draft's own id is a replay of an earlier, possibly
        partial, write: it is ignored for deduplication and novelty and both stores
        are written again.
        """
        if self.config.sensitive_filter_enabled:
            result = self.sensitive_filter.detect(draft.content)
            if result.sensitive:
                logger.info(f'Dropped sensitive draft in session {session_id}: rules={",".join(result.reasons)} '
                            f'ruleset={result.ruleset_version}')
                return DraftResult(FILTERED)

        mem_id = memory_id(namespace, session_id, draft.content)
        try:
            embedding = self.embedder.embed(draft.content)
            matches = [match for match in self._search(embedding, namespace, session_id) if match.id != mem_id]

            top_score = matches[0].score if matches else None
            if top_score is not None and top_score >= self.config.dedupe_score:
                logger.debug(f'Duplicate of {matches[0].id} (similarity {top_score:.3f}), filtered')
                return DraftResult(FILTERED, reached_embedding=True)

            signals = dataclasses.replace(draft.signals, novelty=1.0 - top_score if top_score is not None else 1.0)
            importance = self.scorer.score(signals)
            if importance < self.config.importance_threshold:
                logger.debug(f'Draft importance {importance:.3f} below threshold after re-scoring, filtered')
                return DraftResult(FILTERED, reached_embedding=True)

            memory = Memory(id=mem_id,
                            namespace=namespace,
                            session_id=session_id,
                            content=draft.content,
                            importance=importance,
                            entities=list(draft.entities),
                            topics=list(draft.topics),
                            created_at=draft.created_at,
                            kind=draft.kind,
                            subject=draft.subject,
                            memory_key=draft.memory_key,
                            expires_at=draft.expires_at,
                            confidence=draft.confidence,
                            source_transcript_hash=digest)

            self.vector_store.upsert_memory(memory, embedding)
            self._write_memory_graph(memory, matches, entity_types)

        except UpstreamError as e:
            logger.warning(f'Failed to persist memory for session {session_id}: {e}')
            return DraftResult(FAILED, reached_embedding=True, error=str(e))

        return DraftResult(ADDED, reached_embedding=True)

    def _is_sensitive(self, text: str) -> bool:
        return self.sensitive_filter.detect(text).sensitive

    def _search(self, embedding: List[float], namespace: str, session_id: str) -> List[VectorMatch]:
        # one extra slot for the draft's own id on replay
        scope_session = session_id if self.config.dedupe_scope == 'session' else None
        matches = self.vector_store.search(embedding,
                                           namespace,
                                           session_id=scope_session,
                                           top_k=max(1, self.config.related_top_k + 2))
        return sorted(matches, key=lambda match: match.score, reverse=True)

    def _write_memory_graph(self, memory: Memory, matches: List[VectorMatch], entity_types: Dict[str, str]) -> None:
        self.graph_store.upsert_memory(memory)
        for topic in memory.topics:
            self.graph_store.link_memory_topic(memory.namespace, memory.id, topic)
        for entity in memory.entities:
            self.graph_store.link_memory_entity(memory.namespace, memory.id, entity, entity_types.get(entity, 'other'))

        related = [match for match in matches if match.id != memory.id and match.score > self.config.min_semantic_score]
        for match in related[:self.config.related_top_k]:
            self.graph_store.link_memory_related(memory.id, match.id, match.score)
