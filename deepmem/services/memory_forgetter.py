"""
Memory Forgetter: removes memories from the vector store and the graph store.

Both stores address a memory by the same deterministic id, so a delete issued
against both is idempotent and a partially failed delete is safe to repeat.
"""

from datetime import datetime
from typing import Any, List, Optional

from ..models.api import ForgetResponse
from ..models.core import SessionIngestMeta
from ..utils.config import config
from ..utils.errors import UpstreamError, ValidationError
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import to_iso
from .memory_updater import DEFAULT_NAMESPACE

logger = get_logger(__name__)

DELETE_BATCH_SIZE = 100
SCAN_LIMIT = 1000


class MemoryForgetter:
    """Delete memories by id, by session or by expiry."""

    def __init__(self, vector_store: Any = None, graph_store: Any = None, batch_size: int = DELETE_BATCH_SIZE):
        """Initialize the forgetter.

        Args:
            vector_store: Object with find_memory_ids(...) and delete_memories(ids)
            graph_store: Object with find_memory_ids(...), delete_memories(namespace, ids)
                and set_session_ingest_meta(...)
            batch_size: Number of ids deleted per store call
        """
        if vector_store is None:
            from ..utils.opensearch_client import OpenSearchClient
            vector_store = OpenSearchClient(config.opensearch)
        if graph_store is None:
            from ..utils.neptune_client import NeptuneClient
            graph_store = NeptuneClient(config.neptune)

        self.vector_store = vector_store
        self.graph_store = graph_store
        self.batch_size = max(1, int(batch_size))

    def forget(self,
               namespace: Optional[str],
               memory_ids: Optional[List[str]] = None,
               session_id: Optional[str] = None,
               dry_run: bool = False) -> ForgetResponse:
        """Forget explicit memories, or every memory of a session.

        Ids outside the namespace are ignored. Forgetting a session also clears its
        ingest record, so the same transcript can be ingested again.

        Args:
            namespace: Memory namespace; empty means 'default'
            memory_ids: Memory ids to delete
            session_id: Session whose memories are deleted
            dry_run: Only report what would be deleted

        Returns:
            ForgetResponse with counts per store

        Raises:
            ValidationError: If neither memory_ids nor session_id is given
        """
        if memory_ids is not None and not isinstance(memory_ids, list):
            raise ValidationError('memory_ids must be an array')
        if session_id is not None and not isinstance(session_id, str):
            raise ValidationError('session_id must be a string')
        session_id = (session_id or '').strip() or None
        if not memory_ids and not session_id:
            raise ValidationError('memory_ids or session_id is required')

        namespace = (namespace or '').strip() or DEFAULT_NAMESPACE
        prefix = f'{namespace}::'
        errors: List[str] = []
        ids = []
        for memory_id in memory_ids or []:
            if isinstance(memory_id, str) and memory_id.startswith(prefix):
                ids.append(memory_id)
            else:
                logger.warning(f'Ignoring memory id outside namespace {namespace}: {memory_id}')

        if session_id:
            ids.extend(self._find(namespace, errors, session_id=session_id))

        response = self._delete(namespace, ids, errors, dry_run)

        if session_id and not dry_run and response.status == 'ok':
            try:
                self.graph_store.set_session_ingest_meta(namespace, session_id, SessionIngestMeta(transcript_hash='', message_count=0))
            except UpstreamError as e:
                logger.warning(f'Failed to clear ingest metadata for session {session_id}: {e}')

        logger.info(f'Forget in {namespace}: {response.found} found, {response.vector_deleted} vector and '
                    f'{response.graph_deleted} graph deletions{" (dry run)" if dry_run else ""}')
        return response

    def gc_expired(self, namespace: Optional[str], now: Optional[datetime] = None, dry_run: bool = False) -> ForgetResponse:
        """Delete memories whose expires_at has passed.

        Args:
            namespace: Memory namespace; empty means 'default'
            now: Reference time (defaults to current UTC time)
            dry_run: Only report what would be deleted

        Returns:
            ForgetResponse with counts per store
        """
        namespace = (namespace or '').strip() or DEFAULT_NAMESPACE
        cutoff = to_iso(now)
        errors: List[str] = []

        ids = self._find(namespace, errors, expired_before=cutoff)
        response = self._delete(namespace, ids, errors, dry_run)

        logger.info(f'GC in {namespace} at {cutoff}: {response.found} expired, {response.vector_deleted} vector and '
                    f'{response.graph_deleted} graph deletions{" (dry run)" if dry_run else ""}')
        return response

    def _find(self, namespace: str, errors: List[str], **criteria: Any) -> List[str]:
        # Union of both stores, so memories left behind by a partial write are found too
        found: List[str] = []
        for name, store in (('vector store', self.vector_store), ('graph store', self.graph_store)):
            try:
                found.extend(store.find_memory_ids(namespace, limit=SCAN_LIMIT, **criteria))
            except UpstreamError as e:
                logger.warning(f'Failed to list memories in the {name}: {e}')
                errors.append(f'{name} lookup failed: {e}')
        return found

    def _delete(self, namespace: str, ids: List[str], errors: List[str], dry_run: bool) -> ForgetResponse:
        unique = list(dict.fromkeys(ids))
        response = ForgetResponse(status='ok', found=len(unique), dry_run=dry_run)

        if not dry_run:
            for start in range(0, len(unique), self.batch_size):
                batch = unique[start:start + self.batch_size]
                try:
                    response.vector_deleted += self.vector_store.delete_memories(batch)
                except UpstreamError as e:
                    logger.warning(f'Failed to delete {len(batch)} memories from the vector store: {e}')
                    errors.append(f'vector store delete failed: {e}')
                try:
                    response.graph_deleted += self.graph_store.delete_memories(namespace, batch)
                except UpstreamError as e:
                    logger.warning(f'Failed to delete {len(batch)} memories from the graph store: {e}')
                    errors.append(f'graph store delete failed: {e}')

        if errors:
            response.status = 'error'
            response.errors = errors
        return response
