"""
MCP Interface Layer using fastmcp for agent orchestration.
"""
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from deepmem.models.api import RetrieveContextRequest, UpdateMemoryIndexRequest
from deepmem.services.memory_forgetter import MemoryForgetter
from deepmem.services.memory_retriever import MemoryRetriever
from deepmem.services.memory_updater import DeepMemoryUpdater
from deepmem.utils.config import config
from deepmem.utils.errors import ValidationError
from deepmem.utils.health_check import get_health_status
from deepmem.utils.logging_config import get_logger

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Deep Memory')

_updater: Optional[DeepMemoryUpdater] = None
_retriever: Optional[MemoryRetriever] = None
_forgetter: Optional[MemoryForgetter] = None


def get_updater() -> DeepMemoryUpdater:
    global _updater
    if _updater is None:
        _updater = DeepMemoryUpdater()
    return _updater


def get_retriever() -> MemoryRetriever:
    global _retriever
    if _retriever is None:
        _retriever = MemoryRetriever()
    return _retriever


def get_forgetter() -> MemoryForgetter:
    global _forgetter
    if _forgetter is None:
        _forgetter = MemoryForgetter()
    return _forgetter


@mcp.tool()
def update_memory_index(session_id: str,
                        messages: List[Dict[str, Any]],
                        namespace: Optional[str] = None,
                        run_async: bool = False) -> Dict[str, Any]:
    """Ingest a session transcript into long-term memory.

    Replaying an unchanged transcript is a no-op reported as 'skipped'.

    Args:
        session_id: Session identifier
        messages: Transcript items, each {'role', 'content'} or {'message': {...}}
        namespace: Memory namespace (default: configured namespace)
        run_async: Accepted for compatibility; the update is always processed inline

    Returns:
        Dict with status, memories_added, memories_filtered and optionally error

    Raises:
        Exception: If the request is invalid
    """
    try:
        request = UpdateMemoryIndexRequest.from_dict({
            'session_id': session_id,
            'messages': messages,
            'namespace': namespace,
            'async': run_async
        })
    except ValidationError as e:
        logger.error(f'Invalid update_memory_index request: {e}')
        raise Exception(f'Invalid request: {e}')

    if request.run_async:
        logger.debug(f'Async update requested for session {request.session_id}, processing inline')

    response = get_updater().update(request.namespace or config.default_namespace, request.session_id, request.messages)
    return response.to_dict()


@mcp.tool()
def retrieve_context(user_input: str,
                     session_id: str,
                     namespace: Optional[str] = None,
                     max_memories: Optional[int] = None) -> Dict[str, Any]:
    """Retrieve long-term memories relevant to a user turn.

    Args:
        user_input: Current user message
        session_id: Session identifier
        namespace: Memory namespace (default: configured namespace)
        max_memories: Maximum number of memories to return

    Returns:
        Dict with entities, topics, memories and a formatted context string

    Raises:
        Exception: If the request is invalid
    """
    try:
        request = RetrieveContextRequest.from_dict({
            'user_input': user_input,
            'session_id': session_id,
            'namespace': namespace,
            'max_memories': max_memories
        })
    except ValidationError as e:
        logger.error(f'Invalid retrieve_context request: {e}')
        raise Exception(f'Invalid request: {e}')

    response = get_retriever().retrieve(request)
    logger.debug(f'MCP retrieve_context returned {len(response.memories)} memories for session {session_id}')
    return response.to_dict()


@mcp.tool()
def forget_memories(memory_ids: Optional[List[str]] = None,
                    session_id: Optional[str] = None,
                    namespace: Optional[str] = None,
                    dry_run: bool = False) -> Dict[str, Any]:
    """Delete memories from both stores, by id or by session.

    Args:
        memory_ids: Memory ids to delete
        session_id: Delete every memory of this session
        namespace: Memory namespace (default: configured namespace)
        dry_run: Only report what would be deleted

    Returns:
        Dict with status, found, vector_deleted, graph_deleted and optionally errors

    Raises:
        Exception: If neither memory_ids nor session_id is given
    """
    try:
        response = get_forgetter().forget(namespace or config.default_namespace,
                                          memory_ids=memory_ids,
                                          session_id=session_id,
                                          dry_run=dry_run)
    except ValidationError as e:
        logger.error(f'Invalid forget_memories request: {e}')
        raise Exception(f'Invalid request: {e}')
    return response.to_dict()


@mcp.tool()
def gc_expired_memories(namespace: Optional[str] = None, dry_run: bool = False) -> Dict[str, Any]:
    """Delete memories whose expiry time has passed."""
    return get_forgetter().gc_expired(namespace or config.default_namespace, dry_run=dry_run).to_dict()


@mcp.tool()
def health() -> Dict[str, Any]:
    """Report the health of the embedding service, vector store and graph store."""
    return get_health_status()


if __name__ == '__main__':
    transport = config.mcp.transport
    host = config.mcp.host
    port = config.mcp.port
    mcp.run(transport=transport, host=host, port=port)
