"""
Request/response contracts exposed by the deep memory core.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..utils.errors import ValidationError

UPDATE_STATUSES = ('processed', 'skipped', 'error')


def _optional_str(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f'{key} must be a string')
    return value.strip() or None


def _required_str(payload: Dict[str, Any], key: str) -> str:
    value = _optional_str(payload, key)
    if not value:
        raise ValidationError(f'{key} is required')
    return value


@dataclass
class UpdateMemoryIndexRequest:
    session_id: str
    messages: List[Any]
    namespace: Optional[str] = None
    run_async: bool = False

    @classmethod
    def from_dict(cls, payload: Any) -> 'UpdateMemoryIndexRequest':
        """Validate a raw request body.

        Args:
            payload: Decoded request body

        Returns:
            Parsed request

        Raises:
            ValidationError: If the body does not have the expected shape
        """
        if not isinstance(payload, dict):
            raise ValidationError('Request body must be an object')

        messages = payload.get('messages')
        if not isinstance(messages, list):
            raise ValidationError('messages must be an array')

        run_async = payload.get('async', False)
        if not isinstance(run_async, bool):
            raise ValidationError('async must be a boolean')

        return cls(session_id=_required_str(payload, 'session_id'),
                   messages=messages,
                   namespace=_optional_str(payload, 'namespace'),
                   run_async=run_async)


@dataclass
class UpdateMemoryIndexResponse:
    status: str  # One of UPDATE_STATUSES
    memories_added: int = 0
    memories_filtered: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        body = {'status': self.status, 'memories_added': self.memories_added, 'memories_filtered': self.memories_filtered}
        if self.error is not None:
            body['error'] = self.error
        return body


@dataclass
class RetrieveContextRequest:
    user_input: str
    session_id: str
    namespace: Optional[str] = None
    max_memories: Optional[int] = None

    @classmethod
    def from_dict(cls, payload: Any) -> 'RetrieveContextRequest':
        if not isinstance(payload, dict):
            raise ValidationError('Request body must be an object')

        max_memories = payload.get('max_memories')
        if max_memories is not None:
            if isinstance(max_memories, bool) or not isinstance(max_memories, int) or max_memories < 1:
                raise ValidationError('max_memories must be a positive integer')

        user_input = payload.get('user_input')
        if not isinstance(user_input, str):
            raise ValidationError('user_input must be a string')

        return cls(user_input=user_input,
                   session_id=_required_str(payload, 'session_id'),
                   namespace=_optional_str(payload, 'namespace'),
                   max_memories=max_memories)


@dataclass
class RetrievedMemory:
    id: str
    content: str
    importance: float
    relevance: float
    semantic_score: Optional[float] = None
    relation_score: Optional[float] = None
    sources: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        body = {
            'id': self.id,
            'content': self.content,
            'importance': self.importance,
            'relevance': self.relevance,
            'sources': list(self.sources)
        }
        if self.semantic_score is not None:
            body['semantic_score'] = self.semantic_score
        if self.relation_score is not None:
            body['relation_score'] = self.relation_score
        return body


@dataclass
class RetrieveContextResponse:
    entities: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)
    memories: List[RetrievedMemory] = field(default_factory=list)
    context: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entities': list(self.entities),
            'topics': list(self.topics),
            'memories': [memory.to_dict() for memory in self.memories],
            'context': self.context
        }


@dataclass
class ForgetResponse:
    status: str  # 'ok' or 'error'
    found: int = 0
    vector_deleted: int = 0
    graph_deleted: int = 0
    dry_run: bool = False
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        body = {
            'status': self.status,
            'found': self.found,
            'vector_deleted': self.vector_deleted,
            'graph_deleted': self.graph_deleted,
            'dry_run': self.dry_run
        }
        if self.errors:
            body['errors'] = list(self.errors)
        return body
