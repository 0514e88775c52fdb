"""
Core data models for the deep memory ingestion pipeline.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

ENTITY_TYPES = ('person', 'place', 'organization', 'project', 'concept', 'other')
EVENT_TYPES = ('requirement_confirmed', 'design_decided', 'implementation_started', 'issue_resolved', 'milestone_reached',
               'other')
MEMORY_KINDS = ('rule', 'preference', 'fact', 'task', 'ephemeral')


@dataclass
class ExtractedEntity:
    """Named term found in a transcript window."""
    name: str
    type: str  # One of ENTITY_TYPES
    frequency: int


@dataclass
class ExtractedTopic:
    """Recurring term; importance is topic salience, not memory importance."""
    name: str
    frequency: int
    importance: float


@dataclass
class ExtractedEvent:
    """Discrete milestone inferred from a transcript."""
    type: str  # One of EVENT_TYPES
    summary: str
    timestamp: str  # ISO string


@dataclass
class DraftSignals:
    """Raw importance signals for one candidate segment."""
    frequency: float
    user_intent: float  # 0..1
    length: float
    novelty: float = 0.0  # 0..1


@dataclass
class CandidateMemoryDraft:
    """Transient candidate produced by the analyzer and consumed by the updater."""
    content: str
    entities: List[str]
    topics: List[str]
    created_at: str  # ISO string
    signals: DraftSignals
    importance: float = 0.0
    kind: str = 'fact'  # One of MEMORY_KINDS
    subject: Optional[str] = None
    memory_key: Optional[str] = None  # Slot for conflict resolution, e.g. 'preference:timezone'
    expires_at: Optional[str] = None  # Only set for ephemeral memories
    confidence: float = 0.5


@dataclass
class FilterCounts:
    added: int = 0
    filtered: int = 0


@dataclass
class AnalysisResult:
    """Output of one analyzer pass over a transcript."""
    entities: List[ExtractedEntity] = field(default_factory=list)
    topics: List[ExtractedTopic] = field(default_factory=list)
    events: List[ExtractedEvent] = field(default_factory=list)
    drafts: List[CandidateMemoryDraft] = field(default_factory=list)
    filtered: FilterCounts = field(default_factory=FilterCounts)


@dataclass
class SensitiveResult:
    """Classification produced by the sensitive filter."""
    sensitive: bool
    reasons: List[str]
    ruleset_version: str


@dataclass
class SessionIngestMeta:
    """Last processed transcript for a session, stored on the Session vertex."""
    transcript_hash: Optional[str] = None
    message_count: Optional[int] = None
    last_ingested_at: Optional[str] = None


@dataclass
class Memory:
    """Durable memory persisted to both the vector store and the graph store.

    The same id addresses the OpenSearch document and the Neptune vertex.
    """
    id: str
    namespace: str
    session_id: str
    content: str
    importance: float
    entities: List[str]
    topics: List[str]
    created_at: str
    kind: str = 'fact'
    subject: Optional[str] = None
    memory_key: Optional[str] = None
    expires_at: Optional[str] = None
    confidence: float = 0.5
    source_transcript_hash: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        """Document body for the vector index, without the embedding."""
        return {key: value for key, value in asdict(self).items() if value is not None}

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'Memory':
        return cls(id=document.get('id', ''),
                   namespace=document.get('namespace', ''),
                   session_id=document.get('session_id', ''),
                   content=document.get('content', ''),
                   importance=float(document.get('importance', 0.0) or 0.0),
                   entities=list(document.get('entities') or []),
                   topics=list(document.get('topics') or []),
                   created_at=document.get('created_at', ''),
                   kind=document.get('kind', 'fact'),
                   subject=document.get('subject'),
                   memory_key=document.get('memory_key'),
                   expires_at=document.get('expires_at'),
                   confidence=float(document.get('confidence', 0.5) or 0.0),
                   source_transcript_hash=document.get('source_transcript_hash'))


@dataclass
class VectorMatch:
    """Nearest-neighbour hit; score is cosine similarity."""
    id: str
    score: float
    document: Dict[str, Any]


@dataclass
class RelatedMemory:
    """Memory reached through graph relations, with a heuristic 0..1 relation score."""
    id: str
    content: str
    importance: float
    created_at: str
    relation_score: float
    memory_key: Optional[str] = None
    expires_at: Optional[str] = None
