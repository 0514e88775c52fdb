"""
Session Analyzer: heuristic extraction of entities, topics, events and candidate
memories from an agent transcript.
"""

import re
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from ..models.core import (AnalysisResult, CandidateMemoryDraft, DraftSignals, ExtractedEntity, ExtractedEvent, ExtractedTopic,
                           FilterCounts)
from ..utils.hash_utils import stable_hash
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import add_days_iso, to_iso, utc_now
from .importance import ImportanceScorer

logger = get_logger(__name__)

MIN_SEGMENT_LENGTH = 20
MAX_TOPICS = 12
MAX_ENTITIES = 10
MAX_DRAFT_LABELS = 5
EVENT_SUMMARY_LENGTH = 200
MAX_MEMORY_KEY_LENGTH = 120

HIGH_INTENT = 0.9
LOW_INTENT = 0.2
EVENT_INTENT = 0.7

_TOKEN_SPLIT = re.compile(r'[^0-9A-Za-z\u4e00-\u9fff]+')
_HAS_LETTER = re.compile(r'[A-Za-z\u4e00-\u9fff]')
_DATE_HINT = re.compile(r'\b(20\d{2})[-/](\d{1,2})[-/](\d{1,2})\b')

STOPWORDS = frozenset([
    '我们', '你们', '他们', '这个', '那个', '然后', '所以', '但是', '如果', '因为', '可以', '需要', '觉得', '现在', '今天', '一下',
    'the', 'and', 'or', 'to', 'of', 'in', 'on', 'for', 'with', 'is', 'are', 'be', 'this', 'that', 'we', 'you', 'they', 'it',
    'an', 'as', 'at', 'by', 'do', 'if', 'me', 'my', 'no', 'not', 'so', 'up', 'was', 'will', 'can', 'have', 'has', 'our', 'your'
])

INTENT_MARKERS = (
    re.compile(r'记住|以后|下次|长期|偏好|习惯|不要|必须|务必|约定|规则'),
    re.compile(r'remember|preference|must|never|always|policy|rule', re.IGNORECASE),
)

EVENT_PATTERNS = (
    ('requirement_confirmed', re.compile(r'确认|定下|需求|requirements? (?:is |are )?confirmed', re.IGNORECASE)),
    ('design_decided', re.compile(r'设计|决定|方案|\bdecided\b|\bdesign\b', re.IGNORECASE)),
    ('implementation_started', re.compile(r'开始实现|开工|\bimplement', re.IGNORECASE)),
    ('issue_resolved', re.compile(r'修复|解决|\bresolved\b|\bfixed\b', re.IGNORECASE)),
    ('milestone_reached', re.compile(r'里程碑|完成|发布|\bshipped\b|\breleased\b|\bmilestone\b', re.IGNORECASE)),
)

ENTITY_TYPE_PATTERNS = (
    ('project', re.compile(r'project|repo|服务|项目|工程', re.IGNORECASE)),
    ('organization', re.compile(r'^(?:org|organization|company|team|inc|corp|labs)$|公司|团队|集团', re.IGNORECASE)),
    ('place', re.compile(r'^(?:shanghai|beijing|city)$|北京|上海|地点|地址|城市', re.IGNORECASE)),
    ('person', re.compile(r'^(?:mr|mrs|ms|dr)$|先生|女士|老师|经理')),
)
_ACRONYM = re.compile(r'^[A-Z]{2,6}$')

MEMORY_KIND_PATTERNS = (
    ('ephemeral', re.compile(r'临时|本次|仅本次|\bonly this time\b|\btemporary\b', re.IGNORECASE)),
    ('task', re.compile(r'待办|下一步|接下来|需要完成|计划|\btodo\b|\btask\b', re.IGNORECASE)),
    ('preference', re.compile(r'偏好|喜欢|讨厌|不喜欢|习惯|\bprefer|\bpreference\b|\blike\b|\bhate\b', re.IGNORECASE)),
    ('rule', re.compile(r'规则|约定|必须|务必|不要|永远|\bpolicy\b|\brule\b|\bmust\b|\bnever\b|\balways\b', re.IGNORECASE)),
)

TTL_HINTS = (
    (re.compile(r'今天|\btoday\b', re.IGNORECASE), 1),
    (re.compile(r'本周|一周|7天|\bthis week\b', re.IGNORECASE), 7),
    (re.compile(r'本月|30天|\bthis month\b', re.IGNORECASE), 30),
)
DEFAULT_EPHEMERAL_DAYS = 7


def extract_text(content: Any) -> str:
    """Plain text of a message content (string, or a list of {'type': 'text'} parts)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, Mapping) and part.get('type') == 'text' and isinstance(part.get('text'), str):
                parts.append(part['text'])
        return '\n'.join(parts)
    return ''


def collect_messages(messages: Sequence[Any]) -> List[Tuple[str, str]]:
    """Extract (role, text) pairs for user and assistant turns."""
    collected = []
    for item in messages or []:
        if not isinstance(item, Mapping):
            continue
        record = item if 'role' in item else item.get('message')
        if not isinstance(record, Mapping):
            continue
        role = record.get('role')
        if role not in ('user', 'assistant'):
            continue
        text = extract_text(record.get('content')).replace('\r\n', '\n').strip()
        if text:
            collected.append((role, text))
    return collected


def tokenize(text: str) -> List[str]:
    """Case-folded ASCII words and CJK runs of 2..32 characters, minus stopwords."""
    tokens = []
    for raw in _TOKEN_SPLIT.split(text):
        if 2 <= len(raw) <= 32:
            token = raw.casefold()
            if token not in STOPWORDS:
                tokens.append(token)
    return tokens


def _surface_forms(text: str) -> Dict[str, str]:
    forms: Dict[str, str] = {}
    for raw in _TOKEN_SPLIT.split(text):
        if 2 <= len(raw) <= 32:
            forms.setdefault(raw.casefold(), raw)
    return forms


def top_frequencies(tokens: List[str], k: int) -> List[Tuple[str, int]]:
    """Most frequent tokens; ties keep first-occurrence order."""
    counts = Counter(tokens)
    return sorted(counts.items(), key=lambda item: -item[1])[:k]


def guess_entity_type(name: str) -> str:
    for entity_type, pattern in ENTITY_TYPE_PATTERNS:
        if pattern.search(name):
            return entity_type
    if _ACRONYM.match(name):
        return 'concept'
    return 'other'


def detect_user_intent(text: str) -> float:
    return HIGH_INTENT if any(pattern.search(text) for pattern in INTENT_MARKERS) else LOW_INTENT


def detect_memory_kind(text: str) -> str:
    for kind, pattern in MEMORY_KIND_PATTERNS:
        if pattern.search(text):
            return kind
    return 'fact'


def date_hint(text: str) -> Optional[str]:
    """ISO timestamp for the first YYYY-MM-DD / YYYY/MM/DD date in the text."""
    match = _DATE_HINT.search(text)
    if not match:
        return None
    month = max(1, min(12, int(match.group(2))))
    day = max(1, min(31, int(match.group(3))))
    return f'{match.group(1)}-{month:02d}-{day:02d}T00:00:00.000Z'


def guess_memory_key(kind: str, subject: Optional[str]) -> Optional[str]:
    if not subject:
        return 'rule:general' if kind == 'rule' else None
    key = f'{kind}:{subject}'.lower()
    return key if len(key) <= MAX_MEMORY_KEY_LENGTH else f'{kind}:{stable_hash(key)}'


def guess_expires_at(kind: str, text: str, now: datetime) -> Optional[str]:
    if kind != 'ephemeral':
        return None
    for pattern, days in TTL_HINTS:
        if pattern.search(text):
            return add_days_iso(now, days)
    return add_days_iso(now, DEFAULT_EPHEMERAL_DAYS)


def jaccard(a: Set[str], b: Set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


class SessionAnalyzer:
    """Turn a transcript into entities, topics, events and memory drafts."""

    def __init__(self, scorer: Optional[ImportanceScorer] = None):
        self.scorer = scorer or ImportanceScorer()

    def analyze(self,
                session_id: str,
                messages: Sequence[Any],
                max_memories_per_session: int,
                importance_threshold: float,
                now: Optional[datetime] = None,
                screen: Optional[Callable[[str], bool]] = None) -> AnalysisResult:
        """Analyze one transcript window.

        Entities, topics and events describe the whole window; only drafts are capped.

        Args:
            session_id: Session the transcript belongs to
            messages: Transcript items ({'role', 'content'} or {'message': {...}})
            max_memories_per_session: Cap on returned drafts
            importance_threshold: Minimum importance for a draft to be retained
            now: Analysis time (defaults to current UTC time)
            screen: Predicate flagging sensitive text. Flagged messages contribute no
                topics, entities, events or drafts, and flagged names are dropped.

        Returns:
            AnalysisResult whose filter counters sum to the number of segments considered
        """
        now = now or utc_now()
        collected = collect_messages(messages)
        withheld = 0
        if screen is not None:
            flagged = [screen(text) for _, text in collected]
            withheld = sum(1 for (_, text), hit in zip(collected, flagged)
                           if hit and len(' '.join(text.split())) >= MIN_SEGMENT_LENGTH)
            collected = [message for message, hit in zip(collected, flagged) if not hit]
            if withheld:
                logger.debug(f'Withheld {withheld} sensitive messages from analysis of session {session_id}')
        joined = '\n'.join(text for _, text in collected)
        tokens = tokenize(joined)
        counts = Counter(tokens)

        topics = [
            ExtractedTopic(name=term, frequency=count, importance=min(1.0, count / 10))
            for term, count in top_frequencies(tokens, MAX_TOPICS) if count >= 2
        ]

        surface = _surface_forms(joined)
        entities = [
            ExtractedEntity(name=surface.get(term, term), type=guess_entity_type(surface.get(term, term)), frequency=count)
            for term, count in top_frequencies(tokens, 30) if _HAS_LETTER.search(term)
        ][:MAX_ENTITIES]

        if screen is not None:
            topics = [topic for topic in topics if not screen(topic.name)]
            entities = [entity for entity in entities if not screen(entity.name)]

        events = self._extract_events(collected, now)

        segments: List[Tuple[str, Optional[ExtractedEvent]]] = []
        for _, text in collected:
            content = ' '.join(text.split())
            if len(content) >= MIN_SEGMENT_LENGTH:
                segments.append((content, None))
        segments.extend((f'Event({event.type}): {event.summary}', event) for event in events)

        topic_names = {topic.name for topic in topics}
        candidates: List[Tuple[int, CandidateMemoryDraft]] = []
        seen_contents: Set[str] = set()
        earlier_token_sets: List[Set[str]] = []
        for index, (content, event) in enumerate(segments):
            normalized = content.casefold()
            if normalized in seen_contents:
                continue
            seen_contents.add(normalized)

            draft = self._build_draft(content, event, counts, topic_names, entities, topics, earlier_token_sets, now)
            earlier_token_sets.append(set(tokenize(content)))
            if draft.importance >= importance_threshold:
                candidates.append((index, draft))

        cap = max(0, int(max_memories_per_session))
        if len(candidates) > cap:
            ranked = sorted(candidates, key=lambda item: (-item[1].importance, item[0]))[:cap]
            candidates = sorted(ranked, key=lambda item: item[0])

        drafts = [draft for _, draft in candidates]
        counters = FilterCounts(added=len(drafts), filtered=len(segments) + withheld - len(drafts))

        logger.debug(f'Analyzed session {session_id}: {len(collected)} messages, {len(segments)} segments, '
                     f'{counters.added} drafts, {counters.filtered} filtered')
        return AnalysisResult(entities=entities, topics=topics, events=events, drafts=drafts, filtered=counters)

    def extract_hints(self, text: str) -> Tuple[List[str], List[str]]:
        """Entity and topic hints for a single query string.

        Returns:
            Tuple of (entity names, topic names)
        """
        terms = [term for term, _ in top_frequencies(tokenize(text or ''), MAX_TOPICS)]
        return terms[:MAX_ENTITIES], terms[:MAX_ENTITIES]

    def _extract_events(self, collected: List[Tuple[str, str]], now: datetime) -> List[ExtractedEvent]:
        events = []
        for _, text in collected:
            for event_type, pattern in EVENT_PATTERNS:
                if pattern.search(text):
                    events.append(
                        ExtractedEvent(type=event_type,
                                       summary=text[:EVENT_SUMMARY_LENGTH],
                                       timestamp=date_hint(text) or to_iso(now)))
                    break
        return events

    def _build_draft(self, content: str, event: Optional[ExtractedEvent], counts: Counter, topic_names: Set[str],
                     entities: List[ExtractedEntity], topics: List[ExtractedTopic], earlier_token_sets: List[Set[str]],
                     now: datetime) -> CandidateMemoryDraft:
        segment_tokens = set(tokenize(content))
        recurring = [counts[token] for token in segment_tokens if token in topic_names]
        overlap = max((jaccard(segment_tokens, earlier) for earlier in earlier_token_sets), default=0.0)
        signals = DraftSignals(frequency=max(recurring, default=2 if event else 1),
                               user_intent=EVENT_INTENT if event else detect_user_intent(content),
                               length=len(content),
                               novelty=1.0 - overlap)

        entity_names = [entity.name for entity in entities if entity.name.casefold() in segment_tokens][:MAX_DRAFT_LABELS]
        topic_labels = [topic.name for topic in topics if topic.name in segment_tokens][:MAX_DRAFT_LABELS]

        kind = 'fact' if event else detect_memory_kind(content)
        subject = entity_names[0] if entity_names else (topic_labels[0] if topic_labels else None)
        return CandidateMemoryDraft(content=content,
                                    entities=entity_names,
                                    topics=topic_labels,
                                    created_at=event.timestamp if event else (date_hint(content) or to_iso(now)),
                                    signals=signals,
                                    importance=self.scorer.score(signals),
                                    kind=kind,
                                    subject=subject,
                                    memory_key=guess_memory_key(kind, subject),
                                    expires_at=guess_expires_at(kind, content, now),
                                    confidence=max(0.0, min(1.0, 0.4 + 0.6 * signals.user_intent)))
