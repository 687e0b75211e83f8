"""
Recovery Engine - suggestions for getting a stuck session moving again.

Suggestions come from the current session's own decisions, learnings and
patterns, ranked by:
- Relevance (semantic similarity to the stuck pattern)
- Recency (newer notes preferred)
- Success rate (0.5 when unknown)

Past sessions and a curated pattern library are further sources that
plug in via ``SuggestionSource``; only the current session is searched
here.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .memory.manager import SessionMemoryStore
from .memory.types import NoteType, SearchResult, parse_datetime
from .stuck.types import StuckPattern, StuckPatternType


logger = logging.getLogger(__name__)

SOLUTION_NOTE_TYPES = (NoteType.DECISION, NoteType.LEARNING, NoteType.PATTERN)

SESSION_SEARCH_LIMIT = 10

RELEVANCE_WEIGHT = 0.5
RECENCY_WEIGHT = 0.3
SUCCESS_WEIGHT = 0.2

DEFAULT_SUCCESS_RATE = 0.5
UNKNOWN_RECENCY = 0.5

_TIMESTAMP_PREFIX = re.compile(r"^\[.*?\]\s*")
_FIRST_SENTENCE = re.compile(r"^[^.!?]+[.!?]")
_NUMBERED_STEP = re.compile(r"^\d+\.\s+(.+)$", re.MULTILINE)
_BULLET_STEP = re.compile(r"^[-*]\s+(.+)$", re.MULTILINE)
_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_CODE_BLOCK = re.compile(r"```[\s\S]*?```")
_CODE_FENCE = re.compile(r"```\w*\n?")
_INLINE_CODE = re.compile(r"`[^`]+`")


class SuggestionSource(str, Enum):
    """Where a suggestion came from."""

    CURRENT_SESSION = "current_session"
    PAST_SESSION = "past_session"
    PATTERN_LIBRARY = "pattern_library"


@dataclass
class RecoveryImplementation:
    """Actionable part of a suggestion."""

    steps: List[str] = field(default_factory=list)
    code_example: Optional[str] = None
    references: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "steps": list(self.steps),
            "references": list(self.references),
        }
        if self.code_example is not None:
            result["code_example"] = self.code_example
        return result


@dataclass
class RecoverySuggestion:
    """A candidate way out of a stuck pattern."""

    title: str
    description: str
    source: SuggestionSource
    relevance_score: float
    implementation: RecoveryImplementation
    session_id: Optional[str] = None
    timestamp: Optional[str] = None
    success_rate: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        metadata: Dict[str, Any] = {}
        if self.session_id is not None:
            metadata["session_id"] = self.session_id
        if self.timestamp is not None:
            metadata["timestamp"] = self.timestamp
        if self.success_rate is not None:
            metadata["success_rate"] = self.success_rate
        return {
            "title": self.title,
            "description": self.description,
            "source": self.source.value,
            "relevance_score": self.relevance_score,
            "implementation": self.implementation.to_dict(),
            "metadata": metadata,
        }


@dataclass
class SearchDuration:
    """Milliseconds spent per source."""

    session: float = 0.0
    historical: float = 0.0
    total: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "session": round(self.session, 2),
            "historical": round(self.historical, 2),
            "total": round(self.total, 2),
        }


@dataclass
class RecoveryAnalysis:
    """Suggestions generated for one stuck pattern."""

    stuck_pattern: StuckPattern
    suggestions: List[RecoverySuggestion]
    search_duration: SearchDuration = field(default_factory=SearchDuration)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "stuck_pattern": self.stuck_pattern.to_dict(),
            "suggestions": [s.to_dict() for s in self.suggestions],
            "search_duration": self.search_duration.to_dict(),
        }


# ========== Content extraction ==========


def build_search_query(pattern: StuckPattern) -> str:
    """
    Build the search query for a stuck pattern.

    Blocker and error patterns search for their first evidence line with
    the leading ``[time]`` bracket removed.
    """
    first_evidence = pattern.details.evidence[0] if pattern.details.evidence else ""
    content = _TIMESTAMP_PREFIX.sub("", first_evidence, count=1)

    if pattern.type == StuckPatternType.REPEATED_BLOCKER:
        return f"solution for: {content}"
    if pattern.type == StuckPatternType.ERROR_LOOP:
        return f"fix for: {content}"
    if pattern.type == StuckPatternType.NO_PROGRESS:
        return "overcome development blocker productivity tips"
    return "development problem solution"


def extract_title(content: str) -> str:
    """First sentence, or the first 50 characters."""
    match = _FIRST_SENTENCE.match(content)
    if match:
        return match.group(0).strip()
    return content[:50] + ("..." if len(content) > 50 else "")


def extract_steps(content: str) -> List[str]:
    """Numbered list items, else bullet items, else the first three sentences."""
    numbered = _NUMBERED_STEP.findall(content)
    if numbered:
        return numbered

    bullets = _BULLET_STEP.findall(content)
    if bullets:
        return bullets

    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(content) if s.strip()]
    return sentences[:3]


def extract_code_example(content: str) -> Optional[str]:
    """Fenced code block body, else three or more inline code spans."""
    block = _CODE_BLOCK.search(content)
    if block:
        return _CODE_FENCE.sub("", block.group(0)).strip()

    inline = _INLINE_CODE.findall(content)
    if len(inline) > 2:
        return "\n".join(inline)

    return None


def recency_score(timestamp: Optional[str], now: Optional[datetime] = None) -> float:
    """
    Bucketed recency: under 1h 1.0, under 24h 0.7, under 7 days 0.4, else 0.2.

    Unknown or unparseable timestamps score 0.5.
    """
    try:
        created_at = parse_datetime(timestamp)
    except ValueError:
        created_at = None
    if created_at is None:
        return UNKNOWN_RECENCY

    now = now or datetime.now(timezone.utc)
    age_hours = (now - created_at).total_seconds() / 3600

    if age_hours < 1:
        return 1.0
    if age_hours < 24:
        return 0.7
    if age_hours < 24 * 7:
        return 0.4
    return 0.2


def composite_score(suggestion: RecoverySuggestion, now: Optional[datetime] = None) -> float:
    """Weighted relevance, recency and success rate."""
    success_rate = suggestion.success_rate if suggestion.success_rate is not None else DEFAULT_SUCCESS_RATE
    return (
        RELEVANCE_WEIGHT * suggestion.relevance_score
        + RECENCY_WEIGHT * recency_score(suggestion.timestamp, now)
        + SUCCESS_WEIGHT * success_rate
    )


def suggestion_from_note(note: SearchResult, session_id: Optional[str] = None) -> RecoverySuggestion:
    """Turn a session note into a suggestion."""
    return RecoverySuggestion(
        title=extract_title(note.content),
        description=note.content,
        source=SuggestionSource.CURRENT_SESSION,
        relevance_score=note.score,
        implementation=RecoveryImplementation(
            steps=extract_steps(note.content),
            code_example=extract_code_example(note.content),
            references=[note.timestamp],
        ),
        session_id=session_id,
        timestamp=note.timestamp,
    )


class RecoveryEngine:
    """
    Generates ranked recovery suggestions for stuck patterns.

    Usage:
        engine = RecoveryEngine(store)
        analysis = await engine.generate_suggestions(pattern, limit=3)
        for suggestion in analysis.suggestions:
            print(suggestion.title)
    """

    def __init__(
        self,
        store: SessionMemoryStore,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._clock = clock

    async def generate_suggestions(self, pattern: StuckPattern, limit: int = 3) -> RecoveryAnalysis:
        """
        Generate suggestions for a stuck pattern.

        Never raises: any failure yields an empty suggestion list.

        Args:
            pattern: The stuck pattern to recover from
            limit: Maximum suggestions returned

        Returns:
            Ranked suggestions with per-source timings
        """
        start = time.perf_counter()
        duration = SearchDuration()

        try:
            query = build_search_query(pattern)

            session_start = time.perf_counter()
            session_suggestions = await self.search_current_session(query)
            duration.session = (time.perf_counter() - session_start) * 1000

            ranked = self.rank_suggestions(session_suggestions)
            suggestions = ranked[:limit]
        except Exception as e:
            logger.error(f"Failed to generate suggestions: {e}")
            suggestions = []

        duration.total = (time.perf_counter() - start) * 1000
        logger.info(f"Generated {len(suggestions)} recovery suggestion(s) for {pattern.type.value}")

        return RecoveryAnalysis(
            stuck_pattern=pattern,
            suggestions=suggestions,
            search_duration=duration,
        )

    async def search_current_session(self, query: str) -> List[RecoverySuggestion]:
        """Search the session for decisions, learnings and patterns."""
        results = await self._store.search(query, SESSION_SEARCH_LIMIT)
        session_id = getattr(self._store, "session_id", None)
        return [
            suggestion_from_note(note, session_id)
            for note in results
            if note.note_type in SOLUTION_NOTE_TYPES
        ]

    def rank_suggestions(self, suggestions: List[RecoverySuggestion]) -> List[RecoverySuggestion]:
        """Sort by descending composite score."""
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        return sorted(suggestions, key=lambda s: composite_score(s, now), reverse=True)
