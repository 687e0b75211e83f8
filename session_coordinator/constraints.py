"""
Constraint Tracker - session-scoped behavioral rules.

Constraints are stored as constraint notes in session memory. Lifting a
constraint appends a new note with status ``lifted``; nothing is removed.
Violation checks combine embedding similarity with literal keyword
matching, since embedding models under-weight short imperative phrases
such as "no npm installs".
"""

import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import ConstraintNotFoundError
from .memory.embeddings import cosine_similarity
from .memory.manager import SessionMemoryStore
from .memory.types import (
    Constraint,
    ConstraintPayload,
    ConstraintScope,
    ConstraintStatus,
    DetectedFrom,
    NoteType,
    SessionNote,
    format_timestamp,
    parse_datetime,
    utc_now,
)


logger = logging.getLogger(__name__)

# Phrases that introduce a prohibition or obligation
CONSTRAINT_INDICATORS = [
    "no ", "not ", "don't ", "doesn't ", "never ",
    "must ", "always ", "require ", "should ",
    "avoid ", "prevent ", "prohibit ", "forbidden ",
]

# Words captured after each indicator
WORDS_AFTER_INDICATOR = 5

SIMILARITY_THRESHOLD = 0.5

LIFTED_PREFIX = "[LIFTED] "


def extract_keywords(text: str) -> List[str]:
    """
    Extract constraint keywords from text.

    For each indicator phrase present (first occurrence), keeps the
    indicator itself plus the following words longer than two characters.

    Args:
        text: Constraint text

    Returns:
        Deduplicated keywords in discovery order
    """
    keywords: List[str] = []
    lower_text = text.lower()

    for indicator in CONSTRAINT_INDICATORS:
        index = lower_text.find(indicator)
        if index == -1:
            continue
        following = lower_text[index + len(indicator):].split()[:WORDS_AFTER_INDICATOR]
        keywords.append(indicator.strip())
        keywords.extend(w for w in following if len(w) > 2)

    return list(dict.fromkeys(keywords))


def matching_keywords(text: str, keywords: List[str]) -> List[str]:
    """Keywords contained (case-insensitively) in text."""
    lower_text = text.lower()
    return [k for k in keywords if k and k.lower() in lower_text]


def generate_constraint_id() -> str:
    """Generate a unique constraint id."""
    return f"constraint-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


@dataclass
class ConstraintViolation:
    """A single constraint a proposed action would violate."""

    constraint: Constraint
    severity: str
    reason: str
    similarity: float = 0.0
    matched_keywords: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "constraint": self.constraint.to_dict(),
            "severity": self.severity,
            "reason": self.reason,
            "similarity": round(self.similarity, 4),
            "matched_keywords": self.matched_keywords,
        }


@dataclass
class ViolationReport:
    """Result of checking a proposed action against active constraints."""

    violated: bool
    violations: List[ConstraintViolation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "violated": self.violated,
            "violations": [v.to_dict() for v in self.violations],
        }


class ConstraintTracker:
    """
    Tracks, lists, lifts and checks session constraints.

    Usage:
        tracker = ConstraintTracker(store)

        constraint = await tracker.track_constraint("No external API calls during processing")
        report = await tracker.check_violation("call the payments API during processing")
        if report.violated:
            ...
        await tracker.lift_constraint(constraint.id)
    """

    def __init__(self, store: SessionMemoryStore):
        self._store = store

    @property
    def store(self) -> SessionMemoryStore:
        """Get the underlying session memory store."""
        return self._store

    async def track_constraint(
        self,
        content: str,
        detected_from: DetectedFrom = DetectedFrom.EXPLICIT,
        scope: ConstraintScope = ConstraintScope.SESSION,
        keywords: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Constraint:
        """
        Record a new active constraint.

        Args:
            content: The rule text
            detected_from: Whether the rule was explicit or inferred
            scope: Session, task or file scope
            keywords: Explicit keywords; extracted from content when omitted
            metadata: Additional caller metadata

        Returns:
            The constructed constraint

        Raises:
            EmbeddingProviderError: If embedding generation fails
            VectorIndexError: If the write fails
        """
        detected_from = DetectedFrom(detected_from)
        scope = ConstraintScope(scope)

        constraint = Constraint(
            id=generate_constraint_id(),
            content=content,
            detected_from=detected_from,
            timestamp=format_timestamp(utc_now()),
            scope=scope,
            status=ConstraintStatus.ACTIVE,
            keywords=keywords if keywords is not None else extract_keywords(content),
            violated_count=0,
            metadata=dict(metadata or {}),
        )

        stored = await self._store.save_note(
            SessionNote(NoteType.CONSTRAINT, content, metadata=constraint.metadata),
            extra_payload={
                "constraint_id": constraint.id,
                "detected_from": detected_from.value,
                "scope": scope.value,
                "status": ConstraintStatus.ACTIVE.value,
                "keywords": constraint.keywords,
                "violated_count": 0,
            },
        )
        constraint.timestamp = stored.timestamp

        logger.info(f"Tracked constraint: {content}")
        return constraint

    async def _constraint_notes(self) -> List[ConstraintPayload]:
        notes = await self._store.get_all_notes_by_type(NoteType.CONSTRAINT)
        return [n.payload for n in notes if isinstance(n.payload, ConstraintPayload)]

    async def get_active_constraints(self) -> List[Constraint]:
        """
        List constraints whose latest status note is active.

        A lift note supersedes the original; on equal timestamps the lift
        wins.
        """
        latest: Dict[str, ConstraintPayload] = {}
        for payload in await self._constraint_notes():
            current = latest.get(payload.constraint_id)
            if current is None or _status_order(payload) > _status_order(current):
                latest[payload.constraint_id] = payload

        return [
            Constraint.from_payload(payload)
            for payload in latest.values()
            if payload.status == ConstraintStatus.ACTIVE
        ]

    async def lift_constraint(self, constraint_id: str) -> Constraint:
        """
        Lift a constraint by appending a lifted note.

        Args:
            constraint_id: Id of the constraint to lift

        Returns:
            The lifted constraint

        Raises:
            ConstraintNotFoundError: If no constraint note has this id
        """
        notes = [n for n in await self._constraint_notes() if n.constraint_id == constraint_id]
        if not notes:
            raise ConstraintNotFoundError(constraint_id)

        original = next(
            (n for n in notes if n.status == ConstraintStatus.ACTIVE),
            notes[0],
        )
        content = original.content
        if content.startswith(LIFTED_PREFIX):
            content = content[len(LIFTED_PREFIX):]

        lifted_at = format_timestamp(utc_now())
        stored = await self._store.save_note(
            SessionNote(NoteType.CONSTRAINT, f"{LIFTED_PREFIX}{content}", metadata=original.metadata),
            extra_payload={
                "constraint_id": constraint_id,
                "detected_from": original.detected_from.value,
                "scope": original.scope.value,
                "status": ConstraintStatus.LIFTED.value,
                "keywords": list(original.keywords),
                "violated_count": original.violated_count,
                "lifted_at": lifted_at,
            },
        )

        logger.info(f"Lifted constraint: {content}")
        return Constraint.from_payload(stored.payload)

    async def check_violation(self, proposed_action: str) -> ViolationReport:
        """
        Check a proposed action against every active constraint.

        A constraint is violated when the cosine similarity between the
        action and the constraint text exceeds 0.5, or when any of its
        keywords appears in the action.

        Args:
            proposed_action: Description of what is about to be done

        Returns:
            Report listing each violated constraint

        Raises:
            EmbeddingProviderError: If embedding generation fails
        """
        active = await self.get_active_constraints()
        if not active:
            return ViolationReport(violated=False)

        action_vector, *constraint_vectors = await self._store.embed_batch(
            [proposed_action] + [c.content for c in active]
        )

        violations = []
        for constraint, vector in zip(active, constraint_vectors):
            similarity = cosine_similarity(action_vector, vector)
            matched = matching_keywords(proposed_action, constraint.keywords)

            if similarity <= SIMILARITY_THRESHOLD and not matched:
                continue

            if matched:
                reason = f"Matches constraint keywords: {', '.join(matched)}"
            else:
                reason = f"Semantically similar to constraint ({similarity * 100:.0f}% match)"

            violations.append(ConstraintViolation(
                constraint=constraint,
                severity="high" if constraint.scope == ConstraintScope.SESSION else "medium",
                reason=reason,
                similarity=similarity,
                matched_keywords=matched,
            ))

        if violations:
            logger.warning(f"Proposed action violates {len(violations)} constraint(s)")

        return ViolationReport(violated=bool(violations), violations=violations)


def _status_order(payload: ConstraintPayload):
    """Ordering key: later notes rank higher, lifted wins ties."""
    try:
        parsed = parse_datetime(payload.timestamp)
    except ValueError:
        parsed = None
    stamp = parsed.timestamp() if parsed else float("-inf")
    return (stamp, payload.status == ConstraintStatus.LIFTED)
