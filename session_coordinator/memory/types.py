"""
Type definitions for session memory.

Notes are append-only: a status change (such as lifting a constraint) is a
new note that references the original, never an edit.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


PAYLOAD_SCHEMA_VERSION = 1


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a datetime from string or return as-is if already datetime.

    Handles ISO format strings including 'Z' suffix for UTC. Naive values
    are assumed to be UTC.

    Args:
        value: String or datetime to parse

    Returns:
        Parsed timezone-aware datetime or None
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        # Handle 'Z' suffix for UTC
        if value.endswith('Z'):
            value = value[:-1] + '+00:00'
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value
    return None


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as ISO-8601 UTC with millisecond precision."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class NoteType(str, Enum):
    """Semantic type of a session note."""

    DECISION = "decision"
    HYPOTHESIS = "hypothesis"
    BLOCKER = "blocker"
    LEARNING = "learning"
    PATTERN = "pattern"
    CONSTRAINT = "constraint"


# Types returned by extract_valuable_memories (constraints are excluded)
VALUABLE_NOTE_TYPES = [
    NoteType.DECISION,
    NoteType.HYPOTHESIS,
    NoteType.BLOCKER,
    NoteType.LEARNING,
    NoteType.PATTERN,
]

ALL_NOTE_TYPES = VALUABLE_NOTE_TYPES + [NoteType.CONSTRAINT]


class ConstraintScope(str, Enum):
    """How far a constraint reaches."""

    SESSION = "session"
    TASK = "task"
    FILE = "file"


class ConstraintStatus(str, Enum):
    """Lifecycle state of a constraint."""

    ACTIVE = "active"
    LIFTED = "lifted"


class DetectedFrom(str, Enum):
    """Whether a constraint was stated explicitly or inferred."""

    AUTO = "auto"
    EXPLICIT = "explicit"


@dataclass(frozen=True)
class SessionNote:
    """
    A single note to be written into session memory.

    Attributes:
        note_type: Semantic type of the note
        content: Free text; this is what gets embedded
        metadata: Caller-supplied key-value data
        timestamp: Creation instant
    """

    note_type: NoteType
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "type": self.note_type.value,
            "content": self.content,
            "metadata": dict(self.metadata),
            "timestamp": format_timestamp(self.timestamp),
        }


# ========== Stored payload schema ==========


class NotePayload(BaseModel):
    """Payload stored alongside a non-constraint note."""

    schema_version: int = PAYLOAD_SCHEMA_VERSION
    type: Literal["decision", "hypothesis", "blocker", "learning", "pattern"]
    content: str
    timestamp: str
    session_id: str
    project_path: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ConstraintPayload(BaseModel):
    """Payload stored alongside a constraint note."""

    schema_version: int = PAYLOAD_SCHEMA_VERSION
    type: Literal["constraint"]
    content: str
    timestamp: str
    session_id: str
    project_path: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    constraint_id: str
    detected_from: DetectedFrom = DetectedFrom.EXPLICIT
    scope: ConstraintScope = ConstraintScope.SESSION
    status: ConstraintStatus = ConstraintStatus.ACTIVE
    keywords: List[str] = Field(default_factory=list)
    violated_count: int = 0
    lifted_at: Optional[str] = None


StoredPayload = Annotated[
    Union[NotePayload, ConstraintPayload],
    Field(discriminator="type"),
]

_payload_adapter: TypeAdapter = TypeAdapter(StoredPayload)


def validate_payload(data: Dict[str, Any]) -> Union[NotePayload, ConstraintPayload]:
    """
    Validate a raw payload read from the vector index.

    Raises:
        pydantic.ValidationError: If the payload does not match a known shape
    """
    return _payload_adapter.validate_python(data)


# ========== Retrieval views ==========


@dataclass
class SearchResult:
    """
    Retrieval-time view of a stored note.

    Attributes:
        score: Similarity in [0, 1], or 1.0 for exact retrieval
        note_type: Type of the note
        content: Note content
        timestamp: ISO timestamp recorded by the writer
        metadata: Caller-supplied metadata
        point_id: Identifier of the point in the vector index
        payload: The validated stored payload
    """

    score: float
    note_type: NoteType
    content: str
    timestamp: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    point_id: Optional[Union[int, str]] = None
    payload: Optional[Union[NotePayload, ConstraintPayload]] = None

    @property
    def created_at(self) -> Optional[datetime]:
        """Parsed timestamp, if it can be parsed."""
        try:
            return parse_datetime(self.timestamp)
        except ValueError:
            return None

    @classmethod
    def from_payload(
        cls,
        payload: Union[NotePayload, ConstraintPayload],
        score: float,
        point_id: Optional[Union[int, str]] = None,
    ) -> "SearchResult":
        """Build a result from a validated payload."""
        return cls(
            score=score,
            note_type=NoteType(payload.type),
            content=payload.content,
            timestamp=payload.timestamp,
            metadata=dict(payload.metadata),
            point_id=point_id,
            payload=payload,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = {
            "score": self.score,
            "type": self.note_type.value,
            "content": self.content,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        }
        if isinstance(self.payload, ConstraintPayload):
            result["constraint"] = self.payload.model_dump(
                mode="json",
                include={"constraint_id", "detected_from", "scope", "status", "keywords", "lifted_at"},
            )
        return result


@dataclass
class Constraint:
    """
    A standing behavioral rule, projected from constraint notes.

    Attributes:
        id: Unique constraint identifier
        content: The rule text
        detected_from: Whether the rule was explicit or inferred
        timestamp: When the rule was recorded
        scope: Session, task or file scope
        status: Active or lifted
        keywords: Keywords extracted from the rule text
        violated_count: Number of recorded violations
        metadata: Caller-supplied metadata
    """

    id: str
    content: str
    detected_from: DetectedFrom = DetectedFrom.EXPLICIT
    timestamp: str = ""
    scope: ConstraintScope = ConstraintScope.SESSION
    status: ConstraintStatus = ConstraintStatus.ACTIVE
    keywords: List[str] = field(default_factory=list)
    violated_count: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: ConstraintPayload) -> "Constraint":
        """Project a stored constraint payload."""
        return cls(
            id=payload.constraint_id,
            content=payload.content,
            detected_from=payload.detected_from,
            timestamp=payload.timestamp,
            scope=payload.scope,
            status=payload.status,
            keywords=list(payload.keywords),
            violated_count=payload.violated_count,
            metadata=dict(payload.metadata),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "content": self.content,
            "detected_from": self.detected_from.value,
            "timestamp": self.timestamp,
            "scope": self.scope.value,
            "status": self.status.value,
            "keywords": self.keywords,
            "violated_count": self.violated_count,
            "metadata": self.metadata,
        }


@dataclass
class SessionStats:
    """Statistics about a session's memory."""

    collection: str
    session_id: str
    total_notes: int = 0
    notes_by_type: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "collection": self.collection,
            "session_id": self.session_id,
            "total_notes": self.total_notes,
            "notes_by_type": self.notes_by_type,
        }
