"""
Stuck-detection result types.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class StuckPatternType(str, Enum):
    """The three stuck heuristics."""

    REPEATED_BLOCKER = "repeated_blocker"
    NO_PROGRESS = "no_progress"
    ERROR_LOOP = "error_loop"


@dataclass
class StuckDetails:
    """
    Evidence behind a stuck verdict.

    Attributes:
        description: Human-readable summary
        evidence: Supporting lines, each prefixed with a ``[HH:MM:SS]`` time
        time_since_first: Span of a repeated blocker (repeated_blocker only)
        idle_time: Time since the last file change (no_progress only)
        repetition_count: Size of the error group (error_loop only)
    """

    description: str
    evidence: List[str] = field(default_factory=list)
    time_since_first: Optional[str] = None
    idle_time: Optional[str] = None
    repetition_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, omitting unset type-specific fields."""
        result: Dict[str, Any] = {
            "description": self.description,
            "evidence": list(self.evidence),
        }
        if self.time_since_first is not None:
            result["time_since_first"] = self.time_since_first
        if self.idle_time is not None:
            result["idle_time"] = self.idle_time
        if self.repetition_count is not None:
            result["repetition_count"] = self.repetition_count
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StuckDetails":
        """Create from dictionary."""
        return cls(
            description=data.get("description", ""),
            evidence=list(data.get("evidence", [])),
            time_since_first=data.get("time_since_first"),
            idle_time=data.get("idle_time"),
            repetition_count=data.get("repetition_count"),
        )


@dataclass
class StuckPattern:
    """One heuristic's verdict."""

    type: StuckPatternType
    detected: bool
    confidence: float
    details: StuckDetails

    @classmethod
    def not_detected(cls, pattern_type: StuckPatternType, description: str, **details) -> "StuckPattern":
        """Build a negative verdict."""
        return cls(
            type=pattern_type,
            detected=False,
            confidence=0.0,
            details=StuckDetails(description=description, **details),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "type": self.type.value,
            "detected": self.detected,
            "confidence": self.confidence,
            "details": self.details.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StuckPattern":
        """Create from dictionary."""
        return cls(
            type=StuckPatternType(data["type"]),
            detected=bool(data.get("detected", False)),
            confidence=float(data.get("confidence", 0.0)),
            details=StuckDetails.from_dict(data.get("details", {})),
        )


@dataclass
class StuckAnalysis:
    """
    Combined verdict of all three heuristics.

    ``cooldown_active`` is advisory: detection always runs, the flag only
    tells the caller whether an alert was already raised recently.
    """

    stuck: bool
    patterns: List[StuckPattern]
    overall_confidence: float
    last_alert_time: Optional[str] = None
    cooldown_active: bool = False

    def get_pattern(self, pattern_type: StuckPatternType) -> Optional[StuckPattern]:
        """Find the pattern of a given type."""
        for pattern in self.patterns:
            if pattern.type == pattern_type:
                return pattern
        return None

    @property
    def detected_patterns(self) -> List[StuckPattern]:
        """Patterns that fired."""
        return [p for p in self.patterns if p.detected]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "stuck": self.stuck,
            "patterns": [p.to_dict() for p in self.patterns],
            "overall_confidence": self.overall_confidence,
            "last_alert_time": self.last_alert_time,
            "cooldown_active": self.cooldown_active,
        }
