"""
Stuck Detector - heuristics for spotting a session that is going nowhere.

Three independent heuristics run concurrently on every analysis:

1. Repeated blocker: the same blocker noted three or more times
2. No progress: no file in the project changed for twenty minutes
3. Error loop: the same error recorded five or more times

Each heuristic degrades to a negative verdict on failure, so one broken
dependency never hides the other two.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..memory.manager import SessionMemoryStore
from ..memory.types import NoteType, SearchResult, format_timestamp
from .filesystem import DEFAULT_IGNORED_DIRS, latest_modification_time_async
from .grouping import JaccardSimilarity, TextSimilarity, group_similar, largest_group
from .types import StuckAnalysis, StuckDetails, StuckPattern, StuckPatternType


logger = logging.getLogger(__name__)

DETECTION_ERROR = "Error during detection"


@dataclass
class StuckDetectorConfig:
    """Thresholds for the stuck heuristics."""

    cooldown_minutes: float = 10
    no_progress_minutes: float = 20
    blocker_repeat_threshold: int = 3
    error_repeat_threshold: int = 5
    similarity_threshold: float = 0.7
    error_query: str = "error failed exception bug"
    error_search_limit: int = 20
    ignored_dirs: Tuple[str, ...] = field(default=DEFAULT_IGNORED_DIRS)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = {f.name: getattr(self, f.name) for f in fields(self)}
        result["ignored_dirs"] = list(self.ignored_dirs)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StuckDetectorConfig":
        """Create from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        if "ignored_dirs" in values:
            values["ignored_dirs"] = tuple(values["ignored_dirs"])
        return cls(**values)


def format_duration(milliseconds: float) -> str:
    """Format a duration as ``"{h}h {m}m"`` or ``"{m}m"``."""
    total_minutes = int(max(milliseconds, 0) // 60000)
    hours, minutes = divmod(total_minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def _clock_time(result: SearchResult) -> str:
    created_at = result.created_at
    return created_at.strftime("%H:%M:%S") if created_at else "??:??:??"


class StuckDetector:
    """
    Detects stuck patterns in one session.

    The only state is the last alert time. Cooldown is advisory: analysis
    always runs, and ``cooldown_active`` tells the caller whether an alert
    was already raised within the cooldown window.

    Usage:
        detector = StuckDetector(store, project_path="/home/dev/my-app")
        analysis = await detector.analyze()
        if analysis.stuck and not analysis.cooldown_active:
            notify(analysis)
    """

    def __init__(
        self,
        store: SessionMemoryStore,
        project_path: str,
        config: Optional[StuckDetectorConfig] = None,
        similarity: Optional[TextSimilarity] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the detector.

        Args:
            store: Session memory store to inspect
            project_path: Project root scanned for file changes
            config: Heuristic thresholds
            similarity: Grouping strategy (token Jaccard by default)
            clock: Source of the current POSIX time
        """
        self._store = store
        self.project_path = project_path
        self.config = config or StuckDetectorConfig()
        self.similarity = similarity or JaccardSimilarity(self.config.similarity_threshold)
        self._clock = clock
        self._last_alert_time: Optional[datetime] = None

    @property
    def last_alert_time(self) -> Optional[datetime]:
        """When the last stuck alert was raised."""
        return self._last_alert_time

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def is_cooldown_active(self) -> bool:
        """Whether the last alert was raised within the cooldown window."""
        if self._last_alert_time is None:
            return False
        elapsed = self._now() - self._last_alert_time
        return elapsed < timedelta(minutes=self.config.cooldown_minutes)

    def reset_cooldown(self) -> None:
        """Forget the last alert."""
        self._last_alert_time = None
        logger.debug("Stuck detector cooldown reset")

    async def analyze(self, project_path: Optional[str] = None) -> StuckAnalysis:
        """
        Run all three heuristics and combine their verdicts.

        The overall confidence is the mean over detected patterns only
        (0 when none fired); the session is stuck when at least one pattern
        fired and that mean is at least 0.5.

        Args:
            project_path: Project root to scan instead of the configured one

        Returns:
            The combined analysis
        """
        cooldown_active = self.is_cooldown_active()

        repeated_blocker, no_progress, error_loop = await asyncio.gather(
            self.detect_repeated_blocker(),
            self.detect_no_progress(project_path),
            self.detect_error_loop(),
        )

        patterns = [repeated_blocker, no_progress, error_loop]
        detected = [p for p in patterns if p.detected]

        overall_confidence = (
            sum(p.confidence for p in detected) / len(detected) if detected else 0.0
        )
        stuck = bool(detected) and overall_confidence >= 0.5

        if stuck and not cooldown_active:
            self._last_alert_time = self._now()

        if stuck:
            logger.warning(
                f"Stuck pattern detected ({overall_confidence:.0%} confidence):\n"
                f"{summarize_patterns(detected)}"
            )

        return StuckAnalysis(
            stuck=stuck,
            patterns=patterns,
            overall_confidence=overall_confidence,
            last_alert_time=format_timestamp(self._last_alert_time) if self._last_alert_time else None,
            cooldown_active=cooldown_active,
        )

    async def detect_repeated_blocker(self) -> StuckPattern:
        """Detect the same blocker recorded three or more times."""
        pattern_type = StuckPatternType.REPEATED_BLOCKER
        threshold = self.config.blocker_repeat_threshold

        try:
            blockers = await self._store.get_notes_by_type(NoteType.BLOCKER)
            if len(blockers) < threshold:
                return StuckPattern.not_detected(pattern_type, "No repeated blockers detected")

            groups = group_similar(blockers, self.similarity, lambda r: r.content)
            group = largest_group(groups, threshold)
            if group is None:
                return StuckPattern.not_detected(pattern_type, "No repeated blockers detected")

            stamps = [r.created_at for r in group.members if r.created_at is not None]
            span_ms = (max(stamps) - min(stamps)).total_seconds() * 1000 if stamps else 0.0
            time_since_first = format_duration(span_ms)

            repetition_count = len(group)
            confidence = min(0.5 + repetition_count / 10 + span_ms / 60000 / 60, 1.0)

            return StuckPattern(
                type=pattern_type,
                detected=True,
                confidence=confidence,
                details=StuckDetails(
                    description=f"Blocker mentioned {repetition_count} times over {time_since_first}",
                    evidence=[f"[{_clock_time(r)}] {r.content}" for r in group.members],
                    time_since_first=time_since_first,
                ),
            )
        except Exception as e:
            logger.error(f"Failed to detect repeated blocker: {e}")
            return StuckPattern.not_detected(pattern_type, DETECTION_ERROR)

    async def detect_no_progress(self, project_path: Optional[str] = None) -> StuckPattern:
        """Detect a project tree with no file changes for twenty minutes."""
        pattern_type = StuckPatternType.NO_PROGRESS
        root = project_path or self.project_path

        try:
            last_modified = await latest_modification_time_async(root, self.config.ignored_dirs)
            if last_modified is None:
                return StuckPattern.not_detected(
                    pattern_type, "Unable to determine file modification times"
                )

            now = self._clock()
            idle_ms = max(now - last_modified, 0.0) * 1000
            idle_minutes = idle_ms / 60000
            idle_time = format_duration(idle_ms)

            if idle_minutes < self.config.no_progress_minutes:
                return StuckPattern.not_detected(
                    pattern_type,
                    f"Files modified {int(idle_minutes)} minutes ago (active)",
                    idle_time=idle_time,
                )

            confidence = min(0.5 + (idle_minutes - self.config.no_progress_minutes) / 80, 1.0)

            return StuckPattern(
                type=pattern_type,
                detected=True,
                confidence=confidence,
                details=StuckDetails(
                    description=f"No file changes for {int(idle_minutes)} minutes",
                    evidence=[
                        f"Last file modification: {datetime.fromtimestamp(last_modified, tz=timezone.utc):%H:%M:%S}",
                        f"Current time: {datetime.fromtimestamp(now, tz=timezone.utc):%H:%M:%S}",
                    ],
                    idle_time=idle_time,
                ),
            )
        except Exception as e:
            logger.error(f"Failed to detect no progress: {e}")
            return StuckPattern.not_detected(pattern_type, DETECTION_ERROR)

    async def detect_error_loop(self) -> StuckPattern:
        """Detect the same error recorded five or more times."""
        pattern_type = StuckPatternType.ERROR_LOOP
        threshold = self.config.error_repeat_threshold

        try:
            results = await self._store.search(self.config.error_query, self.config.error_search_limit)
            if len(results) < threshold:
                return StuckPattern.not_detected(pattern_type, "No error loops detected")

            groups = group_similar(results, self.similarity, lambda r: r.content)
            group = largest_group(groups, threshold)
            if group is None:
                return StuckPattern.not_detected(pattern_type, "No error loops detected")

            repetition_count = len(group)
            confidence = min(0.5 + repetition_count / 15, 1.0)

            return StuckPattern(
                type=pattern_type,
                detected=True,
                confidence=confidence,
                details=StuckDetails(
                    description=f"Same error occurred {repetition_count} times",
                    evidence=[
                        f"[{_clock_time(r)}] {r.content[:100]}..."
                        for r in group.members[:5]
                    ],
                    repetition_count=repetition_count,
                ),
            )
        except Exception as e:
            logger.error(f"Failed to detect error loop: {e}")
            return StuckPattern.not_detected(pattern_type, DETECTION_ERROR)


def summarize_patterns(patterns: List[StuckPattern]) -> str:
    """One line per detected pattern, for logs and CLI output."""
    lines = [
        f"{p.type.value}: {p.details.description} ({p.confidence:.0%})"
        for p in patterns
        if p.detected
    ]
    return "\n".join(lines) if lines else "No stuck patterns detected"
