"""
Tests for stuck detection.
"""

import os
from unittest.mock import AsyncMock

import pytest

from session_coordinator.errors import VectorIndexError
from session_coordinator.stuck import (
    JaccardSimilarity,
    StuckDetector,
    StuckDetectorConfig,
    StuckPattern,
    StuckPatternType,
    format_duration,
    group_similar,
    summarize_patterns,
)
from session_coordinator.stuck.filesystem import latest_modification_time
from session_coordinator.stuck.types import StuckDetails

from conftest import NOW


class FakeClock:
    """Settable clock."""

    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _detector(store, project, now=NOW, **config):
    clock = FakeClock(now)
    detector = StuckDetector(
        store,
        str(project),
        config=StuckDetectorConfig(**config),
        clock=clock,
    )
    return detector, clock


class TestGrouping:
    """Test text similarity grouping."""

    def test_jaccard_normalizes(self):
        """Test case and punctuation are ignored."""
        similarity = JaccardSimilarity()
        assert similarity.score("Build fails on CI", "build fails on ci!") == 1.0
        assert similarity.is_similar("Build fails on CI", "build fails on ci!")

    def test_jaccard_threshold(self):
        """Test similarity below 0.7 is not a match."""
        similarity = JaccardSimilarity()
        # 2 shared of 5 distinct tokens
        assert similarity.score("tests fail on ci", "tests fail locally") == pytest.approx(0.4)
        assert not similarity.is_similar("tests fail on ci", "tests fail locally")

    def test_pairwise_similar_items_form_one_group(self):
        """Test mutually similar items end up together."""
        items = [
            "webpack build fails with memory error",
            "webpack build fails with memory error again",
            "Webpack build fails with memory error!",
        ]
        groups = group_similar(items, JaccardSimilarity(), lambda s: s)

        assert len(groups) == 1
        assert len(groups[0]) == 3
        assert groups[0].representative == items[0]

    def test_dissimilar_item_starts_own_group(self):
        """Test an item unlike every group starts a new one."""
        items = [
            "webpack build fails with memory error",
            "staging database is unreachable",
            "webpack build fails with memory error",
        ]
        groups = group_similar(items, JaccardSimilarity(), lambda s: s)

        assert [len(g) for g in groups] == [2, 1]


class TestFormatDuration:
    """Test duration formatting."""

    def test_minutes_only(self):
        assert format_duration(45 * 60_000) == "45m"

    def test_hours_and_minutes(self):
        assert format_duration(125 * 60_000) == "2h 5m"

    def test_zero(self):
        assert format_duration(0) == "0m"


class TestRepeatedBlocker:
    """Test the repeated blocker heuristic."""

    @pytest.mark.asyncio
    async def test_four_blockers_over_45_minutes(self, mock_store, project_dir, make_note):
        """Test confidence saturates at 1.0."""
        mock_store.get_notes_by_type = AsyncMock(return_value=[
            make_note("Cannot connect to staging database", minutes_after=m)
            for m in (0, 15, 30, 45)
        ])
        detector, _ = _detector(mock_store, project_dir)

        pattern = await detector.detect_repeated_blocker()

        assert pattern.detected
        assert pattern.confidence == 1.0
        assert pattern.details.time_since_first == "45m"
        assert len(pattern.details.evidence) == 4
        assert pattern.details.evidence[0] == "[10:00:00] Cannot connect to staging database"
        assert pattern.details.description == "Blocker mentioned 4 times over 45m"

    @pytest.mark.asyncio
    async def test_three_blockers_no_span(self, mock_store, project_dir, make_note):
        """Test three simultaneous repeats give 0.8."""
        mock_store.get_notes_by_type = AsyncMock(return_value=[
            make_note("Cannot connect to staging database") for _ in range(3)
        ])
        detector, _ = _detector(mock_store, project_dir)

        pattern = await detector.detect_repeated_blocker()

        assert pattern.detected
        assert pattern.confidence == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_span_uses_earliest_and_latest(self, mock_store, project_dir, make_note):
        """Test out-of-order notes still measure the full span."""
        mock_store.get_notes_by_type = AsyncMock(return_value=[
            make_note("Cannot connect to staging database", minutes_after=m)
            for m in (12, 0, 6)
        ])
        detector, _ = _detector(mock_store, project_dir)

        pattern = await detector.detect_repeated_blocker()

        assert pattern.confidence == pytest.approx(0.5 + 0.3 + 12 / 60)
        assert pattern.details.time_since_first == "12m"

    @pytest.mark.asyncio
    async def test_too_few_blockers(self, mock_store, project_dir, make_note):
        """Test fewer than three blockers is not stuck."""
        mock_store.get_notes_by_type = AsyncMock(return_value=[
            make_note("Cannot connect to staging database") for _ in range(2)
        ])
        detector, _ = _detector(mock_store, project_dir)

        pattern = await detector.detect_repeated_blocker()

        assert not pattern.detected
        assert pattern.confidence == 0.0

    @pytest.mark.asyncio
    async def test_distinct_blockers(self, mock_store, project_dir, make_note):
        """Test unrelated blockers do not group."""
        mock_store.get_notes_by_type = AsyncMock(return_value=[
            make_note("Cannot connect to staging database"),
            make_note("Flaky login test on Safari"),
            make_note("Docker image too large for registry"),
        ])
        detector, _ = _detector(mock_store, project_dir)

        pattern = await detector.detect_repeated_blocker()

        assert not pattern.detected
        assert pattern.details.description == "No repeated blockers detected"

    @pytest.mark.asyncio
    async def test_failure_degrades(self, mock_store, project_dir):
        """Test a store failure yields a negative verdict."""
        mock_store.get_notes_by_type = AsyncMock(side_effect=VectorIndexError("down"))
        detector, _ = _detector(mock_store, project_dir)

        pattern = await detector.detect_repeated_blocker()

        assert not pattern.detected
        assert pattern.details.description == "Error during detection"


class TestNoProgress:
    """Test the no-progress heuristic."""

    @pytest.mark.asyncio
    async def test_idle_45_minutes(self, mock_store, project_dir):
        """Test 45 idle minutes give 0.8125."""
        detector, _ = _detector(mock_store, project_dir, now=NOW + 45 * 60)

        pattern = await detector.detect_no_progress()

        assert pattern.detected
        assert pattern.confidence == pytest.approx(0.8125)
        assert pattern.details.idle_time == "45m"
        assert pattern.details.description == "No file changes for 45 minutes"

    @pytest.mark.asyncio
    async def test_idle_5_minutes(self, mock_store, project_dir):
        """Test recent activity is not stuck."""
        detector, _ = _detector(mock_store, project_dir, now=NOW + 5 * 60)

        pattern = await detector.detect_no_progress()

        assert not pattern.detected
        assert pattern.details.idle_time == "5m"

    @pytest.mark.asyncio
    async def test_confidence_saturates(self, mock_store, project_dir):
        """Test long idle periods cap at 1.0."""
        detector, _ = _detector(mock_store, project_dir, now=NOW + 3 * 3600)

        pattern = await detector.detect_no_progress()

        assert pattern.confidence == 1.0
        assert pattern.details.idle_time == "3h 0m"

    @pytest.mark.asyncio
    async def test_ignored_directories(self, mock_store, project_dir):
        """Test changes under ignored directories do not count."""
        for name in ("node_modules", ".git", ".agent-memory"):
            directory = project_dir / name
            directory.mkdir()
            recent = directory / "touched.js"
            recent.write_text("x")
            os.utime(recent, (NOW + 40 * 60, NOW + 40 * 60))

        detector, _ = _detector(mock_store, project_dir, now=NOW + 45 * 60)

        pattern = await detector.detect_no_progress()

        assert pattern.detected
        assert pattern.details.idle_time == "45m"

    @pytest.mark.asyncio
    async def test_project_path_override(self, mock_store, project_dir, tmp_path):
        """Test analyze can scan a different root."""
        other = tmp_path / "other"
        other.mkdir()
        detector, _ = _detector(mock_store, project_dir, now=NOW + 45 * 60)

        pattern = await detector.detect_no_progress(str(other))

        assert not pattern.detected
        assert pattern.details.description == "Unable to determine file modification times"

    def test_latest_modification_time(self, project_dir):
        """Test the scan returns the newest mtime."""
        newer = project_dir / "README.md"
        newer.write_text("readme")
        os.utime(newer, (NOW + 60, NOW + 60))

        assert latest_modification_time(str(project_dir)) == pytest.approx(NOW + 60)

    def test_missing_directory(self, tmp_path):
        """Test a missing root has no modification time."""
        assert latest_modification_time(str(tmp_path / "missing")) is None


class TestErrorLoop:
    """Test the error loop heuristic."""

    @pytest.mark.asyncio
    async def test_six_similar_errors(self, mock_store, project_dir, make_note):
        """Test six grouped errors give 0.9."""
        mock_store.search = AsyncMock(return_value=[
            make_note("TypeError: cannot read property id of undefined", "learning", minutes_after=m)
            for m in range(6)
        ])
        detector, _ = _detector(mock_store, project_dir)

        pattern = await detector.detect_error_loop()

        assert pattern.detected
        assert pattern.confidence == pytest.approx(0.9)
        assert pattern.details.repetition_count == 6
        assert len(pattern.details.evidence) == 5
        mock_store.search.assert_awaited_once_with("error failed exception bug", 20)

    @pytest.mark.asyncio
    async def test_three_errors_not_detected(self, mock_store, project_dir, make_note):
        """Test three grouped errors are below the threshold."""
        mock_store.search = AsyncMock(return_value=[
            make_note("TypeError: cannot read property id of undefined") for _ in range(3)
        ])
        detector, _ = _detector(mock_store, project_dir)

        pattern = await detector.detect_error_loop()

        assert not pattern.detected

    @pytest.mark.asyncio
    async def test_groups_below_threshold(self, mock_store, project_dir, make_note):
        """Test enough results split across small groups is not a loop."""
        mock_store.search = AsyncMock(return_value=(
            [make_note("TypeError: cannot read property id of undefined") for _ in range(3)]
            + [make_note("Connection refused by redis on port 6379") for _ in range(3)]
        ))
        detector, _ = _detector(mock_store, project_dir)

        pattern = await detector.detect_error_loop()

        assert not pattern.detected

    @pytest.mark.asyncio
    async def test_evidence_truncated(self, mock_store, project_dir, make_note):
        """Test evidence lines keep the first 100 characters."""
        long_error = "Segfault in native module " + "x" * 200
        mock_store.search = AsyncMock(return_value=[make_note(long_error) for _ in range(5)])
        detector, _ = _detector(mock_store, project_dir)

        pattern = await detector.detect_error_loop()

        assert pattern.details.evidence[0] == f"[10:00:00] {long_error[:100]}..."


class TestAnalyze:
    """Test combining heuristics."""

    @pytest.mark.asyncio
    async def test_nothing_detected(self, mock_store, project_dir):
        """Test an idle-free, note-free session is not stuck."""
        detector, _ = _detector(mock_store, project_dir, now=NOW + 60)

        analysis = await detector.analyze()

        assert not analysis.stuck
        assert analysis.overall_confidence == 0
        assert [p.type for p in analysis.patterns] == [
            StuckPatternType.REPEATED_BLOCKER,
            StuckPatternType.NO_PROGRESS,
            StuckPatternType.ERROR_LOOP,
        ]
        assert analysis.last_alert_time is None

    @pytest.mark.asyncio
    async def test_only_repeated_blocker(self, mock_store, project_dir, make_note):
        """Test the mean ignores patterns that did not fire."""
        mock_store.get_notes_by_type = AsyncMock(return_value=[
            make_note("Cannot connect to staging database", minutes_after=m)
            for m in (0, 15, 30, 45)
        ])
        detector, _ = _detector(mock_store, project_dir, now=NOW + 60)

        analysis = await detector.analyze()

        assert analysis.stuck
        assert analysis.overall_confidence == 1.0
        assert len(analysis.detected_patterns) == 1

    @pytest.mark.asyncio
    async def test_mean_of_detected(self, mock_store, project_dir, make_note):
        """Test two detected patterns are averaged."""
        mock_store.get_notes_by_type = AsyncMock(return_value=[
            make_note("Cannot connect to staging database", minutes_after=m)
            for m in (0, 15, 30, 45)
        ])
        detector, _ = _detector(mock_store, project_dir, now=NOW + 45 * 60)

        analysis = await detector.analyze()

        assert analysis.overall_confidence == pytest.approx((1.0 + 0.8125) / 2)

    @pytest.mark.asyncio
    async def test_one_failing_heuristic_keeps_others(self, mock_store, project_dir):
        """Test a failing heuristic does not abort the analysis."""
        mock_store.get_notes_by_type = AsyncMock(side_effect=VectorIndexError("down"))
        detector, _ = _detector(mock_store, project_dir, now=NOW + 45 * 60)

        analysis = await detector.analyze()

        blocker = analysis.get_pattern(StuckPatternType.REPEATED_BLOCKER)
        assert blocker.details.description == "Error during detection"
        assert analysis.get_pattern(StuckPatternType.NO_PROGRESS).detected
        assert analysis.stuck

    @pytest.mark.asyncio
    async def test_cooldown_is_advisory(self, mock_store, project_dir):
        """Test cooldown flags repeat alerts without suppressing detection."""
        detector, clock = _detector(mock_store, project_dir, now=NOW + 45 * 60)

        first = await detector.analyze()
        assert first.stuck
        assert not first.cooldown_active
        assert first.last_alert_time is not None

        clock.now += 5 * 60
        second = await detector.analyze()
        assert second.stuck
        assert second.cooldown_active
        assert second.last_alert_time == first.last_alert_time

        clock.now += 6 * 60
        third = await detector.analyze()
        assert not third.cooldown_active
        assert third.last_alert_time != first.last_alert_time

    @pytest.mark.asyncio
    async def test_reset_cooldown(self, mock_store, project_dir):
        """Test resetting clears the alert time."""
        detector, _ = _detector(mock_store, project_dir, now=NOW + 45 * 60)
        await detector.analyze()
        assert detector.is_cooldown_active()

        detector.reset_cooldown()

        assert not detector.is_cooldown_active()
        assert detector.last_alert_time is None


class TestStuckTypes:
    """Test result serialization."""

    def test_pattern_round_trip(self):
        """Test a pattern survives to_dict/from_dict."""
        pattern = StuckPattern(
            type=StuckPatternType.ERROR_LOOP,
            detected=True,
            confidence=0.9,
            details=StuckDetails(description="Same error occurred 6 times", repetition_count=6),
        )

        data = pattern.to_dict()

        assert data["type"] == "error_loop"
        assert "idle_time" not in data["details"]
        assert StuckPattern.from_dict(data) == pattern

    def test_summarize_patterns(self):
        """Test only detected patterns are summarized."""
        patterns = [
            StuckPattern(
                type=StuckPatternType.NO_PROGRESS,
                detected=True,
                confidence=0.8125,
                details=StuckDetails(description="No file changes for 45 minutes"),
            ),
            StuckPattern.not_detected(StuckPatternType.ERROR_LOOP, "No error loops detected"),
        ]

        assert summarize_patterns(patterns) == "no_progress: No file changes for 45 minutes (81%)"
        assert summarize_patterns(patterns[1:]) == "No stuck patterns detected"
