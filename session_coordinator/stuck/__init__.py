"""
Stuck detection: repeated blockers, idle project trees and error loops.
"""

from .types import (
    StuckPatternType,
    StuckDetails,
    StuckPattern,
    StuckAnalysis,
)

from .grouping import (
    TextSimilarity,
    JaccardSimilarity,
    group_similar,
)

from .detector import (
    StuckDetector,
    StuckDetectorConfig,
    format_duration,
    summarize_patterns,
)


__all__ = [
    # Types
    "StuckPatternType",
    "StuckDetails",
    "StuckPattern",
    "StuckAnalysis",
    # Grouping
    "TextSimilarity",
    "JaccardSimilarity",
    "group_similar",
    # Detector
    "StuckDetector",
    "StuckDetectorConfig",
    "format_duration",
    "summarize_patterns",
]
