"""
Session Coordinator - ephemeral session memory and stuck detection for coding agents.

Key Features:
- Per-session semantic memory in a Qdrant collection, deleted on finalize
- Duplicate-work detection before starting a task
- Session constraints with keyword and semantic violation checks
- Stuck detection: repeated blockers, idle project trees, error loops
- Ranked recovery suggestions drawn from the session's own notes
- Structured results, logging with session context, operation metrics
"""

from .errors import (
    CoordinatorError,
    ConfigurationError,
    DuplicateSessionError,
    SessionNotFoundError,
    ConstraintNotFoundError,
    EmbeddingProviderError,
    VectorIndexError,
    ValidationError,
)

# Session memory
from .memory import (
    NoteType,
    SessionNote,
    SearchResult,
    Constraint,
    ConstraintScope,
    ConstraintStatus,
    DetectedFrom,
    SessionStats,
    VectorIndex,
    QdrantVectorIndex,
    EmbeddingProvider,
    OpenAIEmbedding,
    SimpleEmbedding,
    SentenceTransformerEmbedding,
    SessionMemoryStore,
)

from .constraints import (
    ConstraintTracker,
    ConstraintViolation,
    ViolationReport,
)

# Stuck detection and recovery
from .stuck import (
    StuckDetector,
    StuckDetectorConfig,
    StuckPattern,
    StuckPatternType,
    StuckAnalysis,
    JaccardSimilarity,
)
from .recovery import (
    RecoveryEngine,
    RecoveryAnalysis,
    RecoverySuggestion,
    SuggestionSource,
)

# Sessions and the operation surface
from .session import SessionHandle, SessionManager
from .service import CoordinationService, OperationResult
from .config import SessionCoordinatorConfig, load_config

__version__ = "0.1.0"
__all__ = [
    # Errors
    "CoordinatorError",
    "ConfigurationError",
    "DuplicateSessionError",
    "SessionNotFoundError",
    "ConstraintNotFoundError",
    "EmbeddingProviderError",
    "VectorIndexError",
    "ValidationError",
    # Memory
    "NoteType",
    "SessionNote",
    "SearchResult",
    "Constraint",
    "ConstraintScope",
    "ConstraintStatus",
    "DetectedFrom",
    "SessionStats",
    "VectorIndex",
    "QdrantVectorIndex",
    "EmbeddingProvider",
    "OpenAIEmbedding",
    "SimpleEmbedding",
    "SentenceTransformerEmbedding",
    "SessionMemoryStore",
    # Constraints
    "ConstraintTracker",
    "ConstraintViolation",
    "ViolationReport",
    # Stuck detection
    "StuckDetector",
    "StuckDetectorConfig",
    "StuckPattern",
    "StuckPatternType",
    "StuckAnalysis",
    "JaccardSimilarity",
    # Recovery
    "RecoveryEngine",
    "RecoveryAnalysis",
    "RecoverySuggestion",
    "SuggestionSource",
    # Sessions
    "SessionHandle",
    "SessionManager",
    "CoordinationService",
    "OperationResult",
    # Config
    "SessionCoordinatorConfig",
    "load_config",
]
