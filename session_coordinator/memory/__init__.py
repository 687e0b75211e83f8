"""
Session memory: ephemeral, per-session semantic note storage.

Key features:
- One vector-index collection per session, deleted on cleanup
- Embeddings generated for every note
- Semantic search and duplicate-work detection
- Exact type-filtered retrieval
- Validated, versioned payload schema
"""

from .types import (
    NoteType,
    SessionNote,
    SearchResult,
    Constraint,
    ConstraintScope,
    ConstraintStatus,
    DetectedFrom,
    SessionStats,
    NotePayload,
    ConstraintPayload,
)

from .storage import (
    VectorIndex,
    QdrantVectorIndex,
    IndexPoint,
)

from .embeddings import (
    EmbeddingProvider,
    OpenAIEmbedding,
    SimpleEmbedding,
    SentenceTransformerEmbedding,
    cosine_similarity,
)

from .manager import (
    SessionMemoryStore,
    collection_name_for,
)


__all__ = [
    # Types
    "NoteType",
    "SessionNote",
    "SearchResult",
    "Constraint",
    "ConstraintScope",
    "ConstraintStatus",
    "DetectedFrom",
    "SessionStats",
    "NotePayload",
    "ConstraintPayload",
    # Storage
    "VectorIndex",
    "QdrantVectorIndex",
    "IndexPoint",
    # Embeddings
    "EmbeddingProvider",
    "OpenAIEmbedding",
    "SimpleEmbedding",
    "SentenceTransformerEmbedding",
    "cosine_similarity",
    # Store
    "SessionMemoryStore",
    "collection_name_for",
]
