"""
Session Memory Store - ephemeral semantic memory for one session.

Owns one session's collection in the vector index, persists notes with
generated embeddings, and answers semantic search, duplicate-check and
type-filtered retrieval queries. The collection lives only between
``initialize`` and ``cleanup``.
"""

import logging
import random
import re
import time
from pathlib import PurePath
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PayloadValidationError

from ..errors import CoordinatorError
from .embeddings import EmbeddingProvider
from .storage import IndexPoint, VectorIndex
from .types import (
    ALL_NOTE_TYPES,
    VALUABLE_NOTE_TYPES,
    NoteType,
    SearchResult,
    SessionNote,
    SessionStats,
    format_timestamp,
    parse_datetime,
    utc_now,
    validate_payload,
)


logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]+")


def collection_name_for(project_path: str, session_id: str) -> str:
    """
    Derive the collection name for a session.

    Joins the sanitized project directory name with the session id, so
    equally-named sessions in different projects stay isolated.
    """
    project_name = PurePath(project_path.rstrip("/\\") or "/").name
    project_name = _UNSAFE_NAME_CHARS.sub("-", project_name).strip("-") or "default"
    safe_session = _UNSAFE_NAME_CHARS.sub("-", session_id).strip("-") or "session"
    return f"session-{project_name}-{safe_session}"


def generate_point_id() -> int:
    """
    Generate a point id from wall-clock milliseconds plus a random suffix.

    Best-effort uniqueness under rapid sequential writes; not a strict
    write ordering.
    """
    return int(time.time() * 1000) * 1000 + random.randrange(1000)


def _preview(content: str, length: int = 60) -> str:
    return content[:length] + ("..." if len(content) > length else "")


class SessionMemoryStore:
    """
    Semantic memory for a single active session.

    Example usage:
        store = SessionMemoryStore(
            session_id="2025-11-09-auth-work",
            project_path="/home/dev/my-app",
            index=QdrantVectorIndex(url=":memory:"),
            embedding_provider=SimpleEmbedding(),
        )
        await store.initialize()

        await store.save_note(SessionNote(NoteType.DECISION, "Use JWT for auth"))
        results = await store.search("authentication approach")

        await store.cleanup()
    """

    # Cap for exact type-filtered retrieval
    TYPE_QUERY_LIMIT = 100

    DEFAULT_SEARCH_LIMIT = 5
    DEFAULT_DUPLICATE_THRESHOLD = 0.75

    def __init__(
        self,
        session_id: str,
        project_path: str,
        index: VectorIndex,
        embedding_provider: EmbeddingProvider,
        collection_name: Optional[str] = None,
    ):
        """
        Initialize the session memory store.

        Args:
            session_id: Session identifier
            project_path: Project root the session works on
            index: Vector index backend
            embedding_provider: Embedding provider
            collection_name: Override for the derived collection name
        """
        self.session_id = session_id
        self.project_path = project_path
        self.collection_name = collection_name or collection_name_for(project_path, session_id)
        self._index = index
        self._embedding_provider = embedding_provider

    @property
    def index(self) -> VectorIndex:
        """Get the vector index backend."""
        return self._index

    @property
    def embedding_provider(self) -> EmbeddingProvider:
        """Get the embedding provider."""
        return self._embedding_provider

    # ========== Lifecycle ==========

    async def initialize(self) -> None:
        """
        Create (or reuse) the session collection and its ``type`` index.

        Idempotent: an existing collection only gets its payload index
        ensured.
        """
        if await self._index.collection_exists(self.collection_name):
            logger.info(f"Session collection already exists: {self.collection_name}")
        else:
            await self._index.create_collection(
                self.collection_name,
                self._embedding_provider.dimension,
            )
            logger.info(f"Session collection created: {self.collection_name}")

        await self._index.ensure_payload_index(self.collection_name, "type")

    async def cleanup(self) -> None:
        """Delete the session collection. A missing collection is success."""
        await self._index.delete_collection(self.collection_name)
        logger.info(f"Cleaned up session collection: {self.collection_name}")

    # ========== Writes ==========

    async def embed(self, text: str) -> List[float]:
        """Embed text with the session's provider (input is truncated)."""
        return await self._embedding_provider.embed(self._embedding_provider.truncate(text))

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed several texts, in input order."""
        provider = self._embedding_provider
        return await provider.embed_batch([provider.truncate(t) for t in texts])

    async def save_note(
        self,
        note: SessionNote,
        extra_payload: Optional[Dict[str, Any]] = None,
    ) -> SearchResult:
        """
        Persist a note with a generated embedding.

        The embedding call and the upsert are separate steps; if the
        upsert fails the note is lost and the error propagates.

        Args:
            note: The note to store
            extra_payload: Additional typed payload fields (constraint fields)

        Returns:
            The stored note as a retrieval view

        Raises:
            EmbeddingProviderError: If embedding generation fails
            VectorIndexError: If the upsert fails
            pydantic.ValidationError: If the payload is malformed
        """
        vector = await self.embed(note.content)
        point_id = generate_point_id()

        payload = validate_payload({
            "type": note.note_type.value,
            "content": note.content,
            "timestamp": format_timestamp(utc_now()),
            "session_id": self.session_id,
            "project_path": self.project_path,
            "metadata": dict(note.metadata),
            **(extra_payload or {}),
        })

        await self._index.upsert(
            self.collection_name,
            point_id,
            vector,
            payload.model_dump(mode="json"),
        )

        logger.info(f"Saved {note.note_type.value}: {_preview(note.content)}")
        return SearchResult.from_payload(payload, score=1.0, point_id=point_id)

    # ========== Reads ==========

    def _to_results(self, points: List[IndexPoint], exact: bool = False) -> List[SearchResult]:
        """Validate raw points into results, skipping unknown payloads."""
        results = []
        for point in points:
            try:
                payload = validate_payload(point.payload)
            except PayloadValidationError as e:
                logger.warning(f"Skipping point {point.id} with invalid payload: {e.error_count()} error(s)")
                continue
            score = 1.0 if exact else point.score
            results.append(SearchResult.from_payload(payload, score=score, point_id=point.id))
        return results

    async def search(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> List[SearchResult]:
        """
        Semantic search over session memory.

        Best-effort: any embedding or index failure degrades to an empty
        result so callers such as duplicate and stuck detection keep working.

        Args:
            query: Search text
            limit: Maximum results

        Returns:
            Results ordered by descending similarity
        """
        try:
            vector = await self.embed(query)
            points = await self._index.search(self.collection_name, vector, limit)
        except CoordinatorError as e:
            logger.error(f"Search failed: {e}")
            return []

        results = self._to_results(points)
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit]

    async def check_duplicate(
        self,
        description: str,
        threshold: float = DEFAULT_DUPLICATE_THRESHOLD,
    ) -> List[SearchResult]:
        """
        Find existing notes similar to a description of planned work.

        Args:
            description: Description of the work to be done
            threshold: Minimum similarity to count as a duplicate

        Returns:
            Matches with score >= threshold (possibly empty)
        """
        results = await self.search(description, 5)
        duplicates = [r for r in results if r.score >= threshold]

        if duplicates:
            logger.warning(f"Found {len(duplicates)} potential duplicate(s)")
            for i, dup in enumerate(duplicates, 1):
                logger.warning(f"  {i}. [{dup.score * 100:.1f}% similar] {_preview(dup.content)}")

        return duplicates

    async def get_notes_by_type(self, note_type: NoteType) -> List[SearchResult]:
        """
        Exact retrieval of notes of one type via payload filter.

        Args:
            note_type: Note type to fetch

        Returns:
            Up to 100 notes, each with score 1.0

        Raises:
            VectorIndexError: If the index call fails
        """
        note_type = NoteType(note_type)
        points = await self._index.scroll(
            self.collection_name,
            {"type": note_type.value},
            self.TYPE_QUERY_LIMIT,
        )
        return self._to_results(points, exact=True)

    async def get_all_notes_by_type(self, note_type: NoteType) -> List[SearchResult]:
        """
        Every note of one type, paging through the collection.

        Unlike ``get_notes_by_type`` there is no cap; constraint state is
        rebuilt from the full note history.

        Raises:
            VectorIndexError: If the index call fails
        """
        note_type = NoteType(note_type)
        points = await self._index.scroll_all(
            self.collection_name,
            {"type": note_type.value},
            self.TYPE_QUERY_LIMIT,
        )
        return self._to_results(points, exact=True)

    async def extract_valuable_memories(self) -> List[SearchResult]:
        """
        Collect all non-constraint notes, most recent first.

        Returns:
            Decisions, hypotheses, blockers, learnings and patterns
        """
        notes: List[SearchResult] = []
        for note_type in VALUABLE_NOTE_TYPES:
            notes.extend(await self.get_notes_by_type(note_type))

        notes.sort(key=_timestamp_sort_key, reverse=True)
        logger.info(f"Extracted {len(notes)} session memories")
        return notes

    async def get_stats(self) -> SessionStats:
        """Get the point count and a per-type breakdown."""
        total = await self._index.count(self.collection_name)

        notes_by_type = {}
        for note_type in ALL_NOTE_TYPES:
            notes = await self.get_all_notes_by_type(note_type)
            notes_by_type[note_type.value] = len(notes)

        return SessionStats(
            collection=self.collection_name,
            session_id=self.session_id,
            total_notes=total,
            notes_by_type=notes_by_type,
        )


def _timestamp_sort_key(result: SearchResult) -> float:
    """Sort key for results by timestamp; unparseable timestamps sort last."""
    try:
        parsed = parse_datetime(result.timestamp)
    except ValueError:
        parsed = None
    return parsed.timestamp() if parsed else float("-inf")
