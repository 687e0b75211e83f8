"""
Session handles and the session manager.

A handle bundles everything one session needs (memory store, constraint
tracker, stuck detector and recovery engine) and is passed explicitly to
every operation. The manager allows a single active handle at a time.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .constraints import ConstraintTracker
from .errors import DuplicateSessionError, SessionNotFoundError, ValidationError
from .memory.embeddings import EmbeddingProvider
from .memory.manager import SessionMemoryStore
from .memory.storage import VectorIndex
from .memory.types import format_timestamp, utc_now
from .recovery import RecoveryEngine
from .stuck.detector import StuckDetector, StuckDetectorConfig


logger = logging.getLogger(__name__)


@dataclass
class SessionHandle:
    """
    One active session.

    Attributes:
        session_id: Session identifier
        project_path: Project root the session works on
        store: Semantic memory for the session
        constraints: Constraint tracker over the store
        detector: Stuck detector (holds the cooldown state)
        recovery: Recovery suggestion engine
        started_at: When the session was started
    """

    session_id: str
    project_path: str
    store: SessionMemoryStore
    constraints: ConstraintTracker
    detector: StuckDetector
    recovery: RecoveryEngine
    started_at: datetime = field(default_factory=utc_now)
    finalized: bool = False

    @property
    def collection_name(self) -> str:
        """Name of the session's collection."""
        return self.store.collection_name

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "session_id": self.session_id,
            "project_path": self.project_path,
            "collection": self.collection_name,
            "started_at": format_timestamp(self.started_at),
            "finalized": self.finalized,
        }


class SessionManager:
    """
    Creates, tracks and finalizes session handles.

    Example usage:
        manager = SessionManager(index, embedding_provider)
        handle = await manager.start_session("2025-11-09-auth-work", "/home/dev/my-app")
        ...
        await manager.finalize_session(handle)
    """

    def __init__(
        self,
        index: VectorIndex,
        embedding_provider: EmbeddingProvider,
        stuck_config: Optional[StuckDetectorConfig] = None,
    ):
        self._index = index
        self._embedding_provider = embedding_provider
        self._stuck_config = stuck_config or StuckDetectorConfig()
        self._active: Optional[SessionHandle] = None
        # Session id whose start is in flight; holds the slot across the initialize await
        self._starting: Optional[str] = None

    @property
    def active(self) -> Optional[SessionHandle]:
        """The active session handle, if any."""
        return self._active

    def build_handle(self, session_id: str, project_path: str) -> SessionHandle:
        """Wire the per-session components without touching the index."""
        store = SessionMemoryStore(
            session_id=session_id,
            project_path=project_path,
            index=self._index,
            embedding_provider=self._embedding_provider,
        )
        return SessionHandle(
            session_id=session_id,
            project_path=project_path,
            store=store,
            constraints=ConstraintTracker(store),
            detector=StuckDetector(store, project_path, config=self._stuck_config),
            recovery=RecoveryEngine(store),
        )

    async def start_session(
        self,
        session_id: str,
        project_path: str,
        initialize: bool = True,
    ) -> SessionHandle:
        """
        Start a session and make it the active one.

        Reusing an existing collection with the same name is allowed, so a
        process can re-attach to a session started earlier.

        Args:
            session_id: Session identifier
            project_path: Project root
            initialize: Create the collection if missing

        Returns:
            The new active handle

        Raises:
            ValidationError: If session_id or project_path is empty
            DuplicateSessionError: If a session is already active
            VectorIndexError: If the collection cannot be created
        """
        if not session_id:
            raise ValidationError("session_id is required", field_name="session_id")
        if not project_path:
            raise ValidationError("project_path is required", field_name="project_path")

        if self._active is not None:
            raise DuplicateSessionError(
                f"Session already active: {self._active.session_id}. Finalize it first."
            )
        if self._starting is not None:
            raise DuplicateSessionError(f"Session already starting: {self._starting}")

        handle = self.build_handle(session_id, project_path)
        self._starting = session_id
        try:
            if initialize:
                await handle.store.initialize()
        finally:
            self._starting = None

        self._active = handle
        logger.info(f"Session started: {session_id} ({handle.collection_name})")
        return handle

    def require(self, handle: Optional[SessionHandle]) -> SessionHandle:
        """
        Ensure a handle refers to the active session.

        Raises:
            SessionNotFoundError: If the handle is missing, finalized or not
                the active session
        """
        if handle is None or handle.finalized or handle is not self._active:
            raise SessionNotFoundError("No active session. Start a session first.")
        return handle

    async def finalize_session(self, handle: SessionHandle) -> None:
        """
        Delete the session collection and release the active slot.

        Idempotent: finalizing twice, or after the collection is gone,
        succeeds.

        Raises:
            VectorIndexError: If the collection cannot be deleted
        """
        await handle.store.cleanup()
        handle.finalized = True
        if self._active is handle:
            self._active = None
        logger.info(f"Session finalized: {handle.session_id}")

    async def close(self) -> None:
        """Close the vector index client. The active session is left in place."""
        await self._index.close()
