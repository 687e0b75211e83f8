"""
Pytest configuration and shared fixtures.
"""

import logging
import os
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from session_coordinator.memory import (
    NoteType,
    QdrantVectorIndex,
    SearchResult,
    SessionMemoryStore,
    SimpleEmbedding,
)
from session_coordinator.memory.types import format_timestamp, parse_datetime
from session_coordinator.observability.logging import PACKAGE_LOGGER
from session_coordinator.session import SessionManager
from session_coordinator.service import CoordinationService


# Fixed reference instant for clock-dependent tests
NOW = 1_700_000_000.0


@pytest.fixture
def embedding():
    """Deterministic offline embedding provider."""
    return SimpleEmbedding()


@pytest.fixture
def index():
    """Fresh in-process Qdrant index."""
    return QdrantVectorIndex(url=":memory:")


@pytest.fixture
async def store(index, embedding, tmp_path):
    """Initialized session store over the in-process index."""
    store = SessionMemoryStore(
        session_id="test-session",
        project_path=str(tmp_path),
        index=index,
        embedding_provider=embedding,
    )
    await store.initialize()
    yield store
    await store.cleanup()
    await index.close()


@pytest.fixture
def service(index, embedding):
    """Coordination service over the in-process index."""
    return CoordinationService(SessionManager(index, embedding))


@pytest.fixture
def project_dir(tmp_path):
    """A small project tree whose files were last modified at ``NOW``."""
    project = tmp_path / "project"
    (project / "src").mkdir(parents=True)
    main = project / "src" / "main.py"
    main.write_text("print('hello')\n")
    os.utime(main, (NOW, NOW))
    return project


@pytest.fixture
def make_note():
    """Factory for search results as returned by the store."""
    def _make(
        content,
        note_type=NoteType.BLOCKER,
        minutes_after=0,
        score=1.0,
        base="2025-11-09T10:00:00.000Z",
    ):
        timestamp = parse_datetime(base) + timedelta(minutes=minutes_after)
        return SearchResult(
            score=score,
            note_type=NoteType(note_type),
            content=content,
            timestamp=format_timestamp(timestamp),
        )
    return _make


@pytest.fixture
def mock_store():
    """Store double with async read methods returning nothing."""
    store = MagicMock(spec=SessionMemoryStore)
    store.session_id = "test-session"
    store.get_notes_by_type = AsyncMock(return_value=[])
    store.get_all_notes_by_type = AsyncMock(return_value=[])
    store.embed_batch = AsyncMock(return_value=[])
    store.search = AsyncMock(return_value=[])
    return store


@pytest.fixture
def restore_package_logger():
    """Undo handler changes made by configure_logging."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    handlers = list(logger.handlers)
    level = logger.level
    propagate = logger.propagate
    yield logger
    logger.handlers = handlers
    logger.setLevel(level)
    logger.propagate = propagate
