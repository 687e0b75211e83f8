"""
Session context propagation for logging.

The active session and operation travel in a context variable so every
log record emitted while serving an operation can be attributed to it.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# Context variable for session propagation
_current_context: ContextVar["SessionContext"] = ContextVar("current_session_context")


@dataclass
class SessionContext:
    """
    Context of the operation being served.

    Attributes:
        session_id: Active session, if any
        operation: Name of the public operation being served
        request_id: Unique identifier for this invocation
        project_path: Project root of the session
        start_time: When this context was created
        attributes: Additional context attributes
    """

    session_id: Optional[str] = None
    operation: Optional[str] = None
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    project_path: Optional[str] = None
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attributes: Dict[str, Any] = field(default_factory=dict)

    def set_attribute(self, key: str, value: Any) -> None:
        """Set an attribute on this context."""
        self.attributes[key] = value

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary for serialization."""
        return {
            "session_id": self.session_id,
            "operation": self.operation,
            "request_id": self.request_id,
            "project_path": self.project_path,
            "start_time": self.start_time.isoformat(),
            "attributes": self.attributes,
        }


class ContextManager:
    """Access to the current session context."""

    @staticmethod
    def get_current() -> Optional[SessionContext]:
        """Get the current session context."""
        try:
            return _current_context.get()
        except LookupError:
            return None

    @staticmethod
    def set_current(context: Optional[SessionContext]):
        """Set the current session context, returning a reset token."""
        return _current_context.set(context)

    @staticmethod
    def create_context(
        session_id: Optional[str] = None,
        operation: Optional[str] = None,
        project_path: Optional[str] = None,
        **attributes,
    ) -> SessionContext:
        """Create a new context with optional attributes."""
        return SessionContext(
            session_id=session_id,
            operation=operation,
            project_path=project_path,
            attributes=dict(attributes),
        )


class ContextScope:
    """
    Context manager for a scoped session context.

    Usage:
        with ContextScope(ContextManager.create_context(session_id="s1", operation="search")):
            # records logged here carry session_id and operation
            pass
        # previous context is restored
    """

    def __init__(self, context: SessionContext):
        self.context = context
        self._token = None

    def __enter__(self) -> SessionContext:
        self._token = ContextManager.set_current(self.context)
        return self.context

    def __exit__(self, exc_type, exc_val, exc_tb):
        _current_context.reset(self._token)
        return False
