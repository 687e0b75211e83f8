"""
Coordination Service - the public operation surface.

Every operation returns an ``OperationResult`` envelope and never raises:
failures are reported with a stable error code. Each call runs inside a
session logging context and is recorded in the metrics collector.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import ValidationError as PayloadValidationError

from .config import (
    SessionCoordinatorConfig,
    create_embedding_provider,
    create_vector_index,
    load_config,
)
from .errors import CoordinatorError, ValidationError
from .memory.types import ConstraintScope, DetectedFrom, NoteType, SessionNote
from .observability.context import ContextManager, ContextScope
from .observability.metrics import MetricsCollector
from .session import SessionHandle, SessionManager
from .stuck.types import StuckPattern


logger = logging.getLogger(__name__)


@dataclass
class OperationError:
    """A reported failure."""

    code: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code, "message": self.message}


@dataclass
class OperationResult:
    """
    Result envelope for a public operation.

    Attributes:
        success: Whether the operation completed
        data: JSON-serializable result payload
        error: Failure code and message when unsuccessful
        metadata: Operation name, duration and per-operation counters
        value: The native result object (not serialized)
    """

    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[OperationError] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result: Dict[str, Any] = {"success": self.success}
        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error.to_dict()
        result["metadata"] = self.metadata
        return result


def _require_field(value: Any, name: str) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{name} is required", field_name=name)


def _parse_enum(enum_cls, value: Any, name: str):
    try:
        return enum_cls(value)
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {name}: {value}. Expected one of: {allowed}", field_name=name) from e


class CoordinationService:
    """
    Session coordination operations with structured results.

    Example usage:
        service = CoordinationService.from_config(load_config())

        started = await service.start_session("2025-11-09-auth-work", "/home/dev/my-app")
        handle = started.value

        await service.save_note(handle, "decision", "Use JWT for auth")
        analysis = await service.check_stuck_pattern(handle)

        await service.finalize_session(handle)
    """

    def __init__(self, manager: SessionManager, metrics: Optional[MetricsCollector] = None):
        self.manager = manager
        self.metrics = metrics or MetricsCollector()

    @classmethod
    def from_config(cls, config: Optional[SessionCoordinatorConfig] = None) -> "CoordinationService":
        """
        Build a service from configuration.

        Raises:
            ConfigurationError: If required endpoints or credentials are missing
        """
        config = config or load_config()
        config.validate()
        manager = SessionManager(
            index=create_vector_index(config),
            embedding_provider=create_embedding_provider(config),
            stuck_config=config.stuck,
        )
        return cls(manager)

    async def _execute(
        self,
        operation: str,
        handle: Optional[SessionHandle],
        action: Callable[[], Awaitable[Any]],
        require_session: bool = True,
    ) -> OperationResult:
        """Run an action inside a logging context and wrap the outcome."""
        start = time.perf_counter()
        context = ContextManager.create_context(
            session_id=handle.session_id if handle else None,
            operation=operation,
            project_path=handle.project_path if handle else None,
        )

        with ContextScope(context):
            try:
                if require_session:
                    self.manager.require(handle)
                value, data, extra = await action()
                result = OperationResult(success=True, data=data, value=value, metadata=extra)
            except CoordinatorError as e:
                logger.warning(f"{operation} failed: [{e.code}] {e.message}")
                result = OperationResult(success=False, error=OperationError(e.code, e.message))
            except PayloadValidationError as e:
                logger.warning(f"{operation} failed: invalid payload ({e.error_count()} error(s))")
                result = OperationResult(
                    success=False,
                    error=OperationError(ValidationError.code, str(e)),
                )
            except Exception as e:
                logger.exception(f"{operation} failed unexpectedly")
                result = OperationResult(
                    success=False,
                    error=OperationError(CoordinatorError.code, str(e) or type(e).__name__),
                )

        duration_ms = (time.perf_counter() - start) * 1000
        result.metadata = {
            "operation": operation,
            "duration_ms": round(duration_ms, 2),
            **result.metadata,
        }
        self.metrics.record_operation(
            operation,
            duration_ms,
            success=result.success,
            error_code=result.error.code if result.error else None,
        )
        return result

    # ========== Session lifecycle ==========

    async def start_session(self, session_id: str, project_path: str) -> OperationResult:
        """Start a session; ``value`` holds the new handle."""
        async def action():
            _require_field(session_id, "session_id")
            _require_field(project_path, "project_path")
            handle = await self.manager.start_session(session_id, project_path)
            self.metrics.set_active_sessions(1)
            return handle, handle.to_dict(), {}

        return await self._execute("start_session", None, action, require_session=False)

    async def finalize_session(self, handle: SessionHandle) -> OperationResult:
        """Delete the session's memory; safe to call more than once."""
        async def action():
            if handle is None:
                raise ValidationError("handle is required", field_name="handle")
            await self.manager.finalize_session(handle)
            self.metrics.set_active_sessions(1 if self.manager.active else 0)
            return None, {"session_id": handle.session_id, "finalized": True}, {}

        return await self._execute("finalize_session", handle, action, require_session=False)

    # ========== Memory ==========

    async def save_note(
        self,
        handle: SessionHandle,
        note_type: Union[NoteType, str],
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> OperationResult:
        """Store a note in session memory."""
        async def action():
            _require_field(content, "content")
            parsed_type = _parse_enum(NoteType, note_type, "note_type")
            if parsed_type == NoteType.CONSTRAINT:
                raise ValidationError(
                    "Constraints are recorded with track_constraint",
                    field_name="note_type",
                )
            stored = await handle.store.save_note(SessionNote(parsed_type, content, metadata or {}))
            return stored, stored.to_dict(), {}

        return await self._execute("save_note", handle, action)

    async def search(self, handle: SessionHandle, query: str, limit: int = 5) -> OperationResult:
        """Semantic search over session memory."""
        async def action():
            _require_field(query, "query")
            results = await handle.store.search(query, limit)
            return results, {"results": [r.to_dict() for r in results]}, {"result_count": len(results)}

        return await self._execute("search", handle, action)

    async def check_duplicate(
        self,
        handle: SessionHandle,
        description: str,
        threshold: float = 0.75,
    ) -> OperationResult:
        """Find notes that already cover the described work."""
        async def action():
            _require_field(description, "description")
            duplicates = await handle.store.check_duplicate(description, threshold)
            data = {
                "is_duplicate": bool(duplicates),
                "duplicates": [d.to_dict() for d in duplicates],
            }
            return duplicates, data, {"result_count": len(duplicates)}

        return await self._execute("check_duplicate", handle, action)

    async def extract_valuable_memories(self, handle: SessionHandle) -> OperationResult:
        """All non-constraint notes, most recent first."""
        async def action():
            memories = await handle.store.extract_valuable_memories()
            return memories, {"memories": [m.to_dict() for m in memories]}, {"result_count": len(memories)}

        return await self._execute("extract_valuable_memories", handle, action)

    async def get_stats(self, handle: SessionHandle) -> OperationResult:
        """Note counts plus operation metrics."""
        async def action():
            stats = await handle.store.get_stats()
            data = stats.to_dict()
            data["metrics"] = self.metrics.get_summary()
            return stats, data, {}

        return await self._execute("get_stats", handle, action)

    # ========== Constraints ==========

    async def track_constraint(
        self,
        handle: SessionHandle,
        content: str,
        scope: Union[ConstraintScope, str] = ConstraintScope.SESSION,
        detected_from: Union[DetectedFrom, str] = DetectedFrom.EXPLICIT,
        keywords: Optional[List[str]] = None,
    ) -> OperationResult:
        """Record a new active constraint."""
        async def action():
            _require_field(content, "content")
            constraint = await handle.constraints.track_constraint(
                content,
                detected_from=_parse_enum(DetectedFrom, detected_from, "detected_from"),
                scope=_parse_enum(ConstraintScope, scope, "scope"),
                keywords=keywords,
            )
            return constraint, constraint.to_dict(), {}

        return await self._execute("track_constraint", handle, action)

    async def get_active_constraints(self, handle: SessionHandle) -> OperationResult:
        """List active constraints."""
        async def action():
            constraints = await handle.constraints.get_active_constraints()
            data = {"constraints": [c.to_dict() for c in constraints]}
            return constraints, data, {"result_count": len(constraints)}

        return await self._execute("get_active_constraints", handle, action)

    async def lift_constraint(self, handle: SessionHandle, constraint_id: str) -> OperationResult:
        """Lift a constraint by id."""
        async def action():
            _require_field(constraint_id, "constraint_id")
            constraint = await handle.constraints.lift_constraint(constraint_id)
            return constraint, constraint.to_dict(), {}

        return await self._execute("lift_constraint", handle, action)

    async def check_violation(self, handle: SessionHandle, proposed_action: str) -> OperationResult:
        """Check a proposed action against active constraints."""
        async def action():
            _require_field(proposed_action, "proposed_action")
            report = await handle.constraints.check_violation(proposed_action)
            return report, report.to_dict(), {"violation_count": len(report.violations)}

        return await self._execute("check_violation", handle, action)

    # ========== Stuck detection and recovery ==========

    async def check_stuck_pattern(
        self,
        handle: SessionHandle,
        project_path: Optional[str] = None,
    ) -> OperationResult:
        """Run the stuck heuristics for the session."""
        async def action():
            analysis = await handle.detector.analyze(project_path or handle.project_path)
            return analysis, analysis.to_dict(), {"pattern_count": len(analysis.detected_patterns)}

        return await self._execute("check_stuck_pattern", handle, action)

    async def get_recovery_suggestions(
        self,
        handle: SessionHandle,
        stuck_pattern: Union[StuckPattern, Dict[str, Any]],
        project_path: Optional[str] = None,
        max_suggestions: Optional[int] = 3,
    ) -> OperationResult:
        """Generate ranked recovery suggestions for a stuck pattern."""
        async def action():
            if stuck_pattern is None:
                raise ValidationError("stuck_pattern is required", field_name="stuck_pattern")
            pattern = stuck_pattern
            if isinstance(pattern, dict):
                try:
                    pattern = StuckPattern.from_dict(pattern)
                except (KeyError, ValueError, TypeError, AttributeError) as e:
                    raise ValidationError(f"Invalid stuck_pattern: {e}", field_name="stuck_pattern") from e
            limit = 3 if max_suggestions is None else max_suggestions
            if limit < 0:
                raise ValidationError("max_suggestions must not be negative", field_name="max_suggestions")

            analysis = await handle.recovery.generate_suggestions(pattern, limit)
            return analysis, analysis.to_dict(), {
                "suggestion_count": len(analysis.suggestions),
                "project_path": project_path or handle.project_path,
            }

        return await self._execute("get_recovery_suggestions", handle, action)
