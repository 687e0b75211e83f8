"""
Error types for the session coordinator.

Every error carries a stable ``code`` so the public operation surface can
report failures as structured results instead of raising.
"""

from typing import Optional


class CoordinatorError(Exception):
    """Base exception for session coordinator errors."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class ConfigurationError(CoordinatorError):
    """Raised when required credentials or endpoints are missing."""

    code = "CONFIGURATION_ERROR"


class DuplicateSessionError(CoordinatorError):
    """Raised when a session is started while another one is active."""

    code = "DUPLICATE_SESSION"


class SessionNotFoundError(CoordinatorError):
    """Raised when an operation requires an active session and there is none."""

    code = "SESSION_NOT_FOUND"


class ConstraintNotFoundError(CoordinatorError):
    """Raised when a lift targets an unknown constraint id."""

    code = "CONSTRAINT_NOT_FOUND"

    def __init__(self, constraint_id: str):
        super().__init__(f"Constraint not found: {constraint_id}")
        self.constraint_id = constraint_id


class EmbeddingProviderError(CoordinatorError):
    """Raised when the embedding provider fails."""

    code = "EMBEDDING_PROVIDER_ERROR"


class VectorIndexError(CoordinatorError):
    """Raised when the vector index service fails."""

    code = "VECTOR_INDEX_ERROR"


class ValidationError(CoordinatorError):
    """Raised when a required request field is missing or malformed."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field_name: Optional[str] = None):
        super().__init__(message)
        self.field_name = field_name
