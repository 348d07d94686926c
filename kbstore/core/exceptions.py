"""
Exception Hierarchy

Defines all exceptions raised by the knowledge store.
Exceptions are organized by domain and include context for debugging.

Design decisions:
- All exceptions inherit from KBStoreError for easy catching
- Exceptions carry structured context, not just messages
- Error codes enable programmatic handling
- Configuration errors are fatal; ingestion errors are per-chunk
"""

from typing import Any


class KBStoreError(Exception):
    """
    Base exception for all knowledge store errors.

    Provides structured error information including:
    - Human-readable message
    - Machine-readable error code
    - Additional context for debugging
    """

    error_code: str = "KBSTORE_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.error_code
        self.context = context or {}
        self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Serialize exception for logs and CLI output."""
        return {
            "error": self.code,
            "message": self.message,
            "context": self.context,
        }


# ============================================================
# Configuration Errors
# ============================================================

class ConfigurationError(KBStoreError):
    """Error in configuration or persisted state that cannot be recovered per record."""

    error_code = "CONFIGURATION_ERROR"


class DimensionMismatchError(ConfigurationError):
    """Vector length differs from the store's established dimension."""

    error_code = "DIMENSION_MISMATCH"

    def __init__(
        self,
        message: str,
        *,
        expected: int,
        actual: int,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.expected = expected
        self.actual = actual


class CorruptRecordError(ConfigurationError):
    """Stored record or vector blob cannot be decoded."""

    error_code = "CORRUPT_RECORD"


# ============================================================
# Knowledge Errors
# ============================================================

class KnowledgeError(KBStoreError):
    """Base error for knowledge store operations."""

    error_code = "KNOWLEDGE_ERROR"


class EmptyContentError(KnowledgeError):
    """Content or query is empty or whitespace only."""

    error_code = "EMPTY_CONTENT"


class RecordNotFoundError(KnowledgeError):
    """Requested record does not exist or was deleted."""

    error_code = "RECORD_NOT_FOUND"


class VectorStoreError(KnowledgeError):
    """Error with backend storage operations."""

    error_code = "VECTOR_STORE_ERROR"


# ============================================================
# Embedding Errors
# ============================================================

class EmbeddingError(KnowledgeError):
    """Error generating embeddings."""

    error_code = "EMBEDDING_ERROR"


class EmbeddingConnectionError(EmbeddingError):
    """Failed to connect to the embedding provider."""

    error_code = "EMBEDDING_CONNECTION_ERROR"


class EmbeddingRateLimitError(EmbeddingError):
    """Rate limit exceeded for the embedding provider."""

    error_code = "EMBEDDING_RATE_LIMIT"

    def __init__(
        self,
        message: str,
        *,
        retry_after: float | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class EmbeddingTimeoutError(EmbeddingError):
    """Embedding request timed out."""

    error_code = "EMBEDDING_TIMEOUT"
