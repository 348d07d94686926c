"""
Core Module

Contains fundamental types, exceptions and interfaces used across
all other modules of the knowledge store.

The interfaces module defines protocols for cross-module communication,
preventing circular dependencies.
"""

from kbstore.core.exceptions import (
    ConfigurationError,
    CorruptRecordError,
    DimensionMismatchError,
    EmbeddingConnectionError,
    EmbeddingError,
    EmbeddingRateLimitError,
    EmbeddingTimeoutError,
    EmptyContentError,
    KBStoreError,
    KnowledgeError,
    RecordNotFoundError,
    VectorStoreError,
)
from kbstore.core.interfaces import EmbeddingProtocol, KnowledgeStoreProtocol
from kbstore.core.types import (
    DuplicateGroup,
    IngestResult,
    KnowledgeMetadata,
    KnowledgeRecord,
    KnowledgeStats,
    SearchHit,
)

__all__ = [
    # Types
    "DuplicateGroup",
    "IngestResult",
    "KnowledgeMetadata",
    "KnowledgeRecord",
    "KnowledgeStats",
    "SearchHit",
    # Exceptions
    "ConfigurationError",
    "CorruptRecordError",
    "DimensionMismatchError",
    "EmbeddingConnectionError",
    "EmbeddingError",
    "EmbeddingRateLimitError",
    "EmbeddingTimeoutError",
    "EmptyContentError",
    "KBStoreError",
    "KnowledgeError",
    "RecordNotFoundError",
    "VectorStoreError",
    # Interfaces/Protocols
    "EmbeddingProtocol",
    "KnowledgeStoreProtocol",
]
