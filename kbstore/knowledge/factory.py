"""
Knowledge Store Factory

Assembles a KnowledgeStore from settings.
The backend is chosen by KnowledgeStoreSettings.backend, nothing else.
"""

from kbstore.config.settings import KnowledgeStoreSettings, Settings, get_settings
from kbstore.core.interfaces import EmbeddingProtocol
from kbstore.knowledge.embeddings import create_embedding_service
from kbstore.knowledge.store import KnowledgeStore
from kbstore.knowledge.vector_store import (
    FileKnowledgeBackend,
    KnowledgeBackend,
    SQLiteKnowledgeBackend,
)


def create_backend(settings: KnowledgeStoreSettings) -> KnowledgeBackend:
    """Open the backend named by settings.backend."""
    if settings.backend == "file":
        return FileKnowledgeBackend(settings.file_path)
    if settings.backend == "sqlite":
        return SQLiteKnowledgeBackend(settings.sqlite_path)
    raise ValueError(f"Unknown knowledge backend: {settings.backend}")


def create_knowledge_store(
    settings: Settings | None = None,
    embeddings: EmbeddingProtocol | None = None,
    backend: KnowledgeBackend | None = None,
) -> KnowledgeStore:
    """
    Create a KnowledgeStore with the specified components.

    Args:
        settings: Optional settings (defaults to get_settings())
        embeddings: Optional embedder (defaults to settings.embedding.provider)
        backend: Optional backend (defaults to settings.knowledge.backend)

    Returns:
        Configured KnowledgeStore
    """
    settings = settings or get_settings()

    return KnowledgeStore(
        backend=backend or create_backend(settings.knowledge),
        embeddings=embeddings or create_embedding_service(settings.embedding),
        settings=settings.knowledge,
    )
