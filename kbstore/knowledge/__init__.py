"""
Knowledge Layer

Chunking, embedding, duplicate detection, persistence and ranking.
"""

from kbstore.knowledge.chunking import SentenceChunker, split_sentences, split_text
from kbstore.knowledge.codec import decode_vector, encode_vector
from kbstore.knowledge.dedup import DuplicateGuard, find_duplicate_groups, mean_pairwise_similarity
from kbstore.knowledge.embeddings import (
    EmbeddingService,
    HashEmbeddings,
    LocalEmbeddings,
    OpenAIEmbeddings,
    create_embedding_service,
)
from kbstore.knowledge.factory import create_backend, create_knowledge_store
from kbstore.knowledge.similarity import cosine_similarity, rank
from kbstore.knowledge.store import NO_RESULTS, KnowledgeStore, format_results, recency_score
from kbstore.knowledge.vector_store import (
    FileKnowledgeBackend,
    KnowledgeBackend,
    SQLiteKnowledgeBackend,
)

__all__ = [
    # Chunking
    "SentenceChunker",
    "split_sentences",
    "split_text",
    # Codec
    "encode_vector",
    "decode_vector",
    # Similarity
    "cosine_similarity",
    "rank",
    # Duplicates
    "DuplicateGuard",
    "find_duplicate_groups",
    "mean_pairwise_similarity",
    # Embeddings
    "EmbeddingService",
    "OpenAIEmbeddings",
    "LocalEmbeddings",
    "HashEmbeddings",
    "create_embedding_service",
    # Backends
    "KnowledgeBackend",
    "FileKnowledgeBackend",
    "SQLiteKnowledgeBackend",
    # Store
    "KnowledgeStore",
    "NO_RESULTS",
    "format_results",
    "recency_score",
    "create_backend",
    "create_knowledge_store",
]
