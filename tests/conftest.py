"""
Test Configuration

Shared fixtures and test utilities for the knowledge store.
"""

import logging

import pytest

from kbstore.config.settings import KnowledgeStoreSettings
from kbstore.knowledge.embeddings import HashEmbeddings
from kbstore.knowledge.store import KnowledgeStore
from kbstore.knowledge.vector_store import FileKnowledgeBackend, SQLiteKnowledgeBackend
from tests.fixtures import ManualClock, ScriptedEmbeddings


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def hash_embeddings():
    return HashEmbeddings(dimension=64)


@pytest.fixture
def scripted_embeddings():
    return ScriptedEmbeddings()


@pytest.fixture(params=["file", "sqlite"])
def backend(request, tmp_path):
    """Each backend, fresh, under a temporary directory."""
    if request.param == "file":
        return FileKnowledgeBackend(tmp_path / "records.jsonl")
    return SQLiteKnowledgeBackend(tmp_path / "knowledge.sqlite")


@pytest.fixture
def store_settings():
    return KnowledgeStoreSettings(chunk_size=200, chunk_overlap=20)


@pytest.fixture
def store(backend, hash_embeddings, store_settings, clock):
    """KnowledgeStore over each backend with the offline hash embedder."""
    return KnowledgeStore(backend, hash_embeddings, settings=store_settings, clock=clock)


@pytest.fixture
def scripted_store(backend, scripted_embeddings, store_settings, clock):
    """KnowledgeStore over each backend with preset vectors."""
    return KnowledgeStore(backend, scripted_embeddings, settings=store_settings, clock=clock)


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo configure_logging so later tests see records through the root logger."""
    yield
    logger = logging.getLogger("kbstore")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


# Markers
def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")
