"""
Configuration Module

Centralized configuration management for the knowledge store.
"""

from kbstore.config.settings import (
    EmbeddingSettings,
    KnowledgeStoreSettings,
    ObservabilitySettings,
    Settings,
    get_settings,
)

__all__ = [
    "EmbeddingSettings",
    "KnowledgeStoreSettings",
    "ObservabilitySettings",
    "Settings",
    "get_settings",
]
