"""
kbstore: Embedding-Backed Knowledge Store

A small, self-contained knowledge base for retrieval-augmented agents:
- Ingestion: sentence-aware chunking, embedding, duplicate suppression
- Storage: compact binary vectors in an append-only file or an SQLite table
- Retrieval: exact cosine ranking over the in-process working set
- Maintenance: statistics, age-based cleanup, duplicate scans

Copyright (c) 2024 kbstore Contributors
"""

__version__ = "0.1.0"
__author__ = "kbstore Team"
