"""Indexer package for docscope.

Provides the versioned document store, schema migrations, version matching
and hybrid search.
"""

from .document_store import DocumentChunk, DocumentStore, LibrarySummary, StoredDocument, VersionSummary
from .embeddings import (
    EMBEDDING_DIMENSION,
    Embedder,
    SentenceTransformerEmbedder,
    create_embedder,
    embedder_from_config,
    pad_embedding
)
from .errors import LibraryNotFoundError, MigrationError, SearchError, StoreError, VersionNotFoundError
from .hybrid_search import HybridSearcher, SearchResult, reciprocal_rank_fusion
from .migrations import apply_migrations, load_migrations
from .versions import VersionConstraint, find_best_version, parse_version

__all__ = [
    # Store
    'DocumentChunk',
    'DocumentStore',
    'LibrarySummary',
    'StoredDocument',
    'VersionSummary',
    'apply_migrations',
    'load_migrations',

    # Embeddings
    'EMBEDDING_DIMENSION',
    'Embedder',
    'SentenceTransformerEmbedder',
    'create_embedder',
    'embedder_from_config',
    'pad_embedding',

    # Search
    'HybridSearcher',
    'SearchResult',
    'reciprocal_rank_fusion',
    'VersionConstraint',
    'find_best_version',
    'parse_version',

    # Errors
    'StoreError',
    'MigrationError',
    'SearchError',
    'LibraryNotFoundError',
    'VersionNotFoundError',
]
