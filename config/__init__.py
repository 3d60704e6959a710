"""Configuration module for docscope.

Provides settings for the document store, crawler, search and embeddings.
"""

from .settings import (
    CrawlerConfig,
    EmbeddingConfig,
    SearchConfig,
    Settings,
    StoreConfig
)

__all__ = [
    'CrawlerConfig',
    'EmbeddingConfig',
    'SearchConfig',
    'Settings',
    'StoreConfig'
]
