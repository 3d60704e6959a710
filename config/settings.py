"""Runtime configuration for docscope.

Every setting can be overridden with a ``DOCSCOPE_*`` environment variable.
"""

import os
import logging
from typing import Optional
from pydantic import BaseModel, Field

from pipelines.crawler import CrawlLimits

logger = logging.getLogger(__name__)

ENV_PREFIX = "DOCSCOPE_"


def _env(name: str, default: str) -> str:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


def _env_bool(name: str, default: bool) -> bool:
    return _env(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


class StoreConfig(BaseModel):
    """Document store configuration."""
    db_path: str = Field(default="docscope.db", description="SQLite database path")
    enable_wal: bool = Field(default=True, description="Use WAL journaling for file databases")

    @classmethod
    def from_env(cls) -> 'StoreConfig':
        return cls(
            db_path=_env('DB_PATH', 'docscope.db'),
            enable_wal=_env_bool('DB_WAL', True),
        )


class CrawlerConfig(BaseModel):
    """Crawl scheduling and fetching configuration."""
    max_pages: int = Field(default=1000, ge=1, description="Maximum pages per crawl")
    max_depth: int = Field(default=3, ge=0, description="Maximum link depth from the root")
    max_concurrency: int = Field(default=3, ge=1, description="Concurrent fetch workers")
    request_timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    max_retries: int = Field(default=3, ge=0, description="Fetch retry attempts")
    retry_delay: float = Field(default=1.0, ge=0, description="Base retry delay in seconds")
    cancel_grace_period: float = Field(default=5.0, ge=0, description="Seconds in-flight fetches get after cancel")
    user_agent: str = Field(default="docscope/0.1", description="User agent header")

    @classmethod
    def from_env(cls) -> 'CrawlerConfig':
        return cls(
            max_pages=int(_env('MAX_PAGES', '1000')),
            max_depth=int(_env('MAX_DEPTH', '3')),
            max_concurrency=int(_env('MAX_CONCURRENCY', '3')),
            request_timeout=float(_env('REQUEST_TIMEOUT', '30')),
            max_retries=int(_env('MAX_RETRIES', '3')),
            retry_delay=float(_env('RETRY_DELAY', '1.0')),
            cancel_grace_period=float(_env('CANCEL_GRACE_PERIOD', '5.0')),
            user_agent=_env('USER_AGENT', 'docscope/0.1'),
        )

    def limits(self, max_pages: Optional[int] = None, max_depth: Optional[int] = None,
               max_concurrency: Optional[int] = None) -> CrawlLimits:
        """Crawl limits, with per-source overrides."""
        return CrawlLimits(
            max_pages=max_pages if max_pages is not None else self.max_pages,
            max_depth=max_depth if max_depth is not None else self.max_depth,
            max_concurrency=max_concurrency if max_concurrency is not None else self.max_concurrency,
            cancel_grace_period=self.cancel_grace_period,
        )


class SearchConfig(BaseModel):
    """Hybrid search configuration."""
    rrf_k: int = Field(default=60, ge=1, description="Reciprocal rank fusion constant")
    fts_weight: float = Field(default=1.0, ge=0, description="Weight of the lexical ranking")
    vector_weight: float = Field(default=1.0, ge=0, description="Weight of the semantic ranking")
    candidate_multiplier: int = Field(default=2, ge=1, description="Candidates fetched per requested result")
    default_limit: int = Field(default=5, ge=1, description="Results returned when no limit is given")

    @classmethod
    def from_env(cls) -> 'SearchConfig':
        return cls(
            rrf_k=int(_env('RRF_K', '60')),
            fts_weight=float(_env('FTS_WEIGHT', '1.0')),
            vector_weight=float(_env('VECTOR_WEIGHT', '1.0')),
            candidate_multiplier=int(_env('CANDIDATE_MULTIPLIER', '2')),
            default_limit=int(_env('SEARCH_LIMIT', '5')),
        )


class EmbeddingConfig(BaseModel):
    """Embedding model configuration."""
    provider: str = Field(default="none", description="'none' or 'sentence-transformers'")
    model_name: str = Field(default="all-MiniLM-L6-v2", description="Embedding model name")
    batch_size: int = Field(default=32, ge=1, description="Texts embedded per model call")

    @classmethod
    def from_env(cls) -> 'EmbeddingConfig':
        return cls(
            provider=_env('EMBEDDING_PROVIDER', 'none'),
            model_name=_env('EMBEDDING_MODEL', 'all-MiniLM-L6-v2'),
            batch_size=int(_env('EMBEDDING_BATCH_SIZE', '32')),
        )


class Settings(BaseModel):
    """All docscope settings."""
    store: StoreConfig = Field(default_factory=StoreConfig)
    crawler: CrawlerConfig = Field(default_factory=CrawlerConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)

    @classmethod
    def from_env(cls) -> 'Settings':
        """Create configuration from environment variables."""
        settings = cls(
            store=StoreConfig.from_env(),
            crawler=CrawlerConfig.from_env(),
            search=SearchConfig.from_env(),
            embedding=EmbeddingConfig.from_env(),
        )
        logger.debug(f"Loaded settings from environment: db={settings.store.db_path}, "
                     f"embedding={settings.embedding.provider}")
        return settings
