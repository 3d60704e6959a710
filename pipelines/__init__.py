"""Pipelines package for docscope.

Provides scope and exclusion filtering, link discovery, page processing
stages, fetching, crawl scheduling and ingestion into the document store.
"""

from .crawler import (
    CrawlJob,
    CrawlLimits,
    CrawlProgress,
    CrawlScheduler,
    FrontierEntry,
    JobStatus,
    PageOutcome,
    ScopeConfig,
    canonicalize_url,
    start_crawl
)
from .errors import (
    ContentExtractionError,
    CrawlCancelledError,
    FetchError,
    LinkExtractionError,
    PipelineError
)
from .fetcher import Fetcher, FetchResult, HttpFetcher
from .links import extract_links
from .patterns import get_effective_exclusion_patterns, is_excluded, should_include_url
from .scope import ScopeMode, compute_base_directory, is_in_scope
from .stages import PageContext, default_stages, run_stages

__all__ = [
    # Crawler
    'CrawlJob',
    'CrawlLimits',
    'CrawlProgress',
    'CrawlScheduler',
    'FrontierEntry',
    'JobStatus',
    'PageOutcome',
    'ScopeConfig',
    'canonicalize_url',
    'start_crawl',

    # Errors
    'ContentExtractionError',
    'CrawlCancelledError',
    'FetchError',
    'LinkExtractionError',
    'PipelineError',

    # Fetching and filtering
    'Fetcher',
    'FetchResult',
    'HttpFetcher',
    'extract_links',
    'get_effective_exclusion_patterns',
    'is_excluded',
    'should_include_url',
    'ScopeMode',
    'compute_base_directory',
    'is_in_scope',

    # Page stages
    'PageContext',
    'default_stages',
    'run_stages'
]
