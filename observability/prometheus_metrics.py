"""Prometheus metrics for crawling, indexing and search."""

import logging
from typing import Any, Dict, Optional

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from prometheus_client.core import CollectorRegistry

logger = logging.getLogger(__name__)

# Dedicated registry so embedding applications keep their own default one clean
docscope_registry = CollectorRegistry()

# Crawl metrics
crawl_pages = Counter(
    'docscope_crawl_pages_total',
    'Total number of pages processed by crawl jobs',
    ['status'],
    registry=docscope_registry
)

crawl_fetch_duration = Histogram(
    'docscope_crawl_fetch_duration_seconds',
    'Page fetch duration in seconds',
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=docscope_registry
)

crawl_jobs = Counter(
    'docscope_crawl_jobs_total',
    'Total number of finished crawl jobs',
    ['status'],
    registry=docscope_registry
)

crawl_active = Gauge(
    'docscope_crawl_jobs_active',
    'Number of crawl jobs currently running',
    registry=docscope_registry
)

crawl_progress_percent = Gauge(
    'docscope_crawl_progress_percent',
    'Progress of a running crawl job relative to its page limit',
    ['job_id'],
    registry=docscope_registry
)

# Indexing metrics
indexing_chunks = Counter(
    'docscope_indexing_chunks_total',
    'Total number of chunks written to the document store',
    ['library'],
    registry=docscope_registry
)

indexing_duration = Histogram(
    'docscope_indexing_duration_seconds',
    'Duration of a single page ingestion transaction',
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0],
    registry=docscope_registry
)

# Search metrics
search_requests = Counter(
    'docscope_search_requests_total',
    'Total number of search requests',
    ['search_type', 'status'],
    registry=docscope_registry
)

search_duration = Histogram(
    'docscope_search_duration_seconds',
    'Search request duration in seconds',
    ['search_type'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=docscope_registry
)

search_results_count = Histogram(
    'docscope_search_results_count',
    'Number of search results returned',
    ['search_type'],
    buckets=[1, 5, 10, 25, 50, 100],
    registry=docscope_registry
)

# Error metrics
error_count = Counter(
    'docscope_errors_total',
    'Total number of errors',
    ['error_type', 'component'],
    registry=docscope_registry
)


def record_page_metrics(status: str, fetch_duration: Optional[float] = None) -> None:
    """Record the outcome of one crawled page."""
    crawl_pages.labels(status=status).inc()
    if fetch_duration is not None:
        crawl_fetch_duration.observe(fetch_duration)
    if status == "failed":
        error_count.labels(error_type="page_error", component="crawler").inc()


def record_indexing_metrics(library: str, duration: float, chunk_count: int,
                            error: Optional[str] = None) -> None:
    """Record indexing-related metrics."""
    if error:
        error_count.labels(error_type="indexing_error", component="indexing").inc()
        return
    indexing_chunks.labels(library=library).inc(chunk_count)
    indexing_duration.observe(duration)


def record_search_metrics(search_type: str, duration: float, result_count: int,
                          error: Optional[str] = None) -> None:
    """Record search-related metrics."""
    status = "error" if error else "success"
    search_requests.labels(search_type=search_type, status=status).inc()
    search_duration.labels(search_type=search_type).observe(duration)
    if error:
        error_count.labels(error_type="search_error", component="search").inc()
    else:
        search_results_count.labels(search_type=search_type).observe(result_count)


def export_metrics() -> bytes:
    """Render the registry in the Prometheus text format."""
    return generate_latest(docscope_registry)


def get_metrics_summary() -> Dict[str, Any]:
    """Get a summary of current metric totals."""
    summary: Dict[str, Any] = {}
    for metric in docscope_registry.collect():
        for sample in metric.samples:
            if sample.name.endswith("_total"):
                summary[sample.name] = summary.get(sample.name, 0) + sample.value
    return summary
