"""Observability package for docscope."""

from .logging import (
    JSONFormatter,
    StructuredLogger,
    get_logger,
    get_structured_logger,
    setup_logging,
)
from .prometheus_metrics import (
    docscope_registry,
    export_metrics,
    get_metrics_summary,
    record_indexing_metrics,
    record_page_metrics,
    record_search_metrics
)
from .telemetry import (
    CRAWL_COMPLETED,
    CRAWL_PROGRESS,
    CRAWL_STARTED,
    CompositeTelemetrySink,
    LoggingTelemetrySink,
    NullTelemetrySink,
    PrometheusTelemetrySink,
    TelemetrySink,
    default_sink,
    emit_safely
)

__all__ = [
    'JSONFormatter',
    'StructuredLogger',
    'get_logger',
    'get_structured_logger',
    'setup_logging',
    'docscope_registry',
    'export_metrics',
    'get_metrics_summary',
    'record_indexing_metrics',
    'record_page_metrics',
    'record_search_metrics',
    'CRAWL_COMPLETED',
    'CRAWL_PROGRESS',
    'CRAWL_STARTED',
    'CompositeTelemetrySink',
    'LoggingTelemetrySink',
    'NullTelemetrySink',
    'PrometheusTelemetrySink',
    'TelemetrySink',
    'default_sink',
    'emit_safely'
]
