import json
import logging

from observability.logging import JSONFormatter, get_structured_logger
from observability.prometheus_metrics import docscope_registry, export_metrics, record_search_metrics
from observability.telemetry import (
    CRAWL_COMPLETED,
    CRAWL_PROGRESS,
    CRAWL_STARTED,
    CompositeTelemetrySink,
    LoggingTelemetrySink,
    PrometheusTelemetrySink,
    emit_safely,
)


def sample(name, labels=None):
    return docscope_registry.get_sample_value(name, labels or {}) or 0.0


class Recording:
    def __init__(self):
        self.events = []

    def track(self, event, properties):
        self.events.append(event)


class Broken:
    def track(self, event, properties):
        raise RuntimeError("unreachable backend")


def test_emit_safely_swallows_sink_errors():
    emit_safely(Broken(), CRAWL_STARTED, {})
    emit_safely(None, CRAWL_STARTED, {})


def test_composite_isolates_failing_sink():
    recording = Recording()
    CompositeTelemetrySink([Broken(), recording]).track(CRAWL_STARTED, {"job_id": "j"})
    assert recording.events == [CRAWL_STARTED]


def test_prometheus_sink_tracks_crawl_lifecycle():
    sink = PrometheusTelemetrySink()
    fetched_before = sample("docscope_crawl_pages_total", {"status": "fetched"})
    completed_before = sample("docscope_crawl_jobs_total", {"status": "completed"})
    active_before = sample("docscope_crawl_jobs_active")

    sink.track(CRAWL_STARTED, {"job_id": "job-1"})
    assert sample("docscope_crawl_jobs_active") == active_before + 1

    sink.track(CRAWL_PROGRESS, {"job_id": "job-1", "page_status": "fetched", "fetch_duration": 0.2,
                                "percent": 40.0})
    assert sample("docscope_crawl_pages_total", {"status": "fetched"}) == fetched_before + 1
    assert sample("docscope_crawl_progress_percent", {"job_id": "job-1"}) == 40.0

    sink.track(CRAWL_COMPLETED, {"job_id": "job-1", "status": "completed"})
    assert sample("docscope_crawl_jobs_active") == active_before
    assert sample("docscope_crawl_jobs_total", {"status": "completed"}) == completed_before + 1
    assert docscope_registry.get_sample_value("docscope_crawl_progress_percent", {"job_id": "job-1"}) is None


def test_search_metrics_are_exported():
    record_search_metrics("fulltext", 0.01, 3)
    assert b"docscope_search_requests_total" in export_metrics()


def test_logging_sink_attaches_context(caplog):
    with caplog.at_level(logging.DEBUG, logger="docscope.telemetry"):
        LoggingTelemetrySink().track(CRAWL_PROGRESS, {"job_id": "job-2", "pages_fetched": 3})

    record = caplog.records[-1]
    assert record.ctx_job_id == "job-2"
    assert record.ctx_pages_fetched == 3


def test_json_formatter_nests_context():
    record = logging.LogRecord("docscope.test", logging.INFO, __file__, 1, "indexed %s", ("react",), None)
    record.ctx_library = "react"
    record.request_id = "abc"

    entry = json.loads(JSONFormatter("docscope").format(record))

    assert entry["message"] == "indexed react"
    assert entry["service"] == "docscope"
    assert entry["context"] == {"library": "react"}
    assert entry["request_id"] == "abc"


def test_structured_logger_binds_context(caplog):
    log = get_structured_logger("docscope.test", library="react").bind(version="18.3.1")
    with caplog.at_level(logging.INFO, logger="docscope.test"):
        log.info("crawl finished", pages=4)

    record = caplog.records[-1]
    assert (record.ctx_library, record.ctx_version, record.ctx_pages) == ("react", "18.3.1", 4)
