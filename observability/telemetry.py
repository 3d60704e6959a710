"""Best-effort telemetry sinks for crawl progress and completion events.

Telemetry must never interfere with a crawl: ``emit_safely`` swallows and
logs anything a sink raises.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol

from .prometheus_metrics import crawl_active, crawl_jobs, crawl_progress_percent, record_page_metrics

logger = logging.getLogger(__name__)

CRAWL_STARTED = "crawl_started"
CRAWL_PROGRESS = "crawl_progress"
CRAWL_COMPLETED = "crawl_completed"


class TelemetrySink(Protocol):
    """Receiver of telemetry events."""

    def track(self, event: str, properties: Dict[str, Any]) -> None:
        ...


class NullTelemetrySink:
    """Discards every event."""

    def track(self, event: str, properties: Dict[str, Any]) -> None:
        return None


class LoggingTelemetrySink:
    """Writes events to a logger as structured records."""

    def __init__(self, logger_name: str = "docscope.telemetry", level: int = logging.DEBUG):
        self.logger = logging.getLogger(logger_name)
        self.level = level

    def track(self, event: str, properties: Dict[str, Any]) -> None:
        self.logger.log(self.level, f"telemetry event {event}",
                        extra={f"ctx_{k}": v for k, v in properties.items()})


class PrometheusTelemetrySink:
    """Maps crawl events onto the Prometheus collectors."""

    def track(self, event: str, properties: Dict[str, Any]) -> None:
        job_id = str(properties.get("job_id", "unknown"))
        if event == CRAWL_STARTED:
            crawl_active.inc()
        elif event == CRAWL_PROGRESS:
            crawl_progress_percent.labels(job_id=job_id).set(properties.get("percent", 0.0))
            if properties.get("page_status"):
                record_page_metrics(str(properties["page_status"]), properties.get("fetch_duration"))
        elif event == CRAWL_COMPLETED:
            crawl_active.dec()
            crawl_jobs.labels(status=str(properties.get("status", "unknown"))).inc()
            try:
                crawl_progress_percent.remove(job_id)
            except KeyError:
                pass


class CompositeTelemetrySink:
    """Fans an event out to several sinks, isolating their failures."""

    def __init__(self, sinks: Iterable[TelemetrySink]):
        self.sinks: List[TelemetrySink] = list(sinks)

    def track(self, event: str, properties: Dict[str, Any]) -> None:
        for sink in self.sinks:
            emit_safely(sink, event, properties)


def default_sink() -> TelemetrySink:
    return CompositeTelemetrySink([LoggingTelemetrySink(), PrometheusTelemetrySink()])


def emit_safely(sink: Optional[TelemetrySink], event: str, properties: Dict[str, Any]) -> None:
    """Deliver an event, never raising."""
    if sink is None:
        return
    try:
        sink.track(event, properties)
    except Exception as e:
        logger.debug(f"Telemetry sink {type(sink).__name__} failed on {event}: {e}")
