"""Exceptions raised by the crawl pipeline."""

from typing import Optional


class PipelineError(Exception):
    """Base class for crawl pipeline errors."""

    def __init__(self, message: str, url: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.url = url
        self.cause = cause


class FetchError(PipelineError):
    """A page could not be fetched after the fetcher's own retries."""

    def __init__(self, message: str, url: Optional[str] = None,
                 status_code: Optional[int] = None, cause: Optional[BaseException] = None):
        super().__init__(message, url=url, cause=cause)
        self.status_code = status_code


class LinkExtractionError(PipelineError):
    """Link discovery failed for a single page."""


class ContentExtractionError(PipelineError):
    """Text extraction or chunking failed for a single page."""


class CrawlCancelledError(PipelineError):
    """Raised by ``CrawlJob.wait(raise_on_cancel=True)`` for a cancelled job."""
