"""Bounded-concurrency crawl scheduling for docscope.

A ``CrawlJob`` owns its frontier and visited set. ``CrawlScheduler`` runs a
pool of asyncio workers that pull frontier entries, fetch them, hand the
result to a page processor and enqueue newly discovered in-scope links one
level deeper.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set, Union
from urllib.parse import urldefrag, urlsplit, urlunsplit

from observability.telemetry import (
    CRAWL_COMPLETED,
    CRAWL_PROGRESS,
    CRAWL_STARTED,
    TelemetrySink,
    emit_safely,
)

from .errors import CrawlCancelledError
from .fetcher import Fetcher, FetchResult
from .patterns import get_effective_exclusion_patterns, should_include_url
from .scope import ScopeMode, is_in_scope

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443}


class JobStatus(str, Enum):
    """Crawl job lifecycle."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_finished(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.CANCELLED, JobStatus.FAILED)


@dataclass(frozen=True)
class ScopeConfig:
    """Crawl boundary, fixed for the lifetime of a job."""
    root_url: str
    mode: ScopeMode = ScopeMode.SUBPAGES

    def __post_init__(self):
        parsed = urlsplit(self.root_url)
        if not parsed.scheme or not (parsed.netloc or parsed.scheme == "file"):
            raise ValueError(f"Root URL must be absolute: {self.root_url!r}")
        object.__setattr__(self, "mode", ScopeMode(self.mode))

    def contains(self, url: str) -> bool:
        return is_in_scope(self.root_url, url, self.mode)


@dataclass
class CrawlLimits:
    """Page, depth and concurrency limits of a job."""
    max_pages: int = 1000
    max_depth: int = 3
    max_concurrency: int = 3
    cancel_grace_period: float = 5.0

    def __post_init__(self):
        if self.max_pages < 1:
            raise ValueError("max_pages must be at least 1")
        if self.max_depth < 0:
            raise ValueError("max_depth must not be negative")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.cancel_grace_period < 0:
            raise ValueError("cancel_grace_period must not be negative")


@dataclass(frozen=True)
class FrontierEntry:
    """A URL waiting to be fetched."""
    url: str
    depth: int


@dataclass
class CrawlProgress:
    """Progress counters reported after every page."""
    max_pages: int
    pages_fetched: int = 0
    pages_failed: int = 0
    pages_discovered: int = 0
    current_depth: int = 0

    @property
    def percent(self) -> float:
        done = self.pages_fetched + self.pages_failed
        return round(min(100.0, 100.0 * done / self.max_pages), 2) if self.max_pages else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pages_fetched": self.pages_fetched,
            "pages_failed": self.pages_failed,
            "pages_discovered": self.pages_discovered,
            "current_depth": self.current_depth,
            "max_pages": self.max_pages,
            "percent": self.percent,
        }


@dataclass
class FailedPage:
    url: str
    depth: int
    error: str


@dataclass
class PageOutcome:
    """What a page processor reports back to the scheduler."""
    links: List[str] = field(default_factory=list)
    errors: List[Exception] = field(default_factory=list)
    chunk_count: int = 0


PageProcessor = Callable[[FetchResult, FrontierEntry], Awaitable[PageOutcome]]


def canonicalize_url(url: str) -> str:
    """Canonical form used for visited-set membership.

    Lower-cases scheme and host, drops default ports and the fragment, and
    removes a trailing slash except on the root path.
    """
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if ":" in host:
        host = f"[{host}]"
    try:
        port = parts.port
    except ValueError:
        port = None
    netloc = host
    if parts.username:
        userinfo = parts.username + (f":{parts.password}" if parts.password else "")
        netloc = f"{userinfo}@{host}"
    if port and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{netloc}:{port}"

    path = parts.path or "/"
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"
    return urlunsplit((scheme, netloc, path, parts.query, ""))


class CrawlJob:
    """Handle to a single crawl.

    The job owns its configuration and results. Use ``wait()`` to await the
    final state and ``cancel()`` to stop dispatching new fetches.
    """

    def __init__(self,
                 scope: ScopeConfig,
                 limits: Optional[CrawlLimits] = None,
                 exclusion_patterns: Optional[Sequence[str]] = None,
                 include_patterns: Optional[Sequence[str]] = None,
                 job_id: Optional[str] = None):
        self.id = job_id or str(uuid.uuid4())
        self.scope = scope
        self.limits = limits or CrawlLimits()
        self.exclusion_patterns: List[str] = get_effective_exclusion_patterns(exclusion_patterns)
        self.include_patterns: List[str] = list(include_patterns or [])
        self.status = JobStatus.PENDING
        self.progress = CrawlProgress(max_pages=self.limits.max_pages)
        self.failed_pages: List[FailedPage] = []
        self.page_errors: Dict[str, List[str]] = {}
        self.error: Optional[BaseException] = None
        self.created_at = datetime.now()
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None
        self._cancel_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def duration(self) -> Optional[float]:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None

    def cancel(self) -> None:
        """Request cancellation. In-flight fetches are allowed to finish."""
        if not self.status.is_finished:
            logger.info(f"Cancellation requested for crawl job {self.id}")
            self._cancel_event.set()

    async def wait(self, raise_on_cancel: bool = False) -> "CrawlJob":
        """Wait until the job has finished and return it."""
        if self._task is not None:
            await asyncio.shield(self._task)
        if raise_on_cancel and self.status == JobStatus.CANCELLED:
            raise CrawlCancelledError(f"Crawl job {self.id} was cancelled", url=self.scope.root_url)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "root_url": self.scope.root_url,
            "scope": self.scope.mode.value,
            "status": self.status.value,
            "progress": self.progress.to_dict(),
            "failed_pages": [fp.__dict__ for fp in self.failed_pages],
            "error": str(self.error) if self.error else None,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class CrawlScheduler:
    """Runs one crawl job with a bounded pool of workers."""

    def __init__(self,
                 job: CrawlJob,
                 fetcher: Fetcher,
                 page_processor: PageProcessor,
                 telemetry: Optional[TelemetrySink] = None):
        self.job = job
        self.fetcher = fetcher
        self.page_processor = page_processor
        self.telemetry = telemetry
        self._queue: "asyncio.Queue[FrontierEntry]" = asyncio.Queue()
        self._visited: Set[str] = set()
        self._lock = asyncio.Lock()
        self._committed = 0

    def _should_follow(self, url: str) -> bool:
        if not self.job.scope.contains(url):
            return False
        return should_include_url(url, self.job.include_patterns, self.job.exclusion_patterns)

    async def _enqueue(self, urls: Iterable[str], depth: int) -> int:
        """Add unseen, in-scope URLs to the frontier. Returns how many were added."""
        if depth > self.job.limits.max_depth:
            return 0
        added = 0
        async with self._lock:
            if self.job.cancel_requested or self._committed >= self.job.limits.max_pages:
                return 0
            for url in urls:
                url = urldefrag(url)[0]
                try:
                    canonical = canonicalize_url(url)
                except ValueError:
                    continue
                if canonical in self._visited or not self._should_follow(url):
                    continue
                self._visited.add(canonical)
                self.job.progress.pages_discovered += 1
                self._queue.put_nowait(FrontierEntry(url, depth))
                added += 1
        return added

    async def _reserve(self, entry: FrontierEntry) -> bool:
        """Commit to fetching an entry if the limits still allow it."""
        async with self._lock:
            if self.job.cancel_requested:
                return False
            if entry.depth > self.job.limits.max_depth:
                return False
            if self._committed >= self.job.limits.max_pages:
                return False
            self._committed += 1
            self.job.progress.current_depth = max(self.job.progress.current_depth, entry.depth)
            return True

    async def _claim_redirect(self, entry: FrontierEntry, final_url: str) -> bool:
        """Mark a redirect target as visited. False if it must not be processed."""
        canonical = canonicalize_url(final_url)
        if canonical == canonicalize_url(entry.url):
            return True
        if not self._should_follow(final_url):
            logger.info(f"Redirect of {entry.url} leaves crawl scope or is excluded: {final_url}")
            return False
        async with self._lock:
            if canonical in self._visited:
                logger.debug(f"Redirect target already visited: {final_url}")
                return False
            self._visited.add(canonical)
        return True

    def _record_failure(self, entry: FrontierEntry, error: BaseException) -> None:
        logger.warning(f"Page failed at depth {entry.depth}: {entry.url}: {error}")
        self.job.failed_pages.append(FailedPage(entry.url, entry.depth, str(error)))
        self.job.progress.pages_failed += 1

    def _report_progress(self, entry: FrontierEntry, page_status: str,
                         fetch_duration: Optional[float] = None) -> None:
        properties = {"job_id": self.job.id, "url": entry.url, "page_status": page_status,
                      "fetch_duration": fetch_duration}
        properties.update(self.job.progress.to_dict())
        emit_safely(self.telemetry, CRAWL_PROGRESS, properties)

    async def _process(self, entry: FrontierEntry) -> None:
        start_time = time.time()
        try:
            result = await self.fetcher.fetch(entry.url)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._record_failure(entry, e)
            self._report_progress(entry, "failed")
            return
        fetch_duration = time.time() - start_time

        if result.final_url and not await self._claim_redirect(entry, result.final_url):
            self._report_progress(entry, "skipped", fetch_duration)
            return

        try:
            outcome = await self.page_processor(result, entry)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._record_failure(entry, e)
            self._report_progress(entry, "failed", fetch_duration)
            return

        self.job.progress.pages_fetched += 1
        if outcome.errors:
            self.job.page_errors[entry.url] = [str(e) for e in outcome.errors]
            logger.info(f"{len(outcome.errors)} non-fatal errors while processing {entry.url}")

        added = await self._enqueue(outcome.links, entry.depth + 1)
        logger.debug(f"Processed {entry.url} (depth {entry.depth}): "
                     f"{outcome.chunk_count} chunks, {added} new links")
        self._report_progress(entry, "fetched", fetch_duration)

    async def _worker(self, worker_id: int) -> None:
        while True:
            entry = await self._queue.get()
            try:
                if not await self._reserve(entry):
                    continue
                await self._process(entry)
            except asyncio.CancelledError:
                raise
            except Exception:
                # A bug in processing must not stall the frontier
                logger.exception(f"Worker {worker_id} crashed on {entry.url}")
                self._record_failure(entry, RuntimeError("internal worker error"))
            finally:
                self._queue.task_done()

    async def _wait_for_completion(self) -> None:
        join_task = asyncio.ensure_future(self._queue.join())
        cancel_task = asyncio.ensure_future(self.job._cancel_event.wait())
        try:
            done, _ = await asyncio.wait({join_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
            if join_task not in done:
                grace = self.job.limits.cancel_grace_period
                logger.info(f"Crawl job {self.job.id} cancelling, waiting up to {grace}s for in-flight pages")
                try:
                    await asyncio.wait_for(asyncio.shield(join_task), timeout=grace)
                except asyncio.TimeoutError:
                    logger.warning(f"Crawl job {self.job.id}: abandoning in-flight fetches after {grace}s")
        finally:
            for task in (join_task, cancel_task):
                if not task.done():
                    task.cancel()

    async def run(self) -> CrawlJob:
        """Execute the job to completion, cancellation or failure."""
        job = self.job
        job.status = JobStatus.RUNNING
        job.started_at = datetime.now()
        logger.info(f"Starting crawl job {job.id} at {job.scope.root_url} "
                    f"(scope={job.scope.mode.value}, max_pages={job.limits.max_pages}, "
                    f"max_depth={job.limits.max_depth}, concurrency={job.limits.max_concurrency})")
        emit_safely(self.telemetry, CRAWL_STARTED, {"job_id": job.id, "root_url": job.scope.root_url})

        try:
            root = urldefrag(job.scope.root_url)[0]
            self._visited.add(canonicalize_url(root))
            job.progress.pages_discovered += 1
            self._queue.put_nowait(FrontierEntry(root, 0))

            workers = [asyncio.ensure_future(self._worker(i)) for i in range(job.limits.max_concurrency)]
            try:
                await self._wait_for_completion()
            finally:
                for worker in workers:
                    worker.cancel()
                await asyncio.gather(*workers, return_exceptions=True)

            job.status = JobStatus.CANCELLED if job.cancel_requested else JobStatus.COMPLETED
        except asyncio.CancelledError:
            job.status = JobStatus.CANCELLED
            raise
        except Exception as e:
            logger.exception(f"Crawl job {job.id} failed")
            job.status = JobStatus.FAILED
            job.error = e
        finally:
            job.finished_at = datetime.now()
            logger.info(f"Crawl job {job.id} {job.status.value}: {job.progress.pages_fetched} pages fetched, "
                        f"{len(job.failed_pages)} failed in {job.duration or 0:.2f}s")
            emit_safely(self.telemetry, CRAWL_COMPLETED, {
                "job_id": job.id,
                "status": job.status.value,
                "pages_processed": job.progress.pages_fetched,
                "failed_pages": len(job.failed_pages),
                "duration_ms": int((job.duration or 0) * 1000),
                "error": job.status == JobStatus.FAILED or bool(job.failed_pages),
            })
        return job


def start_crawl(root_url: str,
                scope: Union[ScopeMode, str] = ScopeMode.SUBPAGES,
                exclusion_patterns: Optional[Sequence[str]] = None,
                limits: Optional[CrawlLimits] = None,
                *,
                fetcher: Fetcher,
                page_processor: PageProcessor,
                telemetry: Optional[TelemetrySink] = None,
                include_patterns: Optional[Sequence[str]] = None,
                job_id: Optional[str] = None) -> CrawlJob:
    """Start a crawl in the running event loop and return its handle.

    Args:
        root_url: Where the crawl starts (depth 0)
        scope: Scope mode restricting followed links
        exclusion_patterns: ``None`` for the defaults, any list to override them
        limits: Page, depth and concurrency limits
        fetcher: Collaborator that retrieves pages
        page_processor: Coroutine turning a fetched page into a ``PageOutcome``
        telemetry: Optional best-effort progress sink
        include_patterns: Optional allow-list applied after exclusion
        job_id: Explicit job id, generated when omitted

    Returns:
        The running ``CrawlJob``
    """
    job = CrawlJob(ScopeConfig(root_url, scope), limits, exclusion_patterns, include_patterns, job_id)
    scheduler = CrawlScheduler(job, fetcher, page_processor, telemetry)
    job._task = asyncio.ensure_future(scheduler.run())
    return job
