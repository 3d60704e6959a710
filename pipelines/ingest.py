"""Connects the crawl scheduler to the document store.

``PageIngestor`` is the page processor handed to the scheduler: it runs the
page stages, embeds the chunks and writes them in one store transaction.
``crawl_library`` runs a complete source definition and ``crawl_sources``
runs the configured ones with ``Settings``.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Sequence

from config.settings import CrawlerConfig, Settings
from indexer.document_store import DocumentChunk, DocumentStore
from indexer.embeddings import Embedder, embedder_from_config
from observability.logging import get_structured_logger
from observability.telemetry import TelemetrySink
from sources.loader import SourceConfig, SourceLoader

from .crawler import CrawlJob, FrontierEntry, PageOutcome, start_crawl
from .fetcher import Fetcher, FetchResult, HttpFetcher
from .scope import ScopeMode
from .stages import PageContext, Stage, default_stages, run_stages

logger = logging.getLogger(__name__)


class PageIngestor:
    """Page processor that indexes every fetched page under one library version."""

    def __init__(self,
                 store: DocumentStore,
                 library: str,
                 version: Optional[str] = None,
                 embedder: Optional[Embedder] = None,
                 stages: Optional[Sequence[Stage]] = None):
        self.store = store
        self.library = library
        self.version = version or ""
        self.embedder = embedder
        self.stages: List[Stage] = list(stages) if stages is not None else default_stages()

    async def _embed(self, texts: List[str]) -> Optional[List[List[float]]]:
        if self.embedder is None or not texts:
            return None
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.embedder.embed_batch, texts)

    async def __call__(self, result: FetchResult, entry: FrontierEntry) -> PageOutcome:
        url = result.final_url or entry.url
        ctx = PageContext(url=url, content=result.content, content_type=result.content_type, depth=entry.depth)
        loop = asyncio.get_running_loop()
        # Stages run in a worker thread, store writes stay on the loop
        ctx = await loop.run_in_executor(None, run_stages, ctx, self.stages)

        chunks = [
            DocumentChunk(
                content=chunk.content,
                sort_order=chunk.sort_order,
                metadata={"title": ctx.title or "", "url": url, **chunk.to_metadata()},
            )
            for chunk in ctx.chunks
        ]
        embeddings = await self._embed([c.content for c in chunks])

        # Raises StoreError; the scheduler records the page as failed
        self.store.add_page(self.library, self.version, url, chunks, embeddings)

        if not chunks:
            logger.debug(f"No indexable content on {url}")
        return PageOutcome(links=ctx.links, errors=ctx.errors, chunk_count=len(chunks))


async def crawl_library(store: DocumentStore,
                        source: SourceConfig,
                        *,
                        fetcher: Optional[Fetcher] = None,
                        embedder: Optional[Embedder] = None,
                        telemetry: Optional[TelemetrySink] = None,
                        crawler_config: Optional[CrawlerConfig] = None) -> CrawlJob:
    """Crawl and index one source, returning the finished job.

    Existing documents of the source's library version are removed first
    unless ``source.clean`` is false. When no fetcher is given an
    ``HttpFetcher`` is created from ``crawler_config`` and closed afterwards.
    Limits the source leaves unset come from ``crawler_config``.
    """
    log = get_structured_logger(__name__, library=source.library, version=source.version or "unversioned")

    if source.clean:
        removed = store.delete_documents(source.library, source.version)
        if removed:
            log.info(f"Cleared {removed} existing documents before crawl", source=source.name)

    crawler_config = crawler_config or CrawlerConfig()
    limits = crawler_config.limits(source.max_pages, source.max_depth, source.max_concurrency)

    own_fetcher = fetcher is None
    if fetcher is None:
        fetcher = HttpFetcher(
            request_timeout=crawler_config.request_timeout,
            user_agent=crawler_config.user_agent,
            max_retries=crawler_config.max_retries,
            retry_delay=crawler_config.retry_delay,
            headers=source.headers,
        )

    ingestor = PageIngestor(store, source.library, source.version, embedder)
    start_time = time.time()
    try:
        job = start_crawl(
            source.url,
            ScopeMode(source.scope),
            source.exclude,
            limits,
            fetcher=fetcher,
            page_processor=ingestor,
            telemetry=telemetry,
            include_patterns=source.include,
        )
        await job.wait()
    finally:
        if own_fetcher:
            await fetcher.close()

    log.info(f"Crawl of {source.url} finished with status {job.status.value}",
             job_id=job.id,
             pages=job.progress.pages_fetched,
             failed=len(job.failed_pages),
             duration_s=round(time.time() - start_time, 2))
    return job


async def crawl_sources(names: Optional[Sequence[str]] = None,
                        settings: Optional[Settings] = None,
                        *,
                        store: Optional[DocumentStore] = None,
                        loader: Optional[SourceLoader] = None,
                        fetcher: Optional[Fetcher] = None,
                        embedder: Optional[Embedder] = None,
                        telemetry: Optional[TelemetrySink] = None) -> Dict[str, CrawlJob]:
    """Crawl the named sources, or every enabled source, one after another.

    Settings default to ``Settings.from_env()``. A store or embedder that is
    not passed in is built from them, and a store opened here is closed
    before returning.

    Raises:
        ValueError: if a named source has no valid definition
    """
    settings = settings or Settings.from_env()
    loader = loader or SourceLoader()
    if names:
        sources = {}
        for name in names:
            source = loader.load_source_config(name)
            if source is None:
                raise ValueError(f"Unknown or invalid source: {name}")
            sources[name] = source
    else:
        sources = loader.get_enabled_sources()

    if embedder is None:
        embedder = embedder_from_config(settings.embedding)
    own_store = store is None
    if store is None:
        store = DocumentStore.from_config(settings.store)
        store.initialize()

    jobs: Dict[str, CrawlJob] = {}
    try:
        for name, source in sources.items():
            logger.info(f"Crawling source {name}: {source.url}")
            jobs[name] = await crawl_library(
                store,
                source,
                fetcher=fetcher,
                embedder=embedder,
                telemetry=telemetry,
                crawler_config=settings.crawler,
            )
    finally:
        if own_store:
            store.close()
    return jobs

