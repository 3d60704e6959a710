import asyncio
from unittest.mock import patch

import pytest

from observability.telemetry import CRAWL_COMPLETED, CRAWL_PROGRESS, CRAWL_STARTED
from pipelines.crawler import (
    CrawlLimits,
    CrawlScheduler,
    JobStatus,
    PageOutcome,
    ScopeConfig,
    canonicalize_url,
    start_crawl,
)
from pipelines.errors import CrawlCancelledError
from pipelines.ingest import PageIngestor
from pipelines.stages import HtmlParserStage, LinkExtractorStage, PageContext, run_stages

from .conftest import FakeFetcher, html_page

ROOT = "https://docs.example.com/guide/"


async def link_processor(result, entry):
    ctx = PageContext(url=result.url, content=result.content, content_type=result.content_type, depth=entry.depth)
    ctx = run_stages(ctx, [HtmlParserStage(), LinkExtractorStage()])
    return PageOutcome(links=ctx.links, errors=ctx.errors)


def site():
    """Root -> a, b; a -> c; b -> root, a (cycle)."""
    return {
        "https://docs.example.com/guide/": html_page("Root", links=["a", "b"]),
        "https://docs.example.com/guide/a": html_page("A", links=["c"]),
        "https://docs.example.com/guide/b": html_page("B", links=["/guide/", "a#section"]),
        "https://docs.example.com/guide/c": html_page("C"),
    }


class RecordingSink:
    def __init__(self):
        self.events = []

    def track(self, event, properties):
        self.events.append((event, dict(properties)))


class RaisingSink:
    def track(self, event, properties):
        raise RuntimeError("telemetry backend down")


@pytest.mark.parametrize("url,expected", [
    ("HTTPS://Docs.Example.com:443/guide/#intro", "https://docs.example.com/guide"),
    ("http://example.com:8080/a/", "http://example.com:8080/a"),
    ("http://example.com", "http://example.com/"),
    ("https://example.com/?q=1#frag", "https://example.com/?q=1"),
    ("file:///docs/index.md", "file:///docs/index.md"),
])
def test_canonicalize_url(url, expected):
    assert canonicalize_url(url) == expected


def test_scope_config_requires_absolute_root():
    with pytest.raises(ValueError):
        ScopeConfig("/relative/path")


def test_limits_validation():
    with pytest.raises(ValueError):
        CrawlLimits(max_pages=0)
    with pytest.raises(ValueError):
        CrawlLimits(max_concurrency=0)


@pytest.mark.asyncio
async def test_crawl_visits_each_page_once():
    fetcher = FakeFetcher(site())
    job = start_crawl(ROOT, "subpages", fetcher=fetcher, page_processor=link_processor)
    await job.wait()

    assert job.status == JobStatus.COMPLETED
    assert sorted(fetcher.fetched) == sorted(site())
    assert job.progress.pages_fetched == 4
    assert job.failed_pages == []


@pytest.mark.asyncio
async def test_max_pages_is_never_exceeded():
    fetcher = FakeFetcher(site())
    job = start_crawl(ROOT, "subpages", limits=CrawlLimits(max_pages=2, max_concurrency=3),
                      fetcher=fetcher, page_processor=link_processor)
    await job.wait()

    assert job.status == JobStatus.COMPLETED
    assert len(fetcher.fetched) == 2
    assert job.progress.pages_fetched == 2


@pytest.mark.asyncio
async def test_max_depth_stops_link_following():
    fetcher = FakeFetcher(site())
    job = start_crawl(ROOT, "subpages", limits=CrawlLimits(max_depth=1),
                      fetcher=fetcher, page_processor=link_processor)
    await job.wait()

    assert "https://docs.example.com/guide/c" not in fetcher.fetched
    assert len(fetcher.fetched) == 3


@pytest.mark.asyncio
async def test_max_depth_zero_fetches_only_root():
    fetcher = FakeFetcher(site())
    job = start_crawl(ROOT, "subpages", limits=CrawlLimits(max_depth=0),
                      fetcher=fetcher, page_processor=link_processor)
    await job.wait()

    assert fetcher.fetched == ["https://docs.example.com/guide/"]


@pytest.mark.asyncio
async def test_out_of_scope_and_excluded_links_are_not_followed():
    pages = {
        "https://docs.example.com/guide/": html_page("Root", links=[
            "intro", "/blog/post", "https://other.org/guide/x", "CHANGELOG.md", "archive/old-page",
        ]),
        "https://docs.example.com/guide/intro": html_page("Intro"),
    }
    fetcher = FakeFetcher(pages)
    job = start_crawl(ROOT, "subpages", fetcher=fetcher, page_processor=link_processor)
    await job.wait()

    assert sorted(fetcher.fetched) == sorted(pages)
    assert job.failed_pages == []


class RedirectingFetcher(FakeFetcher):
    """Reports ``redirects[url]`` as the final URL of a fetch."""

    def __init__(self, pages, redirects):
        super().__init__(pages)
        self.redirects = redirects

    async def fetch(self, url):
        result = await super().fetch(url)
        result.final_url = self.redirects.get(url)
        return result


@pytest.mark.asyncio
async def test_redirects_to_excluded_or_out_of_scope_pages_are_skipped():
    pages = {
        "https://docs.example.com/guide/": html_page("Root", links=["a", "b", "c"]),
        "https://docs.example.com/guide/a": html_page("A"),
        "https://docs.example.com/guide/b": html_page("B"),
        "https://docs.example.com/guide/c": html_page("C"),
    }
    redirects = {
        "https://docs.example.com/guide/a": "https://docs.example.com/guide/archive/a",
        "https://docs.example.com/guide/b": "https://other.org/guide/b",
        "https://docs.example.com/guide/c": "https://docs.example.com/guide/c-moved",
    }
    processed = []

    async def recording_processor(result, entry):
        processed.append(result.final_url or result.url)
        return await link_processor(result, entry)

    job = start_crawl(ROOT, "subpages", fetcher=RedirectingFetcher(pages, redirects),
                      page_processor=recording_processor)
    await job.wait()

    assert sorted(processed) == ["https://docs.example.com/guide/", "https://docs.example.com/guide/c-moved"]
    assert job.progress.pages_fetched == 2
    assert job.failed_pages == []


@pytest.mark.asyncio
async def test_empty_exclusion_list_disables_defaults():
    pages = {
        "https://docs.example.com/guide/": html_page("Root", links=["CHANGELOG.md"]),
        "https://docs.example.com/guide/CHANGELOG.md": ("# Changes", "text/markdown"),
    }
    fetcher = FakeFetcher(pages)
    job = start_crawl(ROOT, "subpages", exclusion_patterns=[], fetcher=fetcher, page_processor=link_processor)
    await job.wait()

    assert "https://docs.example.com/guide/CHANGELOG.md" in fetcher.fetched


@pytest.mark.asyncio
async def test_include_patterns_restrict_crawl():
    fetcher = FakeFetcher(site())
    job = start_crawl(ROOT, "subpages", include_patterns=["**/a"], fetcher=fetcher, page_processor=link_processor)
    await job.wait()

    assert sorted(fetcher.fetched) == ["https://docs.example.com/guide/", "https://docs.example.com/guide/a"]


@pytest.mark.asyncio
async def test_failed_pages_are_recorded_and_crawl_continues():
    pages = site()
    pages["https://docs.example.com/guide/a"] = html_page("A", links=["c", "missing"])
    fetcher = FakeFetcher(pages)
    job = start_crawl(ROOT, "subpages", fetcher=fetcher, page_processor=link_processor)
    await job.wait()

    assert job.status == JobStatus.COMPLETED
    assert [fp.url for fp in job.failed_pages] == ["https://docs.example.com/guide/missing"]
    assert "404" in job.failed_pages[0].error
    assert job.progress.pages_fetched == 4
    assert job.progress.pages_failed == 1


@pytest.mark.asyncio
async def test_processor_failure_marks_page_failed():
    async def processor(result, entry):
        if result.url.endswith("/b"):
            raise ValueError("cannot store")
        return await link_processor(result, entry)

    fetcher = FakeFetcher(site())
    job = start_crawl(ROOT, "subpages", fetcher=fetcher, page_processor=processor)
    await job.wait()

    assert job.status == JobStatus.COMPLETED
    assert [fp.url for fp in job.failed_pages] == ["https://docs.example.com/guide/b"]


@pytest.mark.asyncio
async def test_page_errors_are_kept_without_failing_the_page():
    async def processor(result, entry):
        outcome = await link_processor(result, entry)
        outcome.errors.append(RuntimeError("partial extraction"))
        return outcome

    fetcher = FakeFetcher(site())
    job = start_crawl(ROOT, "subpages", fetcher=fetcher, page_processor=processor)
    await job.wait()

    assert job.failed_pages == []
    assert job.page_errors["https://docs.example.com/guide/"] == ["partial extraction"]


@pytest.mark.asyncio
async def test_concurrency_is_bounded():
    pages = {"https://docs.example.com/guide/": html_page("Root", links=[f"p{i}" for i in range(12)])}
    for i in range(12):
        pages[f"https://docs.example.com/guide/p{i}"] = html_page(f"P{i}")
    fetcher = FakeFetcher(pages, delay=0.01)
    job = start_crawl(ROOT, "subpages", limits=CrawlLimits(max_concurrency=3),
                      fetcher=fetcher, page_processor=link_processor)
    await job.wait()

    assert len(fetcher.fetched) == 13
    assert 1 < fetcher.max_in_flight <= 3


@pytest.mark.asyncio
async def test_telemetry_events_are_emitted():
    sink = RecordingSink()
    job = start_crawl(ROOT, "subpages", fetcher=FakeFetcher(site()), page_processor=link_processor, telemetry=sink)
    await job.wait()

    names = [event for event, _ in sink.events]
    assert names[0] == CRAWL_STARTED
    assert names[-1] == CRAWL_COMPLETED
    assert names.count(CRAWL_PROGRESS) == 4

    progress = [props for event, props in sink.events if event == CRAWL_PROGRESS]
    assert [p["pages_fetched"] for p in progress] == [1, 2, 3, 4]
    assert all(p["max_pages"] == 1000 for p in progress)

    completed = sink.events[-1][1]
    assert completed["job_id"] == job.id
    assert completed["pages_processed"] == 4
    assert completed["error"] is False


@pytest.mark.asyncio
async def test_raising_telemetry_sink_does_not_break_crawl():
    fetcher = FakeFetcher(site())
    job = start_crawl(ROOT, "subpages", fetcher=fetcher, page_processor=link_processor, telemetry=RaisingSink())
    await job.wait()

    assert job.status == JobStatus.COMPLETED
    assert job.progress.pages_fetched == 4


def wide_site(count: int = 30):
    pages = {"https://docs.example.com/guide/": html_page("Root", body="Root page", links=[f"p{i}" for i in range(count)])}
    for i in range(count):
        pages[f"https://docs.example.com/guide/p{i}"] = html_page(f"Page {i}", body=f"Content of page number {i}")
    return pages


@pytest.mark.asyncio
async def test_cancel_keeps_persisted_pages(store):
    holder = {}

    class CancelAfterTwo:
        def track(self, event, properties):
            if event == CRAWL_PROGRESS and properties["pages_fetched"] >= 2:
                holder["job"].cancel()

    fetcher = FakeFetcher(wide_site(), delay=0.02)
    job = start_crawl(ROOT, "subpages", limits=CrawlLimits(max_concurrency=2),
                      fetcher=fetcher, page_processor=PageIngestor(store, "example", "1.0.0"),
                      telemetry=CancelAfterTwo())
    holder["job"] = job
    await job.wait()
    fetched_at_finish = len(fetcher.fetched)
    await asyncio.sleep(0.05)

    assert job.status == JobStatus.CANCELLED
    assert 2 <= job.progress.pages_fetched < 31
    assert len(fetcher.fetched) == fetched_at_finish
    summary = store.list_libraries()[0].versions[0]
    assert summary.unique_url_count == job.progress.pages_fetched

    with pytest.raises(CrawlCancelledError):
        await job.wait(raise_on_cancel=True)


@pytest.mark.asyncio
async def test_cancel_before_start_fetches_nothing():
    fetcher = FakeFetcher(site())
    job = start_crawl(ROOT, "subpages", fetcher=fetcher, page_processor=link_processor)
    job.cancel()
    await job.wait()

    assert job.status == JobStatus.CANCELLED
    assert fetcher.fetched == []


@pytest.mark.asyncio
async def test_in_flight_fetches_are_abandoned_after_grace_period():
    fetcher = FakeFetcher(site(), delay=10)
    job = start_crawl(ROOT, "subpages", limits=CrawlLimits(cancel_grace_period=0.05),
                      fetcher=fetcher, page_processor=link_processor)
    await asyncio.sleep(0.05)
    job.cancel()
    await asyncio.wait_for(job.wait(), timeout=2)

    assert job.status == JobStatus.CANCELLED
    assert job.progress.pages_fetched == 0
    assert fetcher.in_flight == 0


@pytest.mark.asyncio
async def test_scheduler_bug_marks_job_failed():
    fetcher = FakeFetcher(site())
    with patch.object(CrawlScheduler, "_wait_for_completion", side_effect=RuntimeError("scheduler bug")):
        job = start_crawl(ROOT, "subpages", fetcher=fetcher, page_processor=link_processor)
        await job.wait()

    assert job.status == JobStatus.FAILED
    assert "scheduler bug" in str(job.error)
    assert job.to_dict()["status"] == "failed"
