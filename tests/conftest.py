import asyncio
import hashlib
import re
from typing import Dict, List, Optional, Sequence, Tuple, Union

import pytest

from indexer.document_store import DocumentStore
from pipelines.errors import FetchError
from pipelines.fetcher import FetchResult

HTML = "text/html; charset=utf-8"


class FakeEmbedder:
    """Deterministic bag-of-words embedder over a small hashed vocabulary."""

    def __init__(self, dimension: int = 32):
        self.dimension = dimension
        self.calls = 0

    def embed(self, text: str) -> List[float]:
        vector = [0.0] * self.dimension
        for token in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(token.encode()).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0
        return vector

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls += 1
        return [self.embed(t) for t in texts]


class FakeFetcher:
    """Serves canned pages. Unknown URLs raise ``FetchError`` like a 404."""

    def __init__(self, pages: Dict[str, Union[Tuple[str, str], Exception]], delay: float = 0.0):
        self.pages = pages
        self.delay = delay
        self.fetched: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch(self, url: str) -> FetchResult:
        self.fetched.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            page = self.pages.get(url)
            if page is None:
                raise FetchError(f"HTTP 404 fetching {url}", url=url, status_code=404)
            if isinstance(page, Exception):
                raise page
            content, content_type = page
            return FetchResult(url=url, content=content, content_type=content_type)
        finally:
            self.in_flight -= 1


def html_page(title: str, body: str = "", links: Optional[List[str]] = None) -> Tuple[str, str]:
    anchors = "".join(f'<a href="{href}">{href}</a>' for href in (links or []))
    html = (f"<html><head><title>{title}</title></head><body>"
            f"<h1>{title}</h1><p>{body or title + ' documentation page.'}</p>{anchors}</body></html>")
    return html, HTML


@pytest.fixture
def store():
    """Fresh in-memory document store with all migrations applied."""
    document_store = DocumentStore(":memory:")
    document_store.initialize()
    yield document_store
    document_store.close()


@pytest.fixture
def embedder():
    return FakeEmbedder()
