"""Ordered processing stages applied to every fetched page.

Each stage receives the page context, fills in the fields it owns and
returns the context. Stage failures are appended to ``ctx.errors`` and do
not stop the remaining stages.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Protocol, Sequence, Union

from bs4 import BeautifulSoup
from trafilatura import extract

from .chunker import TextChunk, TextChunker
from .errors import ContentExtractionError, PipelineError
from .links import extract_links

logger = logging.getLogger(__name__)

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")
TEXT_CONTENT_TYPES = ("text/", "application/json", "application/xml")

# Below this many characters trafilatura output is treated as a miss
MIN_EXTRACTED_CHARS = 40


def is_html(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    mime = content_type.split(";", 1)[0].strip().lower()
    return mime in HTML_CONTENT_TYPES


def is_text(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    mime = content_type.split(";", 1)[0].strip().lower()
    return mime.startswith(TEXT_CONTENT_TYPES)


def decode_content(content: Union[str, bytes], content_type: Optional[str] = None) -> str:
    """Decode raw page bytes using the charset from the content type, if any."""
    if isinstance(content, str):
        return content
    charset = "utf-8"
    if content_type and "charset=" in content_type.lower():
        charset = content_type.lower().split("charset=", 1)[1].split(";", 1)[0].strip() or "utf-8"
    try:
        return content.decode(charset, errors="replace")
    except LookupError:
        return content.decode("utf-8", errors="replace")


@dataclass
class PageContext:
    """State of one page as it moves through the stages.

    ``url``, ``content`` and ``content_type`` are inputs. ``dom`` belongs to
    the parser stage, ``links`` to the link stage, ``title`` and ``chunks``
    to the content stage. Any stage may append to ``errors``.
    """
    url: str
    content: Union[str, bytes]
    content_type: Optional[str] = None
    depth: int = 0
    dom: Optional[Any] = None
    title: Optional[str] = None
    links: List[str] = field(default_factory=list)
    chunks: List[TextChunk] = field(default_factory=list)
    errors: List[Exception] = field(default_factory=list)

    @property
    def text(self) -> str:
        return decode_content(self.content, self.content_type)


class Stage(Protocol):
    """A single page processing step."""

    def process(self, ctx: PageContext) -> PageContext:
        ...


class HtmlParserStage:
    """Parses HTML content into a BeautifulSoup document."""

    def __init__(self, parser: str = "html.parser"):
        self.parser = parser

    def process(self, ctx: PageContext) -> PageContext:
        if not is_html(ctx.content_type):
            return ctx
        ctx.dom = BeautifulSoup(ctx.text, self.parser)
        if ctx.dom.title and ctx.dom.title.string:
            ctx.title = ctx.dom.title.string.strip()
        return ctx


class LinkExtractorStage:
    """Collects followable links from the parsed document."""

    def process(self, ctx: PageContext) -> PageContext:
        if ctx.dom is None:
            if is_html(ctx.content_type):
                logger.warning(f"context.dom is missing for HTML content, skipping link extraction: {ctx.url}")
            return ctx
        ctx.links = extract_links(ctx.dom, ctx.url, ctx.errors)
        return ctx


class ContentExtractorStage:
    """Turns page content into ordered text chunks."""

    def __init__(self, chunker: Optional[TextChunker] = None):
        self.chunker = chunker or TextChunker()

    def _html_to_text(self, ctx: PageContext) -> str:
        html = ctx.text
        markdown = extract(html, output_format="markdown", include_links=False, include_tables=True)
        if markdown and len(markdown.strip()) >= MIN_EXTRACTED_CHARS:
            return markdown

        soup = ctx.dom if ctx.dom is not None else BeautifulSoup(html, "html.parser")
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()
        lines = [line.strip() for line in soup.get_text("\n").splitlines()]
        return "\n\n".join(line for line in lines if line)

    def process(self, ctx: PageContext) -> PageContext:
        if is_html(ctx.content_type):
            text = self._html_to_text(ctx)
        elif is_text(ctx.content_type) or ctx.content_type is None:
            text = ctx.text
        else:
            logger.debug(f"Skipping content extraction for {ctx.url}: unsupported type {ctx.content_type}")
            return ctx

        try:
            ctx.chunks = self.chunker.chunk(text)
        except ValueError as e:
            ctx.errors.append(ContentExtractionError(
                f"Failed to chunk content for {ctx.url}: {e}", url=ctx.url, cause=e))
        return ctx


def default_stages(chunker: Optional[TextChunker] = None) -> List[Stage]:
    """The standard page pipeline: parse, discover links, extract content."""
    return [HtmlParserStage(), LinkExtractorStage(), ContentExtractorStage(chunker)]


def run_stages(ctx: PageContext, stages: Sequence[Stage]) -> PageContext:
    """Run stages in order. A raising stage is recorded and skipped."""
    for stage in stages:
        try:
            ctx = stage.process(ctx)
        except Exception as e:
            name = type(stage).__name__
            logger.warning(f"Stage {name} failed for {ctx.url}: {e}")
            ctx.errors.append(PipelineError(f"{name} failed for {ctx.url}: {e}", url=ctx.url, cause=e))
    return ctx
