from unittest.mock import Mock

from bs4 import BeautifulSoup

from pipelines.errors import LinkExtractionError
from pipelines.links import extract_links, resolve_link


def soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def test_extracts_absolute_relative_and_root_relative_links():
    html = """
      <html><body>
        <a href="http://external.com/page">Absolute</a>
        <a href="relative/link.html">Relative</a>
        <a href="/root/link">Root Relative</a>
        <a href="../sibling/link">Sibling Relative</a>
      </body></html>"""
    errors = []
    links = extract_links(soup(html), "http://example.com/sub/dir/page.html", errors)

    assert links == [
        "http://external.com/page",
        "http://example.com/sub/dir/relative/link.html",
        "http://example.com/root/link",
        "http://example.com/sub/sibling/link",
    ]
    assert errors == []


def test_filters_invalid_and_empty_links():
    html = """
      <html><body>
        <a href="http://valid.com">Valid</a>
        <a href="javascript:void(0)">Invalid JS</a>
        <a href="mailto:team@example.com">Mail</a>
        <a href="">Empty</a>
        <a href="  ">Whitespace</a>
        <a>No Href</a>
      </body></html>"""
    errors = []
    links = extract_links(soup(html), "http://example.com/path/page.html", errors)

    assert links == ["http://valid.com/"]
    assert errors == []


def test_duplicates_are_kept_once_in_first_seen_order():
    html = """
      <a href="http://example.com/page1">Page 1</a>
      <a href="/page1">Page 1 Root Rel</a>
      <a href="page2.html">Page 2 Rel</a>
      <a href="page2.html">Page 2 Rel Dup</a>"""
    links = extract_links(soup(html), "http://example.com/index.html", [])

    assert links == ["http://example.com/page1", "http://example.com/page2.html"]


def test_dom_failure_is_recorded_not_raised():
    dom = Mock()
    dom.find_all.side_effect = RuntimeError("DOM failure")
    errors = []

    links = extract_links(dom, "http://example.com/page.html", errors)

    assert links == []
    assert len(errors) == 1
    assert isinstance(errors[0], LinkExtractionError)
    assert "Failed to extract links from HTML for http://example.com/page.html" in str(errors[0])
    assert "DOM failure" in str(errors[0])


def test_resolve_link_normalizes_host_and_keeps_path_case():
    assert resolve_link("HTTP://Example.COM/Docs/Intro", "http://example.com/") == "http://example.com/Docs/Intro"


def test_resolve_link_rejects_malformed_values():
    assert resolve_link("http://example.com:99999/x", "http://example.com/") is None
    assert resolve_link("ftp://example.com/file", "http://example.com/") is None
    assert resolve_link("", "http://example.com/") is None


def test_file_links_resolve_against_file_source():
    assert resolve_link("other.md", "file:///docs/guide/index.md") == "file:///docs/guide/other.md"
