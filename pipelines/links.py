"""Link discovery for fetched HTML pages."""

import logging
from typing import Any, List, Optional
from urllib.parse import urljoin, urlsplit, urlunsplit

from .errors import LinkExtractionError

logger = logging.getLogger(__name__)

FOLLOWABLE_SCHEMES = {"http", "https", "file"}


def resolve_link(href: str, source_url: str) -> Optional[str]:
    """Resolve an href against the page it was found on.

    Returns the absolute URL with scheme and host lower-cased, or None for
    empty values, non-followable schemes (``javascript:``, ``mailto:``...)
    and anything that does not parse.
    """
    href = (href or "").strip()
    if not href:
        return None

    try:
        parts = urlsplit(urljoin(source_url, href))
        # Accessing .port validates it
        parts.port
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    if scheme not in FOLLOWABLE_SCHEMES:
        return None
    if scheme != "file" and not parts.netloc:
        return None

    userinfo, sep, hostport = parts.netloc.rpartition("@")
    netloc = f"{userinfo}{sep}{hostport.lower()}"

    path = parts.path
    if not path and scheme in ("http", "https"):
        path = "/"

    return urlunsplit((scheme, netloc, path, parts.query, parts.fragment))


def extract_links(dom: Any, source_url: str, errors: List[Exception]) -> List[str]:
    """Collect the followable links of a parsed page.

    Args:
        dom: BeautifulSoup document (anything exposing ``find_all``)
        source_url: URL the page was fetched from, used as the base
        errors: Error collection of the caller; a failed DOM query is
            appended here instead of being raised

    Returns:
        Absolute URLs in document order, first occurrence wins
    """
    try:
        anchors = dom.find_all("a", href=True)
        hrefs = [anchor.get("href") for anchor in anchors]
    except Exception as e:
        logger.warning(f"Failed to extract links from {source_url}: {e}")
        errors.append(LinkExtractionError(
            f"Failed to extract links from HTML for {source_url}: {e}",
            url=source_url,
            cause=e,
        ))
        return []

    links: List[str] = []
    seen = set()
    for href in hrefs:
        if isinstance(href, list):
            href = " ".join(href)
        resolved = resolve_link(href, source_url)
        if resolved is None or resolved in seen:
            continue
        seen.add(resolved)
        links.append(resolved)

    logger.debug(f"Extracted {len(links)} links from {source_url}")
    return links
