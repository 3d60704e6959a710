"""Crawl scope resolution for docscope.

Decides whether a discovered URL lies within the crawl boundary defined by
the root URL and a scope mode.
"""

import logging
from enum import Enum
from typing import Union
from urllib.parse import urlparse, ParseResult

logger = logging.getLogger(__name__)

UrlLike = Union[str, ParseResult]


class ScopeMode(str, Enum):
    """How far a crawl may wander from its root URL."""
    SUBPAGES = "subpages"
    HOSTNAME = "hostname"
    DOMAIN = "domain"


def _parse(url: UrlLike) -> ParseResult:
    if isinstance(url, ParseResult):
        return url
    return urlparse(url)


def compute_base_directory(pathname: str) -> str:
    """Return the directory a path is rooted at.

    ``/api/`` stays ``/api/``, a file-looking ``/api/index.html`` becomes
    ``/api/`` and a bare segment such as ``/api`` is treated as a directory
    and becomes ``/api/``.
    """
    if not pathname:
        return "/"
    if pathname.endswith("/"):
        return pathname

    last_slash = pathname.rfind("/")
    last_segment = pathname[last_slash + 1:]
    if "." in last_segment:
        return pathname[:last_slash + 1] or "/"
    return pathname + "/"


def registrable_domain(hostname: str) -> str:
    """Last two dot-separated labels of a hostname (``docs.example.com`` -> ``example.com``)."""
    labels = [label for label in (hostname or "").lower().split(".") if label]
    return ".".join(labels[-2:])


def is_in_scope(base: UrlLike, candidate: UrlLike, mode: Union[ScopeMode, str]) -> bool:
    """Check whether ``candidate`` may be followed from ``base`` under ``mode``.

    Args:
        base: Root URL of the crawl
        candidate: Discovered URL
        mode: One of ``subpages``, ``hostname`` or ``domain``

    Returns:
        True if the candidate is inside the crawl boundary
    """
    mode = ScopeMode(mode)
    base_url = _parse(base)
    candidate_url = _parse(candidate)

    base_host = (base_url.hostname or "").lower()
    candidate_host = (candidate_url.hostname or "").lower()

    if mode == ScopeMode.HOSTNAME:
        return base_host == candidate_host

    if mode == ScopeMode.DOMAIN:
        return registrable_domain(base_host) == registrable_domain(candidate_host)

    if base_host != candidate_host:
        return False
    base_dir = compute_base_directory(base_url.path or "/")
    return (candidate_url.path or "/").startswith(base_dir)
