"""Include/exclude pattern matching for crawled URLs.

Patterns are globs (``**`` spans any number of path segments, ``*`` and
``?`` stay within one segment) or regular expressions written as
``/expr/``. The default exclusion lists keep changelogs, licenses, archived
folders and translated copies out of the index.
"""

import logging
import re
from functools import lru_cache
from typing import List, Optional, Pattern, Sequence
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

# Files that sit next to documentation but are not documentation.
DEFAULT_FILE_EXCLUSIONS: List[str] = [
    "CHANGELOG.md",
    "CHANGELOG.mdx",
    "changelog.md",
    "changelog.mdx",
    "LICENSE",
    "LICENSE.md",
    "license.md",
    "CODE_OF_CONDUCT.md",
    "code_of_conduct.md",
    "**/CHANGELOG.md",
    "**/CHANGELOG.mdx",
    "**/changelog.md",
    "**/changelog.mdx",
    "**/LICENSE",
    "**/LICENSE.md",
    "**/license.md",
    "**/CODE_OF_CONDUCT.md",
    "**/code_of_conduct.md",
]

_ARCHIVE_FOLDERS = [
    "archive",
    "archived",
    "old",
    "deprecated",
    "legacy",
    "previous",
    "outdated",
    "superseded",
]

_I18N_LANGUAGES = [
    "zh", "es", "fr", "de", "ja", "ko", "ru", "pt", "it",
    "ar", "hi", "tr", "nl", "pl", "sv", "vi", "th",
]

_LOCALE_FOLDERS = ["zh-cn", "zh-tw", "zh-hk", "zh-mo", "zh-sg"]

DEFAULT_FOLDER_EXCLUSIONS: List[str] = (
    [f"**/{name}/**" for name in _ARCHIVE_FOLDERS]
    + [f"{name}/**" for name in _ARCHIVE_FOLDERS]
    + ["docs/old/**"]
    + [f"**/i18n/{lang}*/**" for lang in _I18N_LANGUAGES]
    + [f"**/{name}/**" for name in _LOCALE_FOLDERS]
    + [f"{name}/**" for name in _LOCALE_FOLDERS]
)

DEFAULT_EXCLUSION_PATTERNS: List[str] = DEFAULT_FILE_EXCLUSIONS + DEFAULT_FOLDER_EXCLUSIONS


def get_effective_exclusion_patterns(user_patterns: Optional[Sequence[str]] = None) -> List[str]:
    """Return the exclusion patterns a crawl should apply.

    A user-supplied list, even an empty one, replaces the defaults entirely.
    Only ``None`` falls back to the default file and folder patterns.
    """
    if user_patterns is not None:
        return list(user_patterns)
    return list(DEFAULT_EXCLUSION_PATTERNS)


def is_regex_pattern(pattern: str) -> bool:
    """A pattern wrapped in slashes (``/foo.*/``) is a regular expression."""
    return len(pattern) > 2 and pattern.startswith("/") and pattern.endswith("/")


def glob_to_regex(pattern: str) -> str:
    """Translate a glob into an anchored regular expression source."""
    out = []
    i = 0
    length = len(pattern)
    while i < length:
        char = pattern[i]
        if char == "*":
            if i + 1 < length and pattern[i + 1] == "*":
                # "**/" may also match zero directories
                if i + 2 < length and pattern[i + 2] == "/":
                    out.append("(?:.*/)?")
                    i += 3
                else:
                    out.append(".*")
                    i += 2
                continue
            out.append("[^/]*")
        elif char == "?":
            out.append("[^/]")
        else:
            out.append(re.escape(char))
        i += 1
    return "^" + "".join(out) + "$"


@lru_cache(maxsize=1024)
def pattern_to_regexp(pattern: str) -> Pattern:
    """Compile a glob or ``/regex/`` pattern."""
    if is_regex_pattern(pattern):
        return re.compile(pattern[1:-1])
    return re.compile(glob_to_regex(pattern))


def _matches(path: str, pattern: str) -> bool:
    regexp = pattern_to_regexp(pattern)
    if is_regex_pattern(pattern):
        return regexp.search(path) is not None
    return regexp.match(path.lstrip("/")) is not None


def matches_any_pattern(path: str, patterns: Optional[Sequence[str]]) -> bool:
    """Check a path (with or without leading slash) against a pattern list."""
    if not patterns:
        return False
    return any(_matches(path, pattern) for pattern in patterns)


def extract_path_and_query(url: str) -> str:
    """Return ``/path?query`` for a URL, or the input unchanged if it is already a path."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return url
    if not parsed.scheme and not parsed.netloc:
        return url
    path = parsed.path or "/"
    return f"{path}?{parsed.query}" if parsed.query else path


def _candidates(url: str) -> List[str]:
    path = extract_path_and_query(url)
    candidates = [path]
    if url.startswith("file://"):
        basename = path.rstrip("/").rsplit("/", 1)[-1]
        if basename:
            candidates.append(basename)
    return candidates


def should_include_url(url: str,
                       include_patterns: Optional[Sequence[str]] = None,
                       exclude_patterns: Optional[Sequence[str]] = None) -> bool:
    """Decide whether a URL passes the include/exclude filters.

    Exclusion always wins. With no include patterns every URL that is not
    excluded is accepted.
    """
    candidates = _candidates(url)

    if exclude_patterns and any(matches_any_pattern(c, exclude_patterns) for c in candidates):
        logger.debug(f"URL excluded by pattern: {url}")
        return False

    if not include_patterns:
        return True

    return any(matches_any_pattern(c, include_patterns) for c in candidates)


def is_excluded(path: str, patterns: Optional[Sequence[str]]) -> bool:
    """Check a relative path against an exclusion pattern set."""
    return matches_any_pattern(path, patterns)
