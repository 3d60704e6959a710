"""Version parsing and constraint matching for indexed documentation.

Versions are semver-like: an optional ``v`` prefix, one to three numeric
segments and an optional ``-prerelease`` tag. A pre-release sorts below
its release (``1.0.0-rc.1 < 1.0.0``). Non-exact constraints skip
pre-releases unless the constraint itself names one.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, NamedTuple, Optional, Tuple

logger = logging.getLogger(__name__)

VERSION_RE = re.compile(
    r"^\s*v?(?P<major>\d+)(?:\.(?P<minor>\d+))?(?:\.(?P<patch>\d+))?"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?\s*$"
)
WILDCARD_RE = re.compile(r"^\s*v?(\d+|[xX*])(?:\.(\d+|[xX*]))?(?:\.(\d+|[xX*]))?\s*$")
COMPARATOR_RE = re.compile(r"^(>=|<=|>|<|=|\^|~)?(.+)$")

RELEASE = (1,)
# Sorts below every pre-release of the same version
LOWEST = (0,)

VersionKey = Tuple[int, int, int, tuple]


class ParsedVersion(NamedTuple):
    major: int
    minor: int
    patch: int
    prerelease: Tuple[str, ...]
    specified: int

    @property
    def key(self) -> VersionKey:
        if not self.prerelease:
            return (self.major, self.minor, self.patch, RELEASE)
        parts = tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in self.prerelease)
        return (self.major, self.minor, self.patch, (0,) + parts)


def parse_version(text: Optional[str]) -> Optional[ParsedVersion]:
    """Parse a version string, returning ``None`` if it is not a version."""
    if not text:
        return None
    match = VERSION_RE.match(text)
    if not match:
        return None
    specified = 1 + (match.group("minor") is not None) + (match.group("patch") is not None)
    pre = tuple(match.group("pre").split(".")) if match.group("pre") else ()
    return ParsedVersion(
        int(match.group("major")),
        int(match.group("minor") or 0),
        int(match.group("patch") or 0),
        pre,
        specified,
    )


def version_key(text: str) -> Optional[VersionKey]:
    parsed = parse_version(text)
    return parsed.key if parsed else None


def sort_versions(versions: Iterable[str]) -> List[str]:
    """Sort versions ascending. Unparseable versions (and ``""``) come first."""
    return sorted(versions, key=lambda v: (1, version_key(v)) if version_key(v) else (0, v))


def _bump(parsed: ParsedVersion, position: int) -> VersionKey:
    """Lowest key of the next version at ``position`` (0 major, 1 minor, 2 patch)."""
    segments = [parsed.major, parsed.minor, parsed.patch]
    segments[position] += 1
    for i in range(position + 1, 3):
        segments[i] = 0
    return (segments[0], segments[1], segments[2], LOWEST)


class ConstraintKind(str, Enum):
    EXACT = "exact"
    AT_OR_BELOW = "at_or_below"
    WILDCARD = "wildcard"
    RANGE = "range"
    LATEST = "latest"


@dataclass(frozen=True)
class Comparator:
    op: str
    key: VersionKey

    def test(self, key: VersionKey) -> bool:
        if self.op == ">=":
            return key >= self.key
        if self.op == ">":
            return key > self.key
        if self.op == "<=":
            return key <= self.key
        if self.op == "<":
            return key < self.key
        return key == self.key


@dataclass
class VersionConstraint:
    """A parsed version request.

    Use ``VersionConstraint.parse`` rather than building one directly.
    """
    kind: ConstraintKind
    raw: str = ""
    comparators: List[Comparator] = field(default_factory=list)
    allows_prerelease: bool = False

    @classmethod
    def parse(cls, text: Optional[str], exact_match: bool = False) -> "VersionConstraint":
        """Parse constraint text.

        Raises:
            ValueError: if the text is not a recognizable version or range
        """
        raw = (text or "").strip()

        if exact_match:
            parsed = parse_version(raw)
            comparators = [Comparator("=", parsed.key)] if parsed else []
            return cls(ConstraintKind.EXACT, raw, comparators, allows_prerelease=True)

        if not raw or raw.lower() == "latest":
            return cls(ConstraintKind.LATEST, raw)

        wildcard = WILDCARD_RE.match(raw)
        if wildcard and any(g and g in "xX*" for g in wildcard.groups()):
            return cls._parse_wildcard(raw, wildcard.groups())

        parsed = parse_version(raw)
        if parsed is not None:
            if parsed.specified == 3:
                comparators = [Comparator("<=", parsed.key)]
            else:
                comparators = [Comparator("<", _bump(parsed, parsed.specified - 1))]
            return cls(ConstraintKind.AT_OR_BELOW, raw, comparators, bool(parsed.prerelease))

        return cls._parse_range(raw)

    @classmethod
    def _parse_wildcard(cls, raw: str, groups: Tuple[Optional[str], ...]) -> "VersionConstraint":
        fixed: List[int] = []
        for group in groups:
            if group is None or group in "xX*":
                break
            fixed.append(int(group))
        if not fixed:
            return cls(ConstraintKind.WILDCARD, raw)
        lower = ParsedVersion(*(fixed + [0] * (3 - len(fixed))), (), len(fixed))
        comparators = [Comparator(">=", lower.key), Comparator("<", _bump(lower, len(fixed) - 1))]
        return cls(ConstraintKind.WILDCARD, raw, comparators)

    @classmethod
    def _parse_range(cls, raw: str) -> "VersionConstraint":
        comparators: List[Comparator] = []
        allows_prerelease = False
        for token in raw.replace(",", " ").split():
            match = COMPARATOR_RE.match(token)
            op, version_text = match.group(1) or "=", match.group(2)
            parsed = parse_version(version_text)
            if parsed is None:
                raise ValueError(f"Invalid version constraint: {raw!r}")
            allows_prerelease = allows_prerelease or bool(parsed.prerelease)

            if op == "^":
                if parsed.major > 0 or parsed.specified == 1:
                    upper = _bump(parsed, 0)
                elif parsed.minor > 0 or parsed.specified == 2:
                    upper = _bump(parsed, 1)
                else:
                    upper = _bump(parsed, 2)
                comparators += [Comparator(">=", parsed.key), Comparator("<", upper)]
            elif op == "~":
                upper = _bump(parsed, 0 if parsed.specified == 1 else 1)
                comparators += [Comparator(">=", parsed.key), Comparator("<", upper)]
            elif op == "=" and parsed.specified < 3:
                upper = _bump(parsed, parsed.specified - 1)
                comparators += [Comparator(">=", parsed.key), Comparator("<", upper)]
            elif op in ("<=", ">") and parsed.specified < 3:
                # "<=1.2" covers all of 1.2.x, ">1.2" starts at 1.3.0
                upper = _bump(parsed, parsed.specified - 1)
                comparators.append(Comparator("<" if op == "<=" else ">=", upper))
            else:
                comparators.append(Comparator(op, parsed.key))
        if not comparators:
            raise ValueError(f"Invalid version constraint: {raw!r}")
        return cls(ConstraintKind.RANGE, raw, comparators, allows_prerelease)

    @property
    def allows_unversioned_fallback(self) -> bool:
        """Whether unversioned documents may stand in when nothing matches."""
        return self.kind != ConstraintKind.EXACT

    def matches(self, version: str) -> bool:
        if self.kind == ConstraintKind.EXACT:
            if not self.comparators:
                return version.strip() == self.raw
            parsed = parse_version(version)
            return parsed is not None and all(c.test(parsed.key) for c in self.comparators)

        parsed = parse_version(version)
        if parsed is None:
            return False
        if parsed.prerelease and not self.allows_prerelease:
            return False
        return all(c.test(parsed.key) for c in self.comparators)

    def best(self, candidates: Iterable[str]) -> Optional[str]:
        """Highest candidate satisfying the constraint, or ``None``."""
        matching = [v for v in candidates if self.matches(v)]
        if not matching:
            return None
        if self.kind == ConstraintKind.EXACT and not self.comparators:
            return matching[0]
        return max(matching, key=lambda v: parse_version(v).key)


def find_best_version(versions: Iterable[str], target: Optional[str] = None,
                      exact_match: bool = False) -> Tuple[Optional[str], bool]:
    """Pick the best indexed version for a request.

    Returns:
        ``(best_match, has_unversioned)`` where ``best_match`` is ``None`` when
        no indexed version satisfies the request
    """
    versions = list(versions)
    has_unversioned = "" in versions
    constraint = VersionConstraint.parse(target, exact_match)
    best = constraint.best(v for v in versions if v)
    if best is None and constraint.kind == ConstraintKind.EXACT and not (target or "").strip():
        best = "" if has_unversioned else None
    logger.debug(f"Best version for {target!r} (exact={exact_match}) among {versions}: {best!r}")
    return best, has_unversioned
