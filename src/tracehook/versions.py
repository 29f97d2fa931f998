"""
Version range matching for instrumentation descriptors.

Range expressions use npm-style semver syntax, the form plugin authors
copy from library changelogs::

    "*"  "1.x"  "^2.0.0"  "~1.4"  ">=1.2 <3"  "1.0.0 - 2.1.0"  "<1 || >=3"

PEP 440 specifier sets (``">=1.2,<3"``, ``"~=2.1"``) are accepted as-is.
Semver expressions are translated to ``packaging`` specifier sets; each
``||`` alternative becomes one set, and a version matches the expression
when it is contained in any of them.

Installed versions are coerced before comparison: the first
``major[.minor[.patch]]`` run is taken and padded with zeros, so
``"1.2"`` compares as ``1.2.0`` and ``"2.5.0-pre"`` as ``2.5.0``.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Iterable, Optional, Union

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import Version

from tracehook.errors import InvalidRange

logger = logging.getLogger(__name__)

_COERCE_RE = re.compile(r"(?<!\d)(\d{1,16})(?:\.(\d{1,16}))?(?:\.(\d{1,16}))?")

_COMPARATOR_RE = re.compile(
    r"(?P<op>\^|~>?|>=|<=|>|<|=)?v?"
    r"(?P<major>\*|[xX]|\d+)"
    r"(?:\.(?P<minor>\*|[xX]|\d+))?"
    r"(?:\.(?P<patch>\*|[xX]|\d+))?"
    r"(?:[-+][0-9A-Za-z.+-]*)?"
)

_HYPHEN_RE = re.compile(r"(\S+)\s+-\s+(\S+)")

# Operators followed by whitespace are glued to their operand ("> = 1" is not supported)
_LOOSE_OP_RE = re.compile(r"(>=|<=|>|<|=|\^|~>?)\s+")

_PEP440_MARKERS = (",", "==", "~=", "!=")

_ANY = SpecifierSet("")


def coerce(version: Union[str, Version, None]) -> Optional[Version]:
    """Coerce a loosely formatted version string into a ``major.minor.patch`` Version."""
    if version is None:
        return None
    if isinstance(version, Version):
        return Version(f"{version.major}.{version.minor}.{version.micro}")
    match = _COERCE_RE.search(str(version))
    if match is None:
        return None
    major, minor, patch = match.groups()
    return Version(f"{int(major)}.{int(minor or 0)}.{int(patch or 0)}")


@lru_cache(maxsize=256)
def parse_range(expr: str) -> tuple[SpecifierSet, ...]:
    """
    Parse a range expression into OR-combined specifier sets.

    Raises:
        InvalidRange: the expression is neither semver nor PEP 440 syntax.
    """
    text = expr.strip()

    if "||" not in text and any(marker in text for marker in _PEP440_MARKERS):
        try:
            return (SpecifierSet(text),)
        except InvalidSpecifier as e:
            raise InvalidRange(expr, str(e)) from e

    return tuple(_parse_comparator_set(expr, part.strip()) for part in text.split("||"))


def matches(version: Union[str, Version, None], ranges: Optional[Iterable[str]]) -> bool:
    """
    Return True if *version* satisfies any of *ranges*.

    Empty or missing ranges match everything, and so does a version that is
    missing or cannot be coerced: an unknown version never blocks
    instrumentation.
    """
    if not ranges:
        return True
    if isinstance(ranges, str):
        ranges = (ranges,)

    coerced = coerce(version)
    if coerced is None:
        return True

    for expr in ranges:
        try:
            alternatives = parse_range(expr)
        except InvalidRange:
            logger.debug("Ignoring unparseable version range %r", expr, exc_info=True)
            continue
        if any(spec.contains(coerced, prereleases=True) for spec in alternatives):
            return True
    return False


# ---------------------------------------------------------------------------
# Semver translation
# ---------------------------------------------------------------------------


def _parse_comparator_set(expr: str, text: str) -> SpecifierSet:
    if text in ("", "*", "x", "X"):
        return _ANY

    hyphen = _HYPHEN_RE.fullmatch(text)
    if hyphen:
        lower, upper = hyphen.groups()
        specifiers = _translate(expr, f">={lower}") + _translate(expr, f"<={upper}")
        return SpecifierSet(",".join(specifiers))

    specifiers: list[str] = []
    for token in _LOOSE_OP_RE.sub(r"\1", text).split():
        specifiers.extend(_translate(expr, token))
    return SpecifierSet(",".join(specifiers))


def _translate(expr: str, token: str) -> list[str]:
    match = _COMPARATOR_RE.fullmatch(token)
    if match is None:
        raise InvalidRange(expr, f"cannot parse {token!r}")

    op = match.group("op") or "="
    parts: list[int] = []
    for group in ("major", "minor", "patch"):
        value = match.group(group)
        if value is None or value in ("*", "x", "X"):
            break
        parts.append(int(value))

    given = len(parts)
    if given == 0:
        return []

    major, minor, patch = (parts + [0, 0])[:3]
    lower = f"{major}.{minor}.{patch}"

    if op == "=":
        if given == 3:
            return [f"=={lower}"]
        return [f">={lower}", f"<{_bump(major, minor, given)}"]

    if op == "^":
        if major > 0 or given == 1:
            upper = f"{major + 1}.0.0"
        elif minor > 0 or given == 2:
            upper = f"0.{minor + 1}.0"
        else:
            upper = f"0.0.{patch + 1}"
        return [f">={lower}", f"<{upper}"]

    if op in ("~", "~>"):
        if given == 1:
            return [f">={lower}", f"<{major + 1}.0.0"]
        return [f">={lower}", f"<{major}.{minor + 1}.0"]

    if op == ">=":
        return [f">={lower}"]

    if op == "<":
        return [f"<{lower}"]

    if op == ">":
        if given == 3:
            return [f">{lower}"]
        return [f">={_bump(major, minor, given)}"]

    # op == "<="
    if given == 3:
        return [f"<={lower}"]
    return [f"<{_bump(major, minor, given)}"]


def _bump(major: int, minor: int, given: int) -> str:
    """Smallest version above every version matching a partial ``major[.minor]``."""
    if given == 1:
        return f"{major + 1}.0.0"
    return f"{major}.{minor + 1}.0"
