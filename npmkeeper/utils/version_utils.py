"""
Version comparison utilities for npmkeeper.

Thin helpers over :mod:`semantic_version` that reproduce the npm ``semver``
behaviours the classifier relies on and the library does not provide:
``coerce`` (pull a plain ``MAJOR.MINOR.PATCH`` out of a range) and the
classic ``diff`` release-type classification.
"""

from __future__ import annotations

import re
from typing import Optional

import semantic_version
from semantic_version import Version

#: Official semver 2.0.0 grammar (https://semver.org/#is-there-a-suggested-regular-expression-regex-to-check-a-semver-string).
SEMVER_PATTERN = re.compile(
    r"^(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<prerelease>(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+(?P<build>[0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)

# Same shape as npm's loose coerce: first run of up to three dot-separated
# numbers not embedded in a longer number.
_COERCE_PATTERN = re.compile(
    r"(?:^|[^\d])(\d{1,16})(?:\.(\d{1,16}))?(?:\.(\d{1,16}))?(?:$|[^\d])"
)


def parse_version(value: Optional[str]) -> Optional[Version]:
    """Parse a strict semver string, returning ``None`` when invalid.

    Examples:
        >>> parse_version("1.2.3-beta.1")
        Version('1.2.3-beta.1')
        >>> parse_version("^1.2.3") is None
        True
    """
    if not value:
        return None
    try:
        return Version(value)
    except ValueError:
        return None


def is_prerelease(value: str) -> bool:
    """Return True if ``value`` is a full semver string with a prerelease tag."""
    match = SEMVER_PATTERN.match(value)
    return bool(match and match.group("prerelease"))


def coerce(value: str) -> Optional[Version]:
    """Extract a ``MAJOR.MINOR.PATCH`` version from an arbitrary string.

    Missing components default to zero; range operators and prerelease
    tags are dropped.

    Examples:
        >>> coerce("^1.2")
        Version('1.2.0')
        >>> coerce(">=3.1.4 <4")
        Version('3.1.4')
        >>> coerce("latest") is None
        True
    """
    match = _COERCE_PATTERN.search(value)
    if match is None:
        return None
    major, minor, patch = match.groups()
    return Version(
        major=int(major),
        minor=int(minor or 0),
        patch=int(patch or 0),
    )


def same_precedence(left: Version, right: Version) -> bool:
    """Semver equality, ignoring build metadata."""
    return (left.major, left.minor, left.patch, left.prerelease) == (
        right.major,
        right.minor,
        right.patch,
        right.prerelease,
    )


def diff(left: Version, right: Version) -> Optional[str]:
    """Classify the release type separating two versions.

    Follows the classic npm rule: if either side is a prerelease the result
    is prefixed with ``pre`` (``premajor``, ``preminor``, ``prepatch``), and
    two versions sharing ``MAJOR.MINOR.PATCH`` differ by ``prerelease``.

    Returns:
        One of ``major``, ``minor``, ``patch``, ``premajor``, ``preminor``,
        ``prepatch``, ``prerelease``; ``None`` for equal versions.

    Examples:
        >>> diff(Version("2.0.0-alpha.1"), Version("2.0.0"))
        'prerelease'
        >>> diff(Version("2.0.0-alpha.1"), Version("2.1.1"))
        'preminor'
        >>> diff(Version("1.1.1"), Version("2.1.1"))
        'major'
    """
    if same_precedence(left, right):
        return None

    prefix = "pre" if (left.prerelease or right.prerelease) else ""
    if left.major != right.major:
        return prefix + "major"
    if left.minor != right.minor:
        return prefix + "minor"
    if left.patch != right.patch:
        return prefix + "patch"
    return "prerelease"


def get_exact_version(specifier: str) -> str:
    """Strip one leading ``^`` or ``~`` range operator.

    Examples:
        >>> get_exact_version("^1.2.3")
        '1.2.3'
        >>> get_exact_version(">=1.2.3")
        '>=1.2.3'
    """
    if specifier.startswith(("^", "~")):
        return specifier[1:]
    return specifier


def replace_last_occurrence(text: str, old: str, new: str) -> str:
    """Replace the last occurrence of ``old`` in ``text`` (no-op if absent).

    Used to rewrite a specifier in place so its range operator survives:

        >>> replace_last_occurrence("^1.0.0", "1.0.0", "2.1.1")
        '^2.1.1'
    """
    index = text.rfind(old)
    if index == -1 or not old:
        return text
    return text[:index] + new + text[index + len(old):]


def satisfies(version: Version, npm_range: str) -> bool:
    """Return True if ``version`` matches an npm range expression.

    Raises:
        ValueError: ``npm_range`` is not a valid npm range.
    """
    return semantic_version.NpmSpec(npm_range).match(version)


def is_valid_range(npm_range: str) -> bool:
    """Return True if ``npm_range`` parses as an npm range expression."""
    try:
        semantic_version.NpmSpec(npm_range)
    except ValueError:
        return False
    return True
