"""
User-configured exclusions.

Two independent filters live here:

* :func:`is_excluded` hides individual *versions* of a dependency that match
  the npm range(s) configured under ``ignore_versions``. A rule that cannot
  be parsed fails closed: every version is hidden and a warning is logged,
  so a typo never lets through a suggestion the user meant to suppress.
* :func:`is_dependency_ignored` skips whole *dependencies* whose name
  matches one of the ``ignore_patterns`` regular expressions.
"""

from __future__ import annotations

import re
from typing import List, Optional, Pattern, Sequence, Union

from npmkeeper.models.registry import VersionRecord
from npmkeeper.utils.logger import get_logger
from npmkeeper.utils.version_utils import is_valid_range, parse_version, satisfies

logger = get_logger("exclusion")

#: A single npm range, or a list of ranges OR-ed together.
ExclusionRule = Union[str, Sequence[str]]

__all__ = [
    "ExclusionRule",
    "is_excluded",
    "check_exclusion_rule",
    "compile_ignore_patterns",
    "is_dependency_ignored",
]


def is_excluded(
    version: VersionRecord,
    dependency_name: str,
    rule: Optional[ExclusionRule],
) -> bool:
    """Return True if ``version`` is hidden by the dependency's exclusion rule.

    Args:
        version: Candidate version.
        dependency_name: Dependency the rule belongs to (for diagnostics).
        rule: ``None`` (nothing excluded), one npm range, or a list of
            ranges where matching any one excludes the version.

    Example:
        >>> v = VersionRecord("left-pad", "2.1.1")
        >>> is_excluded(v, "left-pad", ">=2.1.1")
        True
        >>> is_excluded(v, "left-pad", ["=2.0.0", "=2.1.0"])
        False
    """
    if rule is None:
        return False
    if isinstance(rule, str):
        return _matches_range(version, dependency_name, rule)
    return any(_matches_range(version, dependency_name, r) for r in rule)


def _matches_range(version: VersionRecord, dependency_name: str, npm_range: str) -> bool:
    parsed = parse_version(version.version)
    if parsed is None:
        return False

    try:
        return satisfies(parsed, npm_range)
    except ValueError:
        logger.warning(
            "Invalid ignore_versions rule %r for %s; ignoring all versions",
            npm_range,
            dependency_name,
        )
        return True


def check_exclusion_rule(dependency_name: str, rule: Optional[ExclusionRule]) -> bool:
    """Return False if any range of ``rule`` is unparseable, warning once per bad range.

    A rule that fails this check excludes every version, so callers that
    test many versions can check once and skip :func:`is_excluded`.
    """
    if rule is None:
        return True
    ranges = [rule] if isinstance(rule, str) else list(rule)
    valid = True
    for npm_range in ranges:
        if not is_valid_range(npm_range):
            logger.warning(
                "Invalid ignore_versions rule %r for %s; ignoring all versions",
                npm_range,
                dependency_name,
            )
            valid = False
    return valid


def compile_ignore_patterns(patterns: Sequence[str]) -> List[Pattern[str]]:
    """Compile dependency-name ignore patterns, skipping invalid ones.

    Invalid expressions are logged at error level and dropped rather than
    aborting the whole run.
    """
    compiled: List[Pattern[str]] = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern))
        except re.error as exc:
            logger.error("Invalid ignore pattern %r: %s", pattern, exc)
    return compiled


def is_dependency_ignored(dependency_name: str, patterns: Sequence[Pattern[str]]) -> bool:
    """Return True if any pattern matches somewhere in ``dependency_name``."""
    return any(p.search(dependency_name) is not None for p in patterns)
