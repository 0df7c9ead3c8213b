"""Upgrade classification for npm dependencies.

Given the specifier a project pins (``"^1.2.3"``, ``"~2.0.0-beta.1"``,
``"*"``) and the versions a registry publishes, work out the best upgrade
in each severity bucket.

The rules, in order:

1. ``*`` and ``x`` accept anything, so there is nothing to upgrade.
2. A leading ``^``/``~`` is stripped to get the *exact* version. If that is
   a full prerelease semver it is the baseline as-is; otherwise the
   specifier is coerced to ``MAJOR.MINOR.PATCH``. Coercion failure marks
   the specifier as invalid.
3. Candidates are valid semver, strictly above the baseline, not excluded
   by the user's ``ignore_versions`` rule, and not above the ``latest``
   dist-tag, unless the baseline itself is already past ``latest``.
4. Each bucket takes the highest candidate whose diff type falls in it.
   Prerelease baselines widen the buckets to the ``pre*`` diff types and
   get an extra ``prerelease`` bucket.

Everything here is pure: no I/O, no caching, identical inputs give equal
results.

Typical usage::

    info = classify(metadata, "^1.1.1", "left-pad", exclusion_rule=">=2.1.1")
    if info.major:
        print(f"major upgrade available: {info.major.version}")
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

from semantic_version import Version

from npmkeeper.constants import WILDCARD_SPECIFIERS
from npmkeeper.core.exclusion import ExclusionRule, check_exclusion_rule, is_excluded
from npmkeeper.models.registry import RegistryMetadata, VersionRecord
from npmkeeper.models.update_info import DependencyUpdateInfo
from npmkeeper.utils.version_utils import (
    coerce,
    diff,
    get_exact_version,
    is_prerelease,
    parse_version,
)

__all__ = ["classify", "classify_versions", "latest_upgrade"]

# Diff types accepted per bucket. Prerelease baselines also accept the
# ``pre*`` variants so an upgrade shows even when only prereleases exist.
_STABLE_BUCKETS: Dict[str, Tuple[str, ...]] = {
    "major": ("major",),
    "minor": ("minor",),
    "patch": ("patch",),
}
_PRERELEASE_BUCKETS: Dict[str, Tuple[str, ...]] = {
    "major": ("major", "premajor"),
    "minor": ("minor", "preminor"),
    "patch": ("patch", "prepatch"),
    "prerelease": ("prerelease",),
}


def classify(
    metadata: RegistryMetadata,
    current_specifier: str,
    dependency_name: str = "",
    exclusion_rule: Optional[ExclusionRule] = None,
) -> DependencyUpdateInfo:
    """Classify the available upgrades for a dependency.

    Args:
        metadata: Registry document for the dependency.
        current_specifier: The raw specifier from the manifest.
        dependency_name: Used only to attribute exclusion-rule warnings.
        exclusion_rule: The dependency's ``ignore_versions`` entry.

    Returns:
        A :class:`DependencyUpdateInfo`; never raises for bad specifiers.
    """
    return classify_versions(
        metadata.versions.values(),
        current_specifier,
        metadata.latest,
        dependency_name=dependency_name,
        exclusion_rule=exclusion_rule,
    )


def classify_versions(
    available_versions: Iterable[VersionRecord],
    current_specifier: str,
    dist_tag_latest: Optional[str],
    *,
    dependency_name: str = "",
    exclusion_rule: Optional[ExclusionRule] = None,
) -> DependencyUpdateInfo:
    """Classify upgrades against an explicit version set and ``latest`` tag.

    This is the primitive :func:`classify` delegates to; it is exposed for
    callers that do not hold a full :class:`RegistryMetadata`.
    """
    if current_specifier in WILDCARD_SPECIFIERS:
        return DependencyUpdateInfo(valid_version=True, existing_version=True)

    exact_version = get_exact_version(current_specifier)
    baseline_is_prerelease = is_prerelease(exact_version)

    baseline = parse_version(exact_version) if baseline_is_prerelease else coerce(
        current_specifier
    )
    if baseline is None:
        return DependencyUpdateInfo(valid_version=False, existing_version=False)

    versions = list(available_versions)
    existing_version = any(v.version == exact_version for v in versions)

    candidates = _candidates(
        versions,
        baseline,
        dist_tag_latest,
        dependency_name=dependency_name,
        exclusion_rule=exclusion_rule,
    )

    buckets = _PRERELEASE_BUCKETS if baseline_is_prerelease else _STABLE_BUCKETS
    picks = {
        bucket: _highest(c for c in candidates if c[2] in diff_types)
        for bucket, diff_types in buckets.items()
    }

    return DependencyUpdateInfo(
        major=picks.get("major"),
        minor=picks.get("minor"),
        patch=picks.get("patch"),
        prerelease=picks.get("prerelease"),
        valid_version=True,
        existing_version=existing_version,
    )


def latest_upgrade(
    metadata: RegistryMetadata,
    current_specifier: str,
    dependency_name: str = "",
    exclusion_rule: Optional[ExclusionRule] = None,
) -> Optional[VersionRecord]:
    """Return the single version an "update all" should move to.

    That is the most severe populated bucket: major, then minor, patch,
    prerelease. ``None`` when already up to date or the specifier is a
    wildcard or invalid.
    """
    best = classify(metadata, current_specifier, dependency_name, exclusion_rule).best_upgrade()
    return best[1] if best is not None else None


def _candidates(
    versions: List[VersionRecord],
    baseline: Version,
    dist_tag_latest: Optional[str],
    *,
    dependency_name: str,
    exclusion_rule: Optional[ExclusionRule],
) -> List[Tuple[VersionRecord, Version, str]]:
    """Collect ``(record, parsed, diff_type)`` for every acceptable upgrade."""
    if not check_exclusion_rule(dependency_name, exclusion_rule):
        return []

    latest = parse_version(dist_tag_latest)
    # No ceiling once the baseline is already past ``latest``.
    ceiling = latest if latest is not None and not baseline > latest else None

    result: List[Tuple[VersionRecord, Version, str]] = []
    for record in versions:
        parsed = parse_version(record.version)
        if parsed is None or not parsed > baseline:
            continue
        if ceiling is not None and parsed > ceiling:
            continue
        if is_excluded(record, dependency_name, exclusion_rule):
            continue
        diff_type = diff(baseline, parsed)
        if diff_type is not None:
            result.append((record, parsed, diff_type))
    return result


def _highest(
    candidates: Iterable[Tuple[VersionRecord, Version, str]],
) -> Optional[VersionRecord]:
    best: Optional[Tuple[VersionRecord, Version, str]] = None
    for candidate in candidates:
        if best is None or candidate[1] > best[1]:
            best = candidate
    return best[0] if best is not None else None
