"""
Upgrade classification result.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from npmkeeper.models.registry import VersionRecord


@dataclass(frozen=True)
class DependencyUpdateInfo:
    """Best available upgrade per severity for one dependency.

    Attributes:
        major: Highest acceptable major (or premajor) upgrade.
        minor: Highest acceptable minor (or preminor) upgrade.
        patch: Highest acceptable patch (or prepatch) upgrade.
        prerelease: Highest prerelease-to-prerelease (or prerelease-to-final)
            upgrade; only ever set when the current version is a prerelease.
        valid_version: ``False`` when the specifier could not be read as a
            version at all. No classification is attempted in that case.
        existing_version: ``True`` when the specifier, minus a leading
            ``^``/``~``, is literally one of the published version strings.
    """

    major: Optional[VersionRecord] = None
    minor: Optional[VersionRecord] = None
    patch: Optional[VersionRecord] = None
    prerelease: Optional[VersionRecord] = None
    valid_version: bool = True
    existing_version: bool = False

    def upgrades(self) -> Dict[str, VersionRecord]:
        """Return the populated buckets, most severe first."""
        buckets = {
            "major": self.major,
            "minor": self.minor,
            "patch": self.patch,
            "prerelease": self.prerelease,
        }
        return {k: v for k, v in buckets.items() if v is not None}

    def best_upgrade(self) -> Optional[Tuple[str, VersionRecord]]:
        """The most severe populated bucket as ``(update_type, record)``."""
        return next(iter(self.upgrades().items()), None)

    def has_update(self) -> bool:
        return bool(self.upgrades())
