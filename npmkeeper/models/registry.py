"""
Registry data models for npmkeeper.

Typed, immutable views of the npm registry "packument" document. The raw
JSON is parsed defensively by :meth:`RegistryMetadata.from_json`; a payload
that lacks ``dist-tags.latest`` or ``versions`` raises :class:`RegistryError`
so the fetch coordinator can record a rejected load instead of crashing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from npmkeeper.exceptions import RegistryError


@dataclass(frozen=True)
class VersionRecord:
    """One published version of a dependency.

    Attributes:
        name: Package name as reported by the registry.
        version: Semver version string, unique within its package.
    """

    name: str
    version: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "version": self.version}


@dataclass(frozen=True)
class RegistryMetadata:
    """Everything npmkeeper needs to know about one package.

    Replaced wholesale on every successful fetch; never mutated.

    Attributes:
        dist_tags: Named pointers to versions, always containing ``latest``.
        versions: Version string → :class:`VersionRecord`.
        homepage: Project homepage, if published.
        repository: Source repository URL, if published.
    """

    dist_tags: Mapping[str, str]
    versions: Mapping[str, VersionRecord] = field(default_factory=dict)
    homepage: Optional[str] = None
    repository: Optional[str] = None

    @property
    def latest(self) -> str:
        """Version the ``latest`` dist-tag points to."""
        return self.dist_tags["latest"]

    @property
    def next(self) -> Optional[str]:
        """Version the ``next`` dist-tag points to, if any."""
        return self.dist_tags.get("next")

    @classmethod
    def from_json(cls, data: Any, *, package_name: Optional[str] = None) -> "RegistryMetadata":
        """Build metadata from a registry JSON document.

        Only the fields npmkeeper uses are retained, so the result is also
        the trimmed form stored in the registry cache.

        Args:
            data: Decoded JSON body of ``GET {registry}/{package}``.
            package_name: Used for error context and as the fallback
                ``name`` of version entries that omit it.

        Raises:
            RegistryError: The payload is not an object, or ``dist-tags``,
                ``dist-tags.latest`` or ``versions`` are missing or mistyped.
        """
        if not isinstance(data, Mapping):
            raise RegistryError(
                "Registry response is not a JSON object",
                package_name=package_name,
            )

        raw_tags = data.get("dist-tags")
        if not isinstance(raw_tags, Mapping) or not isinstance(
            raw_tags.get("latest"), str
        ):
            raise RegistryError(
                "Registry response has no 'dist-tags.latest'",
                package_name=package_name,
            )
        dist_tags = {k: v for k, v in raw_tags.items() if isinstance(v, str)}

        raw_versions = data.get("versions")
        if not isinstance(raw_versions, Mapping):
            raise RegistryError(
                "Registry response has no 'versions' object",
                package_name=package_name,
            )

        versions: Dict[str, VersionRecord] = {}
        for key, entry in raw_versions.items():
            if not isinstance(entry, Mapping):
                raise RegistryError(
                    f"Version entry '{key}' is not an object",
                    package_name=package_name,
                )
            version = entry.get("version", key)
            name = entry.get("name", package_name or "")
            if not isinstance(version, str) or not isinstance(name, str):
                raise RegistryError(
                    f"Version entry '{key}' has a non-string name or version",
                    package_name=package_name,
                )
            versions[key] = VersionRecord(name=name, version=version)

        homepage = data.get("homepage")
        return cls(
            dist_tags=dist_tags,
            versions=versions,
            homepage=homepage if isinstance(homepage, str) else None,
            repository=_repository_url(data.get("repository")),
        )

    def to_json(self) -> Dict[str, Any]:
        """Serialize back to the registry document shape."""
        data: Dict[str, Any] = {
            "dist-tags": dict(self.dist_tags),
            "versions": {k: v.to_dict() for k, v in self.versions.items()},
        }
        if self.homepage is not None:
            data["homepage"] = self.homepage
        if self.repository is not None:
            data["repository"] = self.repository
        return data


def _repository_url(value: Any) -> Optional[str]:
    """Accept both ``"repository": "url"`` and ``"repository": {"url": ...}``."""
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping) and isinstance(value.get("url"), str):
        return value["url"]
    return None
