from __future__ import annotations

from typing import Any, Dict

import pytest

from npmkeeper.exceptions import RegistryError
from npmkeeper.models.registry import RegistryMetadata, VersionRecord


def _document(**overrides: Any) -> Dict[str, Any]:
    document: Dict[str, Any] = {
        "name": "left-pad",
        "dist-tags": {"latest": "1.3.0", "next": "2.0.0-rc.1"},
        "versions": {
            "1.3.0": {"name": "left-pad", "version": "1.3.0", "main": "index.js"},
            "2.0.0-rc.1": {"version": "2.0.0-rc.1"},
        },
        "homepage": "https://github.com/stevemao/left-pad#readme",
        "repository": {"type": "git", "url": "git+https://github.com/stevemao/left-pad.git"},
        "time": {"1.3.0": "2018-04-09T00:00:00.000Z"},
    }
    document.update(overrides)
    return document


@pytest.mark.unit
class TestRegistryMetadataFromJson:
    """Parsing registry documents."""

    def test_keeps_only_used_fields(self) -> None:
        metadata = RegistryMetadata.from_json(_document(), package_name="left-pad")

        assert metadata.latest == "1.3.0"
        assert metadata.next == "2.0.0-rc.1"
        assert metadata.versions["1.3.0"] == VersionRecord("left-pad", "1.3.0")
        assert metadata.homepage == "https://github.com/stevemao/left-pad#readme"
        assert metadata.repository == "git+https://github.com/stevemao/left-pad.git"

    def test_version_name_defaults_to_package(self) -> None:
        metadata = RegistryMetadata.from_json(_document(), package_name="left-pad")

        assert metadata.versions["2.0.0-rc.1"] == VersionRecord("left-pad", "2.0.0-rc.1")

    def test_repository_as_string(self) -> None:
        metadata = RegistryMetadata.from_json(_document(repository="github:o/r"))

        assert metadata.repository == "github:o/r"

    def test_optional_fields_missing(self) -> None:
        document = _document()
        del document["homepage"]
        del document["repository"]

        metadata = RegistryMetadata.from_json(document)

        assert metadata.homepage is None
        assert metadata.repository is None
        assert metadata.next == "2.0.0-rc.1"

    def test_non_string_tags_are_dropped(self) -> None:
        metadata = RegistryMetadata.from_json(
            _document(**{"dist-tags": {"latest": "1.3.0", "beta": 7}})
        )

        assert dict(metadata.dist_tags) == {"latest": "1.3.0"}
        assert metadata.next is None

    @pytest.mark.parametrize(
        "document, message",
        [
            (["not", "an", "object"], "not a JSON object"),
            ({"versions": {}}, "dist-tags.latest"),
            ({"dist-tags": {"next": "1.0.0"}, "versions": {}}, "dist-tags.latest"),
            ({"dist-tags": {"latest": "1.0.0"}}, "versions"),
            ({"dist-tags": {"latest": "1.0.0"}, "versions": {"1.0.0": "x"}}, "not an object"),
            (
                {"dist-tags": {"latest": "1.0.0"}, "versions": {"1.0.0": {"version": 1}}},
                "non-string",
            ),
        ],
    )
    def test_malformed_documents(self, document: Any, message: str) -> None:
        with pytest.raises(RegistryError, match=message) as exc_info:
            RegistryMetadata.from_json(document, package_name="left-pad")

        assert exc_info.value.package_name == "left-pad"


@pytest.mark.unit
class TestRegistryMetadataToJson:
    def test_round_trip(self) -> None:
        metadata = RegistryMetadata.from_json(_document(), package_name="left-pad")

        assert RegistryMetadata.from_json(metadata.to_json()) == metadata

    def test_omits_missing_links(self) -> None:
        data = RegistryMetadata(dist_tags={"latest": "1.0.0"}).to_json()

        assert data == {"dist-tags": {"latest": "1.0.0"}, "versions": {}}

    def test_frozen(self) -> None:
        metadata = RegistryMetadata(dist_tags={"latest": "1.0.0"})

        with pytest.raises(AttributeError):
            metadata.homepage = "https://example.com"  # type: ignore[misc]
