"""Registry client: fetch and parse one package document."""

from __future__ import annotations

from urllib.parse import quote

from npmkeeper.constants import DEFAULT_REGISTRY
from npmkeeper.exceptions import NetworkError, RegistryError
from npmkeeper.models.registry import RegistryMetadata
from npmkeeper.utils.http import HTTPClient
from npmkeeper.utils.logger import get_logger

logger = get_logger("registry_client")

__all__ = ["RegistryClient", "package_url"]


def package_url(registry: str, name: str) -> str:
    """Build the document URL for ``name``; scoped names keep their ``@``.

    Example:
        >>> package_url("https://registry.npmjs.org/", "@types/node")
        'https://registry.npmjs.org/@types%2Fnode'
    """
    return f"{registry.rstrip('/')}/{quote(name, safe='@')}"


class RegistryClient:
    """Fetches package documents from an npm-compatible registry.

    Args:
        http_client: Shared transport.
        registry: Registry base URL.
    """

    def __init__(self, http_client: HTTPClient, registry: str = DEFAULT_REGISTRY) -> None:
        self.http_client = http_client
        self.registry = registry

    async def fetch_metadata(self, name: str) -> RegistryMetadata:
        """Fetch and parse the document for ``name``.

        Raises:
            RegistryError: Unknown package, transport failure, unexpected
                status or malformed document.
        """
        url = package_url(self.registry, name)
        logger.debug("Fetching registry metadata for %s from %s", name, url)

        try:
            data = await self.http_client.get_json(url)
        except RegistryError as exc:
            raise RegistryError(
                f"Package '{name}' not found in registry",
                package_name=name,
                url=url,
                status_code=exc.status_code,
            ) from exc
        except NetworkError as exc:
            raise RegistryError(
                f"Failed to fetch '{name}': {exc.message}",
                package_name=name,
                url=url,
                status_code=exc.status_code,
            ) from exc

        return RegistryMetadata.from_json(data, package_name=name)
