"""
Container package listing for a GitHub organization.

Produces the ``ContainerImage`` list the replication engine consumes, by paging
through the GitHub Packages REST API. An optional read-through cache keeps the
listing on disk so repeated runs do not hit the API again.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from pydantic import TypeAdapter

from .models import ContainerImage
from .storage.oci_errors import OciAuthError, ProtocolError, TransportError

logger = logging.getLogger(__name__)

GITHUB_API_VERSION = "2022-11-28"
CACHE_FILE = "registry.json"

_IMAGES_ADAPTER: TypeAdapter[List[ContainerImage]] = TypeAdapter(List[ContainerImage])

__all__ = ["GitHubPackages", "list_container_images"]


class GitHubPackages:
    """Read-only client for an organization's container packages."""

    def __init__(self, org: str, token: Optional[str] = None, *,
                 api_url: str = "https://api.github.com", timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.org = org
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.client = httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=5.0),
            follow_redirects=True,
            transport=transport,
        )

    async def packages(self) -> List[Dict[str, Any]]:
        return await self._paginate(
            f"/orgs/{self.org}/packages", {"package_type": "container", "per_page": "100"}
        )

    async def versions(self, package_name: str) -> List[Dict[str, Any]]:
        return await self._paginate(
            f"/orgs/{self.org}/packages/container/{quote(package_name, safe='')}/versions",
            {"per_page": "100"},
        )

    async def container_images(self) -> List[ContainerImage]:
        """
        List every container package with the tags of all its versions.

        Untagged versions contribute nothing; repository names are
        lowercased as registries require.
        """
        images: List[ContainerImage] = []
        for pkg in await self.packages():
            logger.debug(f"list tags: {pkg['name']}")
            tags: List[str] = []
            for version in await self.versions(pkg["name"]):
                container = (version.get("metadata") or {}).get("container") or {}
                tags.extend(container.get("tags") or [])
            images.append(ContainerImage(name=f"{self.org}/{pkg['name']}".lower(), tags=tags))
        return images

    async def _paginate(self, path: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        """Follow ``Link: rel="next"`` until the last page."""
        items: List[Dict[str, Any]] = []
        url: Optional[str] = path
        request_params: Optional[Dict[str, str]] = params

        while url:
            try:
                response = await self.client.get(url, params=request_params)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                if e.response.status_code in (401, 403):
                    raise OciAuthError(f"GitHub API authentication failed for {path}") from e
                raise ProtocolError(f"GitHub API error {e.response.status_code} for {path}") from e
            except httpx.RequestError as e:
                raise TransportError(f"Network error listing {path}: {e}") from e

            page = response.json()
            if not isinstance(page, list):
                raise ProtocolError(f"Expected a list from {path}")
            items.extend(page)

            # The next link already carries the query string
            url = response.links.get("next", {}).get("url")
            request_params = None

        return items

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> GitHubPackages:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


async def list_container_images(org: str, token: Optional[str] = None, *,
                                api_url: str = "https://api.github.com",
                                cache_dir: Optional[str] = None,
                                timeout: float = 30.0,
                                transport: Optional[httpx.AsyncBaseTransport] = None) -> List[ContainerImage]:
    """
    List an organization's container images, reading through a disk cache.

    Args:
        org: GitHub organization
        token: GitHub token with ``read:packages``
        api_url: GitHub REST API base URL
        cache_dir: Directory holding the cached listing (None disables the cache)
        timeout: HTTP timeout in seconds
        transport: Custom transport (tests use httpx.MockTransport)

    Returns:
        Images in API order
    """
    cache_path = Path(cache_dir) / CACHE_FILE if cache_dir else None
    if cache_path is not None and cache_path.exists():
        logger.debug(f"Using cached package listing {cache_path}")
        return _IMAGES_ADAPTER.validate_json(cache_path.read_bytes())

    async with GitHubPackages(org, token, api_url=api_url, timeout=timeout, transport=transport) as gh:
        images = await gh.container_images()

    if cache_path is not None:
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        cache_path.write_bytes(_IMAGES_ADAPTER.dump_json(images, indent=2))
    return images
