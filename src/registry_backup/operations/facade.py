"""
Operations Facade - Application service layer.

Provides a clean interface between the CLI and the replication engine,
centralizing client construction, authentication and configuration policy
while keeping CLI commands thin and testable.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

import httpx

from ..events import ReplicationObserver
from ..models import ContainerImage, CopyStats, FetchedManifest
from ..packages import list_container_images
from ..replicate import Replicator
from ..settings import Settings
from ..storage.oci_errors import OciAuthError
from ..storage.registry_http import RegistryHTTP
from ..storage.token import fetch_registry_token


@dataclass(frozen=True)
class OpsConfig:
    """
    Configuration for Operations facade.

    Per-invocation overrides of the environment settings.
    """
    cache: bool = True                   # Use the package listing cache if configured
    max_copies: Optional[int] = None     # Overrides Settings.max_copies
    verbose: bool = False                # Show detailed output


class Operations:
    """
    Application service facade for CLI operations.

    Design Notes: Operations Facade

    One method per CLI verb. Clients are created per call and closed when
    the call finishes. ``transport`` is handed to every HTTP client so tests
    can run the full flow against an in-memory registry. Exceptions bubble up
    for central exit-code mapping.
    """

    def __init__(self, config: OpsConfig, settings: Optional[Settings] = None, *,
                 observer: Optional[ReplicationObserver] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize Operations facade.

        Args:
            config: Configuration settings
            settings: Optional settings (if None, loaded from environment)
            observer: Replication observer (defaults to logging)
            transport: HTTP transport override for every client
        """
        self.cfg = config
        if settings is None:
            from ..settings import create_settings_from_env
            settings = create_settings_from_env()
        self.settings = settings
        self.observer = observer
        self.transport = transport
        self.last_stats: Optional[CopyStats] = None

    async def list_images(self) -> List[ContainerImage]:
        """List the organization's container images and tags."""
        s = self.settings
        return await list_container_images(
            s.github_org,
            s.github_token,
            api_url=s.github_api_url,
            cache_dir=s.cache_dir if self.cfg.cache else None,
            timeout=s.http_timeout_s,
            transport=self.transport,
        )

    async def backup(self, images: Optional[List[ContainerImage]] = None) -> CopyStats:
        """
        Replicate images from the source registry into the target.

        Args:
            images: Images to copy (listed from GitHub if None)

        Returns:
            Copy statistics; also kept in ``last_stats`` when the run fails

        Raises:
            OciAuthError: If the source registry refuses the credentials
            FatalReplicationError: If a copy step cannot complete
        """
        if images is None:
            images = await self.list_images()

        s = self.settings
        max_copies = self.cfg.max_copies if self.cfg.max_copies is not None else s.max_copies

        async with self._source() as source, self._target() as target:
            await self._authenticate(source)
            replicator = Replicator(
                source,
                target,
                observer=self.observer,
                max_copies=max_copies,
                chunked_upload_threshold=s.chunked_upload_threshold,
                chunk_size=s.chunk_size,
            )
            try:
                return await replicator.replicate(images)
            finally:
                self.last_stats = replicator.stats

    async def inspect(self, repository: str, reference: str) -> Optional[FetchedManifest]:
        """Fetch a manifest from the source registry."""
        async with self._source() as source:
            await self._authenticate(source)
            return await source.get_manifest(repository, reference)

    def config(self) -> Dict[str, object]:
        """Effective settings with secrets masked."""
        return self.settings.redacted()

    def _source(self) -> RegistryHTTP:
        s = self.settings
        return RegistryHTTP(
            s.source_registry_url,
            timeout=s.http_timeout_s,
            retries=s.http_retry,
            transport=self.transport,
        )

    def _target(self) -> RegistryHTTP:
        s = self.settings
        return RegistryHTTP(
            s.target_registry_url,
            timeout=s.http_timeout_s,
            retries=s.http_retry,
            insecure=s.target_insecure,
            transport=self.transport,
        )

    async def _authenticate(self, source: RegistryHTTP) -> None:
        s = self.settings
        if not (s.github_username and s.github_token):
            return
        token = await fetch_registry_token(
            s.source_registry_url, s.github_username, s.github_token, client=source.client
        )
        if token is None:
            raise OciAuthError(f"Failed to authenticate with {s.source_registry_url}")
        source.set_bearer(token.token)
