"""
Registry replication engine.

Copies images tag by tag from a source registry to a target registry. For
every tag the manifest graph is walked (index -> child manifests -> config and
layers) and each node is copied only if the target does not already have it,
so a rerun after a failure or an interrupted run picks up where it stopped.

Everything referenced by a manifest is confirmed present on the target before
that manifest is written; the top-level manifest is always written last.
"""
from __future__ import annotations

from typing import AsyncIterable, Dict, Iterable, Optional

import httpx

from .events import LoggingObserver, ReplicationEvent, ReplicationObserver
from .models import (
    ContainerImage,
    CopyStats,
    Descriptor,
    DockerManifestV2,
    FetchedManifest,
    OciImageIndex,
    OciImageManifest,
    is_digest,
    manifest_references,
)
from .settings import MIN_CHUNK_SIZE
from .storage.oci_errors import FatalReplicationError, ProtocolError
from .storage.registry_http import RegistryHTTP

__all__ = ["Replicator"]


class Replicator:
    """
    Replicate images between two registries.

    Design Notes: Idempotent copies

    Every blob and manifest goes through an existence check on the target
    first. Content that is present is skipped without touching the source.
    There is no rollback: a failure leaves whatever was already copied in
    place, and rerunning is the recovery path.

    Blobs are sent with a monolithic streamed upload. Blobs whose size
    reaches ``chunked_upload_threshold`` use the chunked upload instead.
    When a blob was already uploaded to another repository of the target
    during this run, a cross-repository mount is tried before uploading; if
    the registry opens an upload session instead, the blob is sent into it.
    """

    def __init__(self, source: RegistryHTTP, target: RegistryHTTP, *,
                 observer: Optional[ReplicationObserver] = None,
                 max_copies: Optional[int] = None,
                 chunked_upload_threshold: Optional[int] = None,
                 chunk_size: int = MIN_CHUNK_SIZE):
        """
        Args:
            source: Client for the registry images are read from
            target: Client for the registry images are written to
            observer: Receives progress events (defaults to logging)
            max_copies: Stop before the next tag once this many transfers happened
            chunked_upload_threshold: Minimum blob size for chunked upload (None = never)
            chunk_size: Minimum PATCH size for chunked uploads
        """
        self.source = source
        self.target = target
        self.observer = observer or LoggingObserver()
        self.max_copies = max_copies
        self.chunked_upload_threshold = chunked_upload_threshold
        self.chunk_size = chunk_size
        self.stats = CopyStats()
        # digest -> first target repository it was uploaded to in this run
        self._uploaded: Dict[str, str] = {}

    async def replicate(self, images: Iterable[ContainerImage]) -> CopyStats:
        """
        Replicate every tag of every image, in order.

        The final stats are reported to the observer whether the run
        completes, stops at the safety cap, or fails.

        Raises:
            FatalReplicationError: If a copy step cannot complete
            TransportError: If a registry cannot be reached
        """
        try:
            for image in images:
                for tag in image.tags:
                    if self._cap_reached():
                        self._emit(ReplicationEvent(
                            "cap_reached",
                            repository=image.name,
                            reference=tag,
                            detail={"total": self.stats.total, "max_copies": self.max_copies},
                        ))
                        return self.stats
                    await self.replicate_tag(image.name, tag)
            return self.stats
        finally:
            self._emit(ReplicationEvent("run_finished", detail=self.stats.as_dict()))

    async def replicate_tag(self, repository: str, tag: str) -> None:
        """Copy one tag and everything it references."""
        self._emit(ReplicationEvent("tag_started", repository=repository, reference=tag))

        fetched = await self._source_manifest(repository, tag, "Manifest not found in source")
        await self._copy_references(repository, fetched)
        await self.copy_manifest(repository, tag, fetched, root=True)

    async def _source_manifest(self, repository: str, reference: str,
                               missing: str) -> FetchedManifest:
        try:
            fetched = await self.source.get_manifest(repository, reference)
        except ProtocolError as e:
            raise FatalReplicationError(str(e), repository, reference) from e
        if fetched is None:
            raise FatalReplicationError(missing, repository, reference)
        return fetched

    async def _copy_references(self, repository: str, fetched: FetchedManifest) -> None:
        manifest = fetched.manifest
        if isinstance(manifest, OciImageIndex):
            for child_desc in manifest.manifests:
                child = await self._source_manifest(
                    repository, child_desc.digest, "Child manifest not found in source"
                )
                await self._copy_references(repository, child)
                await self.copy_manifest(repository, child_desc.digest, child, root=False)
            return

        for desc in manifest_references(manifest):
            await self.copy_blob(repository, desc)

    async def copy_manifest(self, repository: str, reference: str, fetched: FetchedManifest, *,
                            root: bool) -> bool:
        """
        Write a manifest to the target unless it is already there.

        Digest references are immutable, so presence is enough. A tag is
        only considered present if it still points at the same digest as on
        the source; a moved tag is rewritten.

        Returns:
            True if the manifest was written, False if it was skipped
        """
        if await self._manifest_present(repository, reference, fetched):
            self.stats.skipped += 1
            self._emit(ReplicationEvent(
                "manifest_skipped", repository=repository, reference=reference,
                media_type=fetched.media_type,
            ))
            return False

        ok = await self.target.put_manifest(repository, reference, fetched.media_type, fetched.content)
        if not ok:
            raise FatalReplicationError("Target rejected manifest", repository, reference)

        self._count_manifest(fetched, root)
        self.stats.total += 1
        self._emit(ReplicationEvent(
            "manifest_copied", repository=repository, reference=reference,
            media_type=fetched.media_type,
        ))
        return True

    async def _manifest_present(self, repository: str, reference: str,
                                fetched: FetchedManifest) -> bool:
        if is_digest(reference):
            return await self.target.head_manifest(repository, reference)
        current = await self.target.head_manifest_digest(repository, reference)
        if current is None:
            return False
        # Registries that omit Docker-Content-Digest are trusted on presence alone
        return current == "" or current == fetched.digest

    async def copy_blob(self, repository: str, desc: Descriptor) -> bool:
        """
        Copy a blob to the target unless it is already there.

        Returns:
            True if the blob was uploaded or mounted, False if it was skipped
        """
        if await self.target.head_blob(repository, desc.digest):
            self.stats.skipped += 1
            self._emit(ReplicationEvent(
                "blob_skipped", repository=repository, reference=desc.digest,
                media_type=desc.media_type,
            ))
            return False

        # A refused mount may leave an open upload session to send the blob into
        session = None
        mounted_from = self._uploaded.get(desc.digest)
        if mounted_from is not None and mounted_from != repository:
            mounted, session = await self.target.mount_or_start(repository, desc, mounted_from)
            if mounted:
                self.stats.blobs_mounted += 1
                self.stats.total += 1
                self._emit(ReplicationEvent(
                    "blob_mounted", repository=repository, reference=desc.digest,
                    media_type=desc.media_type, detail={"from": mounted_from},
                ))
                return True

        response = await self.source.fetch_blob(repository, desc.digest, stream=True)
        try:
            if not response.is_success:
                raise FatalReplicationError("Blob not found in source", repository, desc.digest)
            await self._upload(repository, desc, response.aiter_bytes(), session)
        finally:
            await response.aclose()

        self._uploaded.setdefault(desc.digest, repository)
        self.stats.blobs += 1
        self.stats.total += 1
        self._emit(ReplicationEvent(
            "blob_copied", repository=repository, reference=desc.digest,
            media_type=desc.media_type, detail={"size": desc.size},
        ))
        return True

    async def _upload(self, repository: str, desc: Descriptor, body: AsyncIterable[bytes],
                      session: Optional[httpx.URL] = None) -> None:
        try:
            if self.chunked_upload_threshold is not None and desc.size >= self.chunked_upload_threshold:
                await self.target.put_blob_chunked(
                    repository, desc, body, min_chunk_size=self.chunk_size, location=session
                )
                return
            ok = await self.target.put_blob(repository, desc, body, location=session)
        except ProtocolError as e:
            raise FatalReplicationError(f"Upload failed: {e}", repository, desc.digest) from e
        if not ok:
            raise FatalReplicationError("Target rejected blob", repository, desc.digest)

    def _count_manifest(self, fetched: FetchedManifest, root: bool) -> None:
        manifest = fetched.manifest
        if isinstance(manifest, OciImageIndex):
            self.stats.oci_index += 1
        elif isinstance(manifest, OciImageManifest):
            if root:
                self.stats.oci_manifest.root += 1
            else:
                self.stats.oci_manifest.child += 1
        elif isinstance(manifest, DockerManifestV2):
            self.stats.docker_manifest += 1

    def _cap_reached(self) -> bool:
        return self.max_copies is not None and self.stats.total >= self.max_copies

    def _emit(self, event: ReplicationEvent) -> None:
        self.observer.on_event(event)
