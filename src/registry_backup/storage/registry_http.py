"""
Registry HTTP Client for the OCI Distribution API.

Async client bound to one registry base URL. Lookups never raise on HTTP
status: a missing manifest or blob is ``None``/``False`` and callers inspect
the response. Exceptions are reserved for transport failures and for
operations that have no non-exceptional outcome (an upload session that
cannot be started or finished).
"""
from __future__ import annotations

import base64
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, AsyncIterable, Dict, Optional, Tuple, Union

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..models import (
    Catalog,
    Descriptor,
    FetchedManifest,
    TagList,
    compute_digest,
    is_digest,
    parse_manifest,
)
from ..settings import MIN_CHUNK_SIZE
from .oci_errors import OciDigestMismatch, ProtocolError, TransportError
from .oci_media_types import ACCEPTED_MANIFEST_TYPES, OCTET_STREAM

logger = logging.getLogger(__name__)

USER_AGENT = "registry-backup/0.1.0"

BlobBody = Union[bytes, AsyncIterable[bytes]]

_RANGE_RE = re.compile(r"(\d+)-(\d+)\s*$")


@dataclass(frozen=True)
class BasicCredential:
    username: str
    password: str

    def authorization(self) -> str:
        encoded = base64.b64encode(f"{self.username}:{self.password}".encode()).decode()
        return f"Basic {encoded}"


@dataclass(frozen=True)
class BearerCredential:
    token: str

    def authorization(self) -> str:
        return f"Bearer {self.token}"


Credential = Union[BasicCredential, BearerCredential]


class RegistryHTTP:
    """
    HTTP client for OCI Distribution API operations.

    Holds at most one resolved credential. A bearer token wins over basic
    credentials: once a bearer is set, ``set_basic`` leaves it in place.
    """

    def __init__(self, base_url: str, *, timeout: float = 30.0, retries: int = 3,
                 insecure: bool = False, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize registry HTTP client.

        Args:
            base_url: Registry base URL (e.g., "https://ghcr.io", "http://localhost:5001")
            timeout: Read/write timeout in seconds
            retries: Attempts for requests that time out
            insecure: Skip TLS certificate verification
            transport: Custom transport (tests use httpx.MockTransport)
        """
        self.base_url = httpx.URL(base_url.rstrip("/") + "/")
        self.retries = retries
        self._credential: Optional[Credential] = None

        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=5.0, pool=5.0),
            follow_redirects=True,
            verify=not insecure,
            headers={"User-Agent": USER_AGENT},
            transport=transport,
        )

    # Credentials

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    def set_basic(self, username: str, password: str) -> None:
        if isinstance(self._credential, BearerCredential):
            logger.debug(f"Bearer token already set for {self.base_url}, ignoring basic credentials")
            return
        self._credential = BasicCredential(username, password)

    def set_bearer(self, token: str) -> None:
        self._credential = BearerCredential(token)

    # Transport

    def resolve(self, url_or_path: str) -> httpx.URL:
        """
        Resolve a URL or path against the base URL.

        A leading-slash path is rooted at the base URL, so a registry served
        under a path prefix keeps that prefix. Absolute URLs pass through.
        """
        if url_or_path.startswith("/"):
            return self.base_url.join("." + url_or_path)
        return self.base_url.join(url_or_path)

    async def fetch(self, path: Union[str, httpx.URL], *, method: str = "GET",
                    headers: Optional[Dict[str, str]] = None, content: Optional[BlobBody] = None,
                    params: Optional[Dict[str, str]] = None, stream: bool = False) -> httpx.Response:
        """
        Send a request and return the raw response.

        Never raises on HTTP status. With ``stream=True`` the body is not read
        and the caller must close the response.

        Raises:
            TransportError: If the request could not be sent or answered
        """
        url = path if isinstance(path, httpx.URL) else self.resolve(path)
        request_headers = dict(headers or {})
        if self._credential is not None:
            request_headers["Authorization"] = self._credential.authorization()

        request = self.client.build_request(
            method, url, headers=request_headers, content=content, params=params
        )
        logger.debug(f"{method} {request.url}")

        # A streamed request body cannot be replayed
        attempts = self.retries if content is None or isinstance(content, bytes) else 1

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(attempts),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                retry=retry_if_exception_type(httpx.TimeoutException),
                reraise=True,
            ):
                with attempt:
                    response = await self.client.send(request, stream=stream)
        except httpx.RequestError as e:
            raise TransportError(f"{method} {request.url} failed: {e}") from e

        if not response.is_success and response.status_code != 404:
            logger.debug(f"{method} {request.url} -> {response.status_code}")
        return response

    # Listing

    async def catalog(self) -> Optional[Catalog]:
        response = await self.fetch("/v2/_catalog")
        if not response.is_success:
            return None
        return Catalog.model_validate(self._json(response, "catalog"))

    async def list_tags(self, repository: str) -> Optional[TagList]:
        response = await self.fetch(f"/v2/{repository}/tags/list")
        if not response.is_success:
            return None
        return TagList.model_validate(self._json(response, f"tags of {repository}"))

    # Manifests

    async def fetch_manifest(self, repository: str, reference: str, *,
                             method: str = "GET") -> httpx.Response:
        return await self.fetch(
            f"/v2/{repository}/manifests/{reference}",
            method=method,
            headers={"Accept": ", ".join(ACCEPTED_MANIFEST_TYPES)},
        )

    async def get_manifest(self, repository: str, reference: str) -> Optional[FetchedManifest]:
        """
        Fetch and parse a manifest, keeping the exact bytes served.

        Returns:
            The fetched manifest, or None if the registry did not return one

        Raises:
            ProtocolError: If the manifest cannot be parsed
            OciDigestMismatch: If fetched by digest and the bytes hash differently
        """
        response = await self.fetch_manifest(repository, reference)
        if not response.is_success:
            return None

        content = response.content
        if is_digest(reference):
            algorithm = reference.split(":", 1)[0]
            try:
                actual = compute_digest(content, algorithm)
            except ValueError as e:
                raise ProtocolError(str(e)) from e
            if actual != reference:
                raise OciDigestMismatch(
                    f"Manifest {repository}@{reference} hashed to {actual}",
                    expected=reference,
                    actual=actual,
                )

        manifest = parse_manifest(content, response.headers.get("Content-Type"))
        return FetchedManifest(manifest=manifest, content=content, media_type=manifest.media_type)

    async def head_manifest(self, repository: str, reference: str) -> bool:
        response = await self.fetch_manifest(repository, reference, method="HEAD")
        return response.is_success

    async def head_manifest_digest(self, repository: str, reference: str) -> Optional[str]:
        """
        HEAD a manifest and return its Docker-Content-Digest.

        Returns:
            The digest, "" if the manifest exists but no digest header was
            sent, or None if it does not exist
        """
        response = await self.fetch_manifest(repository, reference, method="HEAD")
        if not response.is_success:
            return None
        return response.headers.get("Docker-Content-Digest", "")

    async def put_manifest(self, repository: str, reference: str, media_type: str,
                           body: bytes) -> bool:
        """PUT manifest bytes unchanged so the registry computes the same digest."""
        response = await self.fetch(
            f"/v2/{repository}/manifests/{reference}",
            method="PUT",
            headers={"Content-Type": media_type},
            content=body,
        )
        if not response.is_success:
            logger.warning(
                f"Manifest PUT {repository}:{reference} rejected: "
                f"{response.status_code} {response.text[:200]}"
            )
        return response.is_success

    # Blobs

    async def fetch_blob(self, repository: str, digest: str, *, method: str = "GET",
                         stream: bool = False) -> httpx.Response:
        return await self.fetch(f"/v2/{repository}/blobs/{digest}", method=method, stream=stream)

    async def get_blob(self, repository: str, digest: str) -> Optional[bytes]:
        response = await self.fetch_blob(repository, digest)
        return response.content if response.is_success else None

    async def get_json_blob(self, repository: str, digest: str) -> Optional[Any]:
        response = await self.fetch_blob(repository, digest)
        if not response.is_success:
            return None
        return self._json(response, f"blob {digest}")

    async def head_blob(self, repository: str, digest: str) -> bool:
        response = await self.fetch_blob(repository, digest, method="HEAD")
        return response.is_success

    async def put_blob(self, repository: str, descriptor: Descriptor, body: BlobBody, *,
                       location: Optional[httpx.URL] = None) -> bool:
        """
        Monolithic upload: open a session, then PUT the whole body with its digest.

        ``body`` may be an async byte iterator; it is streamed with the
        descriptor's size as Content-Length. Pass ``location`` to reuse a
        session that is already open (e.g. one a refused mount started).

        Returns:
            True if the registry accepted the blob

        Raises:
            ProtocolError: If the upload session could not be started
        """
        if location is None:
            start = await self.fetch(
                f"/v2/{repository}/blobs/uploads/",
                method="POST",
                headers={"Content-Length": "0"},
            )
            if not start.is_success:
                raise ProtocolError(
                    f"Cannot start upload for {repository}@{descriptor.digest}: {start.status_code}"
                )
            location = self._location(start)

        upload = await self.fetch(
            _with_digest(location, descriptor.digest),
            method="PUT",
            headers={
                "Content-Length": str(descriptor.size),
                "Content-Type": OCTET_STREAM,
            },
            content=body,
        )
        if not upload.is_success:
            logger.warning(
                f"Blob PUT {repository}@{descriptor.digest} rejected: "
                f"{upload.status_code} {upload.text[:200]}"
            )
        return upload.is_success

    async def put_blob_chunked(self, repository: str, descriptor: Descriptor,
                               stream: AsyncIterable[bytes], *,
                               min_chunk_size: int = MIN_CHUNK_SIZE,
                               location: Optional[httpx.URL] = None) -> None:
        """
        Chunked upload for large or streamed blobs.

        Incoming chunks are buffered until at least ``min_chunk_size`` bytes
        are ready, then PATCHed to the current upload location. When the
        registry answers 416 it reports what it has accepted in its Range
        header; the local offset and buffer are resynchronised to that before
        accumulating further. The remainder is sent with the finishing PUT.
        ``location`` reuses an already open session instead of POSTing.

        Raises:
            ProtocolError: If the session cannot be started, a chunk is
                refused, or the upload is not finalised with 201
        """
        if location is None:
            start = await self.fetch(
                f"/v2/{repository}/blobs/uploads/",
                method="POST",
                headers={"Content-Length": "0"},
            )
            if start.status_code != 202:
                raise ProtocolError(
                    f"Failed to start upload for {repository}@{descriptor.digest}: {start.status_code}"
                )
            location = self._location(start)

        offset = 0
        buffer = bytearray()

        async for chunk in stream:
            buffer.extend(chunk)
            if len(buffer) < min_chunk_size:
                continue
            location, offset, buffer = await self._patch_chunk(
                location, offset, buffer, repository, descriptor
            )

        headers = {
            "Content-Length": str(len(buffer)),
            "Content-Type": OCTET_STREAM,
        }
        if buffer:
            headers["Content-Range"] = f"{offset}-{offset + len(buffer) - 1}"

        complete = await self.fetch(
            _with_digest(location, descriptor.digest),
            method="PUT",
            headers=headers,
            content=bytes(buffer),
        )
        if complete.status_code != 201:
            raise ProtocolError(
                f"Failed to finish upload for {repository}@{descriptor.digest}: "
                f"{complete.status_code} {complete.text[:200]}"
            )

    async def _patch_chunk(self, location: httpx.URL, offset: int, buffer: bytearray,
                           repository: str, descriptor: Descriptor) -> Tuple[httpx.URL, int, bytearray]:
        end = offset + len(buffer) - 1
        logger.debug(f"upload {repository}@{descriptor.digest} {offset}-{end} / {descriptor.size}")

        response = await self.fetch(
            location,
            method="PATCH",
            headers={
                "Content-Length": str(len(buffer)),
                "Content-Range": f"{offset}-{end}",
                "Content-Type": OCTET_STREAM,
            },
            content=bytes(buffer),
        )

        if response.status_code == 416:
            accepted = _accepted_length(response.headers.get("Range"))
            logger.debug(
                f"upload {repository}@{descriptor.digest} chunk refused (416), "
                f"registry holds {accepted} bytes"
            )
            if accepted is not None:
                consumed = accepted - offset
                if consumed < 0 or consumed > len(buffer):
                    raise ProtocolError(
                        f"Registry range {accepted} is outside the pending chunk "
                        f"{offset}-{end} for {repository}@{descriptor.digest}"
                    )
                del buffer[:consumed]
                offset = accepted
            return self._location(response, default=location), offset, buffer

        if not response.is_success:
            raise ProtocolError(
                f"Chunk upload failed for {repository}@{descriptor.digest}: "
                f"{response.status_code} {response.text[:200]}"
            )

        return self._location(response, default=location), offset + len(buffer), bytearray()

    async def mount_blob(self, repository: str, descriptor: Descriptor,
                         from_repository: str) -> bool:
        """
        Cross-repository mount within this registry.

        Returns:
            True if the registry mounted the blob (201). A 202 means it
            opened an upload session instead and the blob still has to be sent.
        """
        mounted, _ = await self.mount_or_start(repository, descriptor, from_repository)
        return mounted

    async def mount_or_start(self, repository: str, descriptor: Descriptor,
                             from_repository: str) -> Tuple[bool, Optional[httpx.URL]]:
        """
        Try a cross-repository mount and keep the fallback session.

        Returns:
            (True, None) if the blob was mounted; (False, location) if the
            registry opened an upload session instead, to be passed to
            ``put_blob``/``put_blob_chunked``; (False, None) otherwise
        """
        response = await self.fetch(
            f"/v2/{repository}/blobs/uploads/",
            method="POST",
            params={"mount": descriptor.digest, "from": from_repository},
            headers={"Content-Length": "0"},
        )
        if response.status_code == 201:
            return True, None
        if response.status_code == 202 and response.headers.get("Location"):
            return False, self._location(response)
        return False, None

    # Helpers

    def _location(self, response: httpx.Response,
                  default: Optional[httpx.URL] = None) -> httpx.URL:
        location = response.headers.get("Location")
        if not location:
            if default is not None:
                return default
            raise ProtocolError(
                f"Registry did not return a Location header for {response.request.url}"
            )
        return self.resolve(location)

    def _json(self, response: httpx.Response, what: str) -> Any:
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ProtocolError(f"Invalid JSON in {what}: {e}") from e

    async def aclose(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> RegistryHTTP:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


def _accepted_length(range_header: Optional[str]) -> Optional[int]:
    """
    Number of bytes the registry holds, from a ``Range: 0-<last>`` header.

    Distribution reports an empty session as ``0-0``, which is also what a
    session holding exactly one byte looks like. ``0-0`` is always read as
    empty: a registry that kept only the first byte of a refused PATCH gets
    that byte again, and the finishing PUT then fails its digest check
    (a ProtocolError, never a silently corrupted blob).
    """
    if not range_header:
        return None
    match = _RANGE_RE.search(range_header)
    if not match:
        return None
    last = int(match.group(2))
    return last + 1 if last > 0 else 0


def _with_digest(location: httpx.URL, digest: str) -> httpx.URL:
    """Add ``digest`` to an upload location, keeping the session's own query."""
    return location.copy_merge_params({"digest": digest})


__all__ = [
    "RegistryHTTP",
    "BasicCredential",
    "BearerCredential",
    "Credential",
    "BlobBody",
]
