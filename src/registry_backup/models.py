"""
Data models for registry replication.

These Pydantic models describe the documents exchanged with a Distribution
registry: content descriptors, the three manifest kinds we replicate, and the
small JSON payloads returned by the catalog, tag and token endpoints.

Manifests are parsed only to discover what they reference. The bytes that get
copied are always the bytes received from the source registry; a parsed model
is never serialized back onto the wire.
"""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .storage.oci_errors import ProtocolError

# algorithm:encoded, per the OCI image spec digest grammar
DIGEST_PATTERN = r"^[a-z0-9]+(?:[+._-][a-z0-9]+)*:[a-zA-Z0-9=_-]+$"

_HASHES = {
    "sha256": hashlib.sha256,
    "sha512": hashlib.sha512,
}


def is_digest(reference: str) -> bool:
    """Return True if a manifest reference is a digest rather than a tag."""
    return ":" in reference


def compute_digest(content: bytes, algorithm: str = "sha256") -> str:
    """
    Compute a content digest in ``algorithm:hex`` form.

    Raises:
        ValueError: If the algorithm is not supported
    """
    try:
        hasher = _HASHES[algorithm]
    except KeyError:
        raise ValueError(f"Unsupported digest algorithm: {algorithm}")
    return f"{algorithm}:{hasher(content).hexdigest()}"


class _OciModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class Descriptor(_OciModel):
    """Reference to addressable content: digest + size + media type."""
    media_type: str = Field(..., alias="mediaType", description="Media type of the referenced content")
    digest: str = Field(..., pattern=DIGEST_PATTERN, description="Content digest (sha256:...)")
    size: int = Field(..., ge=0, description="Content size in bytes")
    annotations: Optional[Dict[str, str]] = Field(default=None)

    @property
    def algorithm(self) -> str:
        return self.digest.split(":", 1)[0]


class Platform(_OciModel):
    architecture: str
    os: str
    variant: Optional[str] = None
    os_version: Optional[str] = Field(default=None, alias="os.version")


class PlatformDescriptor(Descriptor):
    """A manifest entry inside an image index."""
    platform: Optional[Platform] = None


class OciImageIndex(_OciModel):
    """
    Index of per-platform manifests.

    https://specs.opencontainers.org/image-spec/image-index/?v=v1.0.1
    """
    media_type: Literal["application/vnd.oci.image.index.v1+json"] = Field(..., alias="mediaType")
    schema_version: int = Field(default=2, alias="schemaVersion")
    manifests: List[PlatformDescriptor] = Field(default_factory=list)


class OciImageManifest(_OciModel):
    """
    Config and layers of a single image.

    https://specs.opencontainers.org/image-spec/manifest/?v=v1.0.1
    """
    media_type: Literal["application/vnd.oci.image.manifest.v1+json"] = Field(..., alias="mediaType")
    schema_version: int = Field(default=2, alias="schemaVersion")
    config: Optional[Descriptor] = None
    layers: List[Descriptor] = Field(default_factory=list)


class DockerManifestV2(_OciModel):
    """Docker schema 2 manifest; the config blob lists the image's layers."""
    media_type: Literal["application/vnd.docker.distribution.manifest.v2+json"] = Field(..., alias="mediaType")
    schema_version: int = Field(default=2, alias="schemaVersion")
    config: Optional[Descriptor] = None
    layers: List[Descriptor] = Field(default_factory=list)


Manifest = Annotated[
    Union[OciImageIndex, OciImageManifest, DockerManifestV2],
    Field(discriminator="media_type"),
]

ImageManifest = Union[OciImageManifest, DockerManifestV2]

_MANIFEST_ADAPTER: TypeAdapter[Manifest] = TypeAdapter(Manifest)


def parse_manifest(content: bytes, content_type: Optional[str] = None) -> Manifest:
    """
    Parse raw manifest bytes into one of the three supported manifest kinds.

    OCI manifests may omit ``mediaType``; in that case the response
    Content-Type decides the kind.

    Raises:
        ProtocolError: If the bytes are not JSON or the media type is unsupported
    """
    try:
        data = json.loads(content)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Invalid JSON in manifest: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError("Manifest is not a JSON object")

    if "mediaType" not in data and content_type:
        data["mediaType"] = content_type.split(";", 1)[0].strip()

    try:
        return _MANIFEST_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise ProtocolError(
            f"Unsupported or malformed manifest (mediaType={data.get('mediaType')!r}): {e}"
        ) from e


def manifest_references(manifest: Manifest) -> List[Descriptor]:
    """Descriptors a manifest points at, in the order they must exist on the target."""
    if isinstance(manifest, OciImageIndex):
        return list(manifest.manifests)
    refs: List[Descriptor] = []
    if manifest.config is not None:
        refs.append(manifest.config)
    refs.extend(manifest.layers)
    return refs


@dataclass(frozen=True)
class FetchedManifest:
    """
    A manifest as received from a registry.

    ``content`` holds the exact bytes that were served and is what gets PUT to
    the target, so the target computes the same digest.
    """
    manifest: Manifest
    content: bytes
    media_type: str

    @property
    def digest(self) -> str:
        return compute_digest(self.content)


class ContainerImage(BaseModel):
    """A repository and the tags to replicate from it."""
    name: str = Field(..., description="Repository, e.g. 'acme/app'")
    tags: List[str] = Field(default_factory=list)


class Catalog(BaseModel):
    repositories: List[str] = Field(default_factory=list)


class TagList(BaseModel):
    name: str
    tags: Optional[List[str]] = None


class RegistryToken(BaseModel):
    token: str
    expires_in: Optional[int] = None


@dataclass
class ManifestCounts:
    root: int = 0
    child: int = 0


@dataclass
class CopyStats:
    """
    Counters for one replication run.

    Only transfers are counted; content that already existed on the target
    increments ``skipped`` and nothing else. ``total`` counts every transfer
    (blob uploads, mounts and manifest writes).
    """
    blobs: int = 0
    blobs_mounted: int = 0
    oci_index: int = 0
    oci_manifest: ManifestCounts = field(default_factory=ManifestCounts)
    docker_manifest: int = 0
    skipped: int = 0
    total: int = 0

    def as_dict(self) -> Dict[str, object]:
        return {
            "blobs": self.blobs,
            "blobs_mounted": self.blobs_mounted,
            "oci_index": self.oci_index,
            "oci_manifest": {"root": self.oci_manifest.root, "child": self.oci_manifest.child},
            "docker_manifest": self.docker_manifest,
            "skipped": self.skipped,
            "total": self.total,
        }


__all__ = [
    "DIGEST_PATTERN",
    "is_digest",
    "compute_digest",
    "Descriptor",
    "Platform",
    "PlatformDescriptor",
    "OciImageIndex",
    "OciImageManifest",
    "DockerManifestV2",
    "Manifest",
    "ImageManifest",
    "parse_manifest",
    "manifest_references",
    "FetchedManifest",
    "ContainerImage",
    "Catalog",
    "TagList",
    "RegistryToken",
    "ManifestCounts",
    "CopyStats",
]
