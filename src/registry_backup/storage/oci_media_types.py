"""
OCI and Docker media types.

Single source of truth for the media types the replication engine recognises.
"""
from __future__ import annotations

# OCI image spec
OCI_IMAGE_INDEX = "application/vnd.oci.image.index.v1+json"
OCI_IMAGE_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_IMAGE_CONFIG = "application/vnd.oci.image.config.v1+json"

# Docker distribution (schema 2)
DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_CONTAINER_CONFIG = "application/vnd.docker.container.image.v1+json"

# Manifest types we send in Accept headers (in order of preference)
ACCEPTED_MANIFEST_TYPES = [
    OCI_IMAGE_INDEX,
    OCI_IMAGE_MANIFEST,
    DOCKER_MANIFEST_V2,
]

# Generic binary payload for blob uploads
OCTET_STREAM = "application/octet-stream"


__all__ = [
    "OCI_IMAGE_INDEX",
    "OCI_IMAGE_MANIFEST",
    "OCI_IMAGE_CONFIG",
    "DOCKER_MANIFEST_V2",
    "DOCKER_CONTAINER_CONFIG",
    "ACCEPTED_MANIFEST_TYPES",
    "OCTET_STREAM",
]
