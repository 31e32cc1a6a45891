"""
Tests for manifest and descriptor models.

Manifest kinds are told apart by media type; anything else is a protocol
error rather than a silently ignored document.
"""
from __future__ import annotations

import hashlib
import json

import pytest
from pydantic import ValidationError

from registry_backup.models import (
    CopyStats,
    Descriptor,
    DockerManifestV2,
    FetchedManifest,
    OciImageIndex,
    OciImageManifest,
    compute_digest,
    is_digest,
    manifest_references,
    parse_manifest,
)
from registry_backup.storage.oci_errors import FatalReplicationError, ProtocolError
from registry_backup.storage.oci_media_types import (
    DOCKER_CONTAINER_CONFIG,
    DOCKER_MANIFEST_V2,
    OCI_IMAGE_CONFIG,
    OCI_IMAGE_INDEX,
    OCI_IMAGE_MANIFEST,
)

D1 = "sha256:" + "1" * 64
D2 = "sha256:" + "2" * 64
D3 = "sha256:" + "3" * 64


def _doc(**fields) -> bytes:
    return json.dumps({"schemaVersion": 2, **fields}).encode()


class TestDigests:

    def test_compute_sha256(self):
        assert compute_digest(b"abc") == "sha256:" + hashlib.sha256(b"abc").hexdigest()

    def test_compute_sha512(self):
        assert compute_digest(b"abc", "sha512") == "sha512:" + hashlib.sha512(b"abc").hexdigest()

    def test_unsupported_algorithm(self):
        with pytest.raises(ValueError, match="Unsupported digest algorithm"):
            compute_digest(b"abc", "md5")

    @pytest.mark.parametrize("reference,expected", [
        ("latest", False),
        ("v1.2.3", False),
        (D1, True),
    ])
    def test_is_digest(self, reference, expected):
        assert is_digest(reference) is expected


class TestDescriptor:

    def test_from_wire_names(self):
        desc = Descriptor.model_validate({"mediaType": OCI_IMAGE_CONFIG, "digest": D1, "size": 7})

        assert desc.media_type == OCI_IMAGE_CONFIG
        assert desc.algorithm == "sha256"

    def test_rejects_malformed_digest(self):
        with pytest.raises(ValidationError):
            Descriptor.model_validate({"mediaType": OCI_IMAGE_CONFIG, "digest": "nohash", "size": 7})

    def test_rejects_negative_size(self):
        with pytest.raises(ValidationError):
            Descriptor.model_validate({"mediaType": OCI_IMAGE_CONFIG, "digest": D1, "size": -1})


class TestParseManifest:

    def test_docker_v2(self):
        manifest = parse_manifest(_doc(
            mediaType=DOCKER_MANIFEST_V2,
            config={"mediaType": DOCKER_CONTAINER_CONFIG, "digest": D1, "size": 10},
            layers=[{"mediaType": "application/vnd.docker.image.rootfs.diff.tar.gzip", "digest": D2, "size": 20}],
        ))

        assert isinstance(manifest, DockerManifestV2)
        assert [d.digest for d in manifest_references(manifest)] == [D1, D2]

    def test_oci_manifest(self):
        manifest = parse_manifest(_doc(
            mediaType=OCI_IMAGE_MANIFEST,
            config={"mediaType": OCI_IMAGE_CONFIG, "digest": D1, "size": 10},
            layers=[
                {"mediaType": "application/vnd.oci.image.layer.v1.tar", "digest": D2, "size": 1},
                {"mediaType": "application/vnd.oci.image.layer.v1.tar", "digest": D3, "size": 2},
            ],
        ))

        assert isinstance(manifest, OciImageManifest)
        assert [d.digest for d in manifest_references(manifest)] == [D1, D2, D3]

    def test_index(self):
        manifest = parse_manifest(_doc(
            mediaType=OCI_IMAGE_INDEX,
            manifests=[
                {"mediaType": OCI_IMAGE_MANIFEST, "digest": D1, "size": 100,
                 "platform": {"architecture": "amd64", "os": "linux"}},
                {"mediaType": OCI_IMAGE_MANIFEST, "digest": D2, "size": 100,
                 "platform": {"architecture": "arm64", "os": "linux", "variant": "v8"}},
            ],
        ))

        assert isinstance(manifest, OciImageIndex)
        assert manifest.manifests[1].platform.variant == "v8"
        assert [d.digest for d in manifest_references(manifest)] == [D1, D2]

    def test_unknown_fields_ignored(self):
        manifest = parse_manifest(_doc(
            mediaType=OCI_IMAGE_MANIFEST,
            layers=[],
            annotations={"org.opencontainers.image.source": "https://github.com/acme/app"},
            artifactType="application/x-something",
        ))

        assert isinstance(manifest, OciImageManifest)
        assert manifest_references(manifest) == []

    def test_content_type_fallback(self):
        manifest = parse_manifest(_doc(layers=[]), "application/vnd.oci.image.manifest.v1+json; charset=utf-8")

        assert isinstance(manifest, OciImageManifest)

    def test_body_media_type_wins(self):
        manifest = parse_manifest(_doc(mediaType=OCI_IMAGE_INDEX, manifests=[]), OCI_IMAGE_MANIFEST)

        assert isinstance(manifest, OciImageIndex)

    @pytest.mark.parametrize("content,content_type", [
        (b"not json", None),
        (b"[1, 2]", None),
        (_doc(layers=[]), None),
        (_doc(mediaType="application/vnd.docker.distribution.manifest.list.v2+json", manifests=[]), None),
        (_doc(mediaType=DOCKER_MANIFEST_V2, layers=[{"digest": D1}]), None),
    ])
    def test_rejected(self, content, content_type):
        with pytest.raises(ProtocolError):
            parse_manifest(content, content_type)


class TestFetchedManifest:

    def test_digest_of_served_bytes(self):
        content = _doc(mediaType=OCI_IMAGE_MANIFEST, layers=[])
        fetched = FetchedManifest(parse_manifest(content), content, OCI_IMAGE_MANIFEST)

        assert fetched.digest == compute_digest(content)


class TestCopyStats:

    def test_as_dict(self):
        stats = CopyStats(blobs=2, docker_manifest=1, total=3)
        stats.oci_manifest.child += 1

        assert stats.as_dict() == {
            "blobs": 2,
            "blobs_mounted": 0,
            "oci_index": 0,
            "oci_manifest": {"root": 0, "child": 1},
            "docker_manifest": 1,
            "skipped": 0,
            "total": 3,
        }

    def test_independent_manifest_counts(self):
        a, b = CopyStats(), CopyStats()
        a.oci_manifest.root += 1

        assert b.oci_manifest.root == 0


class TestFatalReplicationError:

    def test_tag_reference(self):
        err = FatalReplicationError("Manifest not found in source", "acme/app", "v1")

        assert str(err) == "Manifest not found in source (acme/app:v1)"

    def test_digest_reference(self):
        err = FatalReplicationError("Blob not found in source", "acme/app", D1)

        assert str(err) == f"Blob not found in source (acme/app@{D1})"
        assert err.repository == "acme/app"
        assert err.reference == D1
