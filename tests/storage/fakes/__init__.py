# Fake implementations for testing

from .fake_registry import FakeRegistry, image_manifest, make_transport, sha256_digest

__all__ = ["FakeRegistry", "image_manifest", "make_transport", "sha256_digest"]
