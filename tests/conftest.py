"""Root pytest configuration for registry-backup tests."""
import pytest

from registry_backup.settings import Settings
from registry_backup.storage.registry_http import RegistryHTTP

from .storage.fakes import FakeRegistry, make_transport

# Import fixtures to make them available
from .fixtures.oci_registry import oci_registry, oci_registry_pair  # noqa: F401

SOURCE_HOST = "source.test"
TARGET_HOST = "target.test"


# Configure pytest markers
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires Docker)"
    )


@pytest.fixture
def anyio_backend():
    """Run async tests on asyncio only."""
    return "asyncio"


# Set up test environment variables
@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    """Automatically set up test environment variables."""
    monkeypatch.setenv("GITHUB_ORG", "acme")
    monkeypatch.setenv("REGISTRY_BACKUP_TARGET", f"https://{TARGET_HOST}")
    monkeypatch.setenv("GITHUB_REGISTRY", f"https://{SOURCE_HOST}")
    for var in ("GITHUB_USERNAME", "GITHUB_TOKEN", "REGISTRY_BACKUP_MAX_COPIES",
                "REGISTRY_BACKUP_CACHE_DIR", "REGISTRY_BACKUP_CHUNKED_THRESHOLD"):
        monkeypatch.delenv(var, raising=False)


# Standardized test fixtures
@pytest.fixture
def settings():
    """Standard test settings."""
    return Settings(
        github_org="acme",
        target_registry_url=f"https://{TARGET_HOST}",
        source_registry_url=f"https://{SOURCE_HOST}",
        http_retry=1,
    )


@pytest.fixture
def source_registry():
    return FakeRegistry(SOURCE_HOST)


@pytest.fixture
def target_registry():
    return FakeRegistry(TARGET_HOST)


@pytest.fixture
def transport(source_registry, target_registry):
    """Mock transport routing to the source and target fakes by host."""
    return make_transport(source_registry, target_registry)


@pytest.fixture
async def source(transport):
    client = RegistryHTTP(f"https://{SOURCE_HOST}", retries=1, transport=transport)
    yield client
    await client.aclose()


@pytest.fixture
async def target(transport):
    client = RegistryHTTP(f"https://{TARGET_HOST}", retries=1, transport=transport)
    yield client
    await client.aclose()
