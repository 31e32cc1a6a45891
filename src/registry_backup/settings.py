"""
Settings and configuration for registry-backup.

Centralizes configuration values and provides validation with fail-fast behavior.
Loads settings from environment variables at command start.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, fields
from typing import Dict, Optional

__all__ = ["Settings", "create_settings_from_env", "MIN_CHUNK_SIZE"]

# Smallest PATCH body we send during a chunked upload
MIN_CHUNK_SIZE = 1024 * 1024  # 1 MiB

_URL_PATTERN = r"^https?://[a-zA-Z0-9.-]+(?::[0-9]+)?(?:/.*)?$"
_ORG_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9-]*$"


@dataclass(frozen=True)
class Settings:
    """
    Configuration settings for a registry backup run.

    Source (GitHub) Settings:
        github_org: Organization whose container packages are backed up (required)
        github_username: Username for the registry token exchange
        github_token: Token used for the GitHub API and the registry token exchange
        github_api_url: GitHub REST API base URL
        source_registry_url: Source registry base URL

    Target Settings:
        target_registry_url: Registry the images are copied into (required)
        target_insecure: Skip TLS verification for the target

    Transfer Settings:
        http_timeout_s: HTTP request timeout in seconds
        http_retry: Attempts for requests that time out (1 = no retry)
        max_copies: Stop once this many transfers happened (None = no cap)
        chunked_upload_threshold: Blobs at least this large use chunked upload (None = never)
        chunk_size: Minimum PATCH size for chunked uploads
        cache_dir: Directory for the package listing cache (None = no cache)
    """
    github_org: str
    target_registry_url: str
    github_username: Optional[str] = None
    github_token: Optional[str] = None
    github_api_url: str = "https://api.github.com"
    source_registry_url: str = "https://ghcr.io"
    target_insecure: bool = False
    http_timeout_s: float = 30.0
    http_retry: int = 3
    max_copies: Optional[int] = None
    chunked_upload_threshold: Optional[int] = None
    chunk_size: int = MIN_CHUNK_SIZE
    cache_dir: Optional[str] = None

    def __post_init__(self):
        """Validate settings on construction."""
        if not self.github_org:
            raise ValueError("github_org is required")
        if not re.match(_ORG_PATTERN, self.github_org):
            raise ValueError(f"Invalid github_org format: {self.github_org}")

        if not self.target_registry_url:
            raise ValueError("target_registry_url is required")

        for name in ("source_registry_url", "target_registry_url", "github_api_url"):
            value = getattr(self, name)
            if not re.match(_URL_PATTERN, value):
                raise ValueError(f"Invalid {name} format: {value}")

        if self.http_timeout_s <= 0:
            raise ValueError(f"http_timeout_s must be positive, got {self.http_timeout_s}")

        if self.http_retry < 1:
            raise ValueError(f"http_retry must be at least 1, got {self.http_retry}")

        if self.max_copies is not None and self.max_copies <= 0:
            raise ValueError(f"max_copies must be positive, got {self.max_copies}")

        if self.chunk_size < MIN_CHUNK_SIZE:
            raise ValueError(f"chunk_size must be at least {MIN_CHUNK_SIZE}, got {self.chunk_size}")

        if self.chunked_upload_threshold is not None and self.chunked_upload_threshold < 0:
            raise ValueError(
                f"chunked_upload_threshold must be non-negative, got {self.chunked_upload_threshold}"
            )

        # Credentials are used as a pair for the token exchange
        if bool(self.github_username) != bool(self.github_token):
            raise ValueError("github_username and github_token must be set together")

    def redacted(self) -> Dict[str, object]:
        """Settings as a dict with secrets masked, for display."""
        out: Dict[str, object] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "github_token" and value:
                value = "********"
            out[f.name] = value
        return out


def create_settings_from_env() -> Settings:
    """
    Load settings from environment variables.

    Environment Variables:
        Source:
        - GITHUB_ORG (required)
        - GITHUB_USERNAME (optional)
        - GITHUB_TOKEN (optional)
        - GITHUB_API_URL (default: https://api.github.com)
        - GITHUB_REGISTRY (default: https://ghcr.io)

        Target:
        - REGISTRY_BACKUP_TARGET (required)
        - REGISTRY_BACKUP_TARGET_INSECURE (default: false)

        Transfer:
        - REGISTRY_BACKUP_HTTP_TIMEOUT (default: 30.0)
        - REGISTRY_BACKUP_HTTP_RETRY (default: 3)
        - REGISTRY_BACKUP_MAX_COPIES (optional)
        - REGISTRY_BACKUP_CHUNKED_THRESHOLD (optional)
        - REGISTRY_BACKUP_CHUNK_SIZE (default: 1048576)
        - REGISTRY_BACKUP_CACHE_DIR (optional)

    Returns:
        Settings object with validated configuration

    Raises:
        ValueError: If configuration is invalid or required values missing

    Note:
        Creates a fresh Settings instance every time (no caching).
    """
    return _load_settings_impl()


def _load_settings_impl() -> Settings:
    """Internal implementation of settings loading."""
    def str_to_bool(value: str) -> bool:
        return value.lower() in ('true', '1', 'yes', 'on')

    def get_float(key: str, default: float) -> float:
        value = os.getenv(key)
        return float(value) if value else default

    def get_int(key: str, default: Optional[int]) -> Optional[int]:
        value = os.getenv(key)
        return int(value) if value else default

    github_org = os.getenv("GITHUB_ORG")
    target_registry_url = os.getenv("REGISTRY_BACKUP_TARGET")

    if not github_org:
        raise ValueError("GITHUB_ORG environment variable is required")
    if not target_registry_url:
        raise ValueError("REGISTRY_BACKUP_TARGET environment variable is required")

    return Settings(
        github_org=github_org,
        target_registry_url=target_registry_url,
        github_username=os.getenv("GITHUB_USERNAME") or None,
        github_token=os.getenv("GITHUB_TOKEN") or None,
        github_api_url=os.getenv("GITHUB_API_URL", "https://api.github.com"),
        source_registry_url=os.getenv("GITHUB_REGISTRY", "https://ghcr.io"),
        target_insecure=str_to_bool(os.getenv("REGISTRY_BACKUP_TARGET_INSECURE", "false")),
        http_timeout_s=get_float("REGISTRY_BACKUP_HTTP_TIMEOUT", 30.0),
        http_retry=get_int("REGISTRY_BACKUP_HTTP_RETRY", 3),
        max_copies=get_int("REGISTRY_BACKUP_MAX_COPIES", None),
        chunked_upload_threshold=get_int("REGISTRY_BACKUP_CHUNKED_THRESHOLD", None),
        chunk_size=get_int("REGISTRY_BACKUP_CHUNK_SIZE", MIN_CHUNK_SIZE),
        cache_dir=os.getenv("REGISTRY_BACKUP_CACHE_DIR") or None,
    )
