"""
Registry token exchange.

Trades basic credentials for a bearer token at the registry's ``/token``
endpoint (the flow ghcr.io uses for package access).
"""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..models import RegistryToken
from .oci_errors import ProtocolError, TransportError
from .registry_http import USER_AGENT, BasicCredential

logger = logging.getLogger(__name__)


async def fetch_registry_token(registry_url: str, username: str, password: str, *,
                               scope: Optional[str] = None, service: Optional[str] = None,
                               client: Optional[httpx.AsyncClient] = None) -> Optional[RegistryToken]:
    """
    Exchange basic credentials for a bearer token.

    Args:
        registry_url: Registry base URL; the token endpoint is ``{registry}/token``
        username: Registry username
        password: Password or personal access token
        scope: Optional scope (e.g. "repository:acme/app:pull")
        service: Optional service name
        client: HTTP client to use (a short-lived one is created otherwise)

    Returns:
        The token, or None if the registry refused the credentials

    Raises:
        TransportError: If the token endpoint could not be reached
        ProtocolError: If a 2xx response does not carry a token
    """
    endpoint = httpx.URL(registry_url.rstrip("/") + "/").join("./token")
    params = {}
    if scope:
        params["scope"] = scope
    if service:
        params["service"] = service

    headers = {
        "Authorization": BasicCredential(username, password).authorization(),
        "User-Agent": USER_AGENT,
    }

    owns_client = client is None
    http = client or httpx.AsyncClient(follow_redirects=True)
    try:
        response = await http.get(endpoint, headers=headers, params=params or None)
    except httpx.RequestError as e:
        raise TransportError(f"Token request to {endpoint} failed: {e}") from e
    finally:
        if owns_client:
            await http.aclose()

    if not response.is_success:
        logger.warning(f"Token exchange with {endpoint} refused: {response.status_code}")
        return None

    try:
        return RegistryToken.model_validate(response.json())
    except ValueError as e:
        raise ProtocolError(f"Invalid token response from {endpoint}: {e}") from e


__all__ = ["fetch_registry_token"]
