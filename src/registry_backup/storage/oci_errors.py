"""
OCI registry error classes.

Provides a clear taxonomy of errors that can occur while talking to a
Distribution registry or replicating between two of them. A 404 on a lookup
is deliberately absent: lookups model "not found" as ``None``/``False``.
"""
from __future__ import annotations


class OciError(Exception):
    """Base class for all registry and replication errors."""
    pass


class TransportError(OciError):
    """
    The request could not be sent or the response could not be received.

    Raised when:
    - Connection refused, DNS failure, TLS failure
    - Timeouts that persisted through all retry attempts
    """
    pass


class ProtocolError(OciError):
    """
    A response was received but is semantically invalid.

    Raised when:
    - An expected header or body is missing (e.g. no Location on upload start)
    - An operation with a single success code got another status
      (upload start requires 202, upload finish requires 201)
    - A manifest has an unrecognised media type or is not valid JSON
    """
    pass


class OciDigestMismatch(ProtocolError):
    """
    Content digest validation failed.

    Raised when bytes fetched by digest do not hash to that digest.
    """

    def __init__(self, message: str, expected: str | None = None, actual: str | None = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class OciAuthError(OciError):
    """
    Authentication error.

    Raised when credentials could not be exchanged for a bearer token.
    """
    pass


class FatalReplicationError(OciError):
    """
    A copy step could not complete and the run has to stop.

    Always attributable to the repository and the reference (tag or digest)
    being copied when the failure happened.
    """

    def __init__(self, message: str, repository: str, reference: str):
        sep = "@" if ":" in reference else ":"
        super().__init__(f"{message} ({repository}{sep}{reference})")
        self.repository = repository
        self.reference = reference


__all__ = [
    "OciError",
    "TransportError",
    "ProtocolError",
    "OciDigestMismatch",
    "OciAuthError",
    "FatalReplicationError",
]
