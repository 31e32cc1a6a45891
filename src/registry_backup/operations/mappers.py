"""
Error mapping and CLI utilities.

Provides centralized exception-to-exit-code mapping and CLI command wrappers
to ensure consistent error handling across all Typer commands.
"""
from __future__ import annotations

import logging
import typer
from typing import Callable, Any, TypeVar

T = TypeVar('T')

logger = logging.getLogger(__name__)

EXIT_CODES = {
    "FatalReplicationError": 1,
    "ValidationError": 2,
    "ValueError": 2,
    "TransportError": 3,
    "ProtocolError": 3,
    "OciDigestMismatch": 3,
    "OciAuthError": 4,
}


def exit_code_for(exc: BaseException) -> int:
    """
    Map exception to standardized exit code.

    Returns:
    - 0: Success
    - 1: A copy step failed (FatalReplicationError)
    - 2: Invalid configuration or input (ValidationError, ValueError)
    - 3: Registry transport/protocol error, or unknown error
    - 4: Authentication failed (OciAuthError)

    Args:
        exc: Exception to map

    Returns:
        Exit code (3 as fallback for unknown exceptions)
    """
    return EXIT_CODES.get(type(exc).__name__, 3)


def run_and_exit(func: Callable[[], T]) -> T:
    """
    Unified error wrapper for CLI commands.

    Executes the given function and maps any exceptions to appropriate
    exit codes using typer.Exit. This centralizes error handling so
    CLI commands don't need individual try/except blocks.

    Args:
        func: Function to execute

    Returns:
        Function result if successful

    Raises:
        typer.Exit: With appropriate exit code if function raises exception
    """
    try:
        return func()
    except typer.Exit:
        raise
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        logger.debug("Command failed", exc_info=True)
        raise typer.Exit(code=exit_code_for(e)) from e
