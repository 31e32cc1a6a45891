"""
Test error mapping and CLI exit code functionality.

Validates that exceptions are correctly mapped to exit codes and that
the run_and_exit wrapper handles errors appropriately for CLI commands.
"""
from __future__ import annotations

import pytest
import typer
from pydantic import BaseModel, ValidationError

from registry_backup.operations.mappers import EXIT_CODES, exit_code_for, run_and_exit
from registry_backup.storage.oci_errors import (
    FatalReplicationError,
    OciAuthError,
    OciDigestMismatch,
    ProtocolError,
    TransportError,
)


def _validation_error() -> ValidationError:
    class Model(BaseModel):
        size: int

    try:
        Model.model_validate({"size": "big"})
    except ValidationError as e:
        return e
    raise AssertionError("validation did not fail")


class TestExitCodeMapping:
    """Test exception to exit code mapping."""

    def test_registry_errors(self):
        """Each error of the taxonomy has its own exit code."""
        assert exit_code_for(FatalReplicationError("boom", "acme/app", "v1")) == 1
        assert exit_code_for(TransportError("down")) == 3
        assert exit_code_for(ProtocolError("garbled")) == 3
        assert exit_code_for(OciDigestMismatch("bad", expected="a", actual="b")) == 3
        assert exit_code_for(OciAuthError("denied")) == 4

    def test_configuration_errors(self):
        assert exit_code_for(ValueError("GITHUB_ORG environment variable is required")) == 2
        assert exit_code_for(_validation_error()) == 2

    def test_unknown_exception_maps_to_fallback(self):
        assert exit_code_for(RuntimeError("test")) == 3
        assert exit_code_for(FileNotFoundError("test")) == 3

    def test_exit_code_completeness(self):
        assert set(EXIT_CODES) == {
            "FatalReplicationError",
            "ValidationError",
            "ValueError",
            "TransportError",
            "ProtocolError",
            "OciDigestMismatch",
            "OciAuthError",
        }


class TestRunAndExit:
    """Test run_and_exit wrapper functionality."""

    def test_successful_function_returns_result(self):
        assert run_and_exit(lambda: "success result") == "success result"

    def test_exception_becomes_typer_exit(self, capsys):
        def failing():
            raise FatalReplicationError("Blob not found in source", "acme/app", "sha256:abc")

        with pytest.raises(typer.Exit) as exc_info:
            run_and_exit(failing)

        assert exc_info.value.exit_code == 1
        assert "Error: Blob not found in source (acme/app@sha256:abc)" in capsys.readouterr().err

    def test_exception_chaining_preserved(self):
        original = OciAuthError("denied")

        def failing():
            raise original

        with pytest.raises(typer.Exit) as exc_info:
            run_and_exit(failing)

        assert exc_info.value.exit_code == 4
        assert exc_info.value.__cause__ is original

    def test_typer_exit_passes_through(self):
        def exiting():
            raise typer.Exit(code=1)

        with pytest.raises(typer.Exit) as exc_info:
            run_and_exit(exiting)

        assert exc_info.value.exit_code == 1
        assert exc_info.value.__cause__ is None
