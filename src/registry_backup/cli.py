"""
registry-backup CLI

Implements 3 CLI verbs with Operations facade integration:
- registry: Back up an organization's container images into a target registry
- inspect: Show a manifest from the source registry
- config: Show the effective configuration
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import typer

from .operations import Operations, OpsConfig, run_and_exit
from .operations.printers import print_copy_stats, print_images, print_manifest, print_settings

app = typer.Typer(name="registry-backup", help="Container registry backup CLI")


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
) -> None:
    """Back up container images between OCI registries."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command()
def registry(
    list_only: bool = typer.Option(False, "--list", help="Only list images and tags"),
    max_copies: Optional[int] = typer.Option(None, "--max-copies", min=1, help="Stop after this many transfers"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Ignore the package listing cache"),
) -> None:
    """Back up all container images of the organization."""

    def _registry() -> None:
        config = OpsConfig(cache=not no_cache, max_copies=max_copies)
        ops = Operations(config)

        images = asyncio.run(ops.list_images())
        if list_only:
            print_images(images)
            return

        try:
            asyncio.run(ops.backup(images))
        finally:
            if ops.last_stats is not None:
                print_copy_stats(ops.last_stats)

    run_and_exit(_registry)


@app.command()
def inspect(
    repository: str = typer.Argument(..., help="Repository, e.g. acme/app"),
    reference: str = typer.Argument("latest", help="Tag or digest"),
) -> None:
    """Show a manifest from the source registry."""

    def _inspect() -> None:
        ops = Operations(OpsConfig())
        fetched = asyncio.run(ops.inspect(repository, reference))
        if fetched is None:
            typer.echo(f"Manifest not found: {repository}:{reference}", err=True)
            raise typer.Exit(code=1)
        print_manifest(fetched)

    run_and_exit(_inspect)


@app.command()
def config() -> None:
    """Show the effective configuration (secrets masked)."""

    def _config() -> None:
        ops = Operations(OpsConfig())
        print_settings(ops.config())

    run_and_exit(_config)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
