"""
Human-readable output formatting.

Centralizes all CLI output formatting so commands stay thin.
"""
from __future__ import annotations

import json
from typing import Dict, List

from rich.console import Console
from rich.table import Table

from ..models import ContainerImage, CopyStats, FetchedManifest

_console = Console()


def print_images(images: List[ContainerImage]) -> None:
    """
    Print images and their tags.

    Args:
        images: Images as listed from the package API
    """
    for image in images:
        _console.print(f"[bold]{image.name}[/]")
        for tag in image.tags:
            _console.print(f" - {tag}")
        _console.print()


def print_copy_stats(stats: CopyStats) -> None:
    """
    Print aggregate copy statistics for a run.

    Args:
        stats: Counters from the replication engine
    """
    table = Table(title="Copy statistics")
    table.add_column("Counter", style="cyan")
    table.add_column("Value", justify="right", style="yellow")

    table.add_row("blobs", str(stats.blobs))
    table.add_row("blobs mounted", str(stats.blobs_mounted))
    table.add_row("oci index", str(stats.oci_index))
    table.add_row("oci manifest (root)", str(stats.oci_manifest.root))
    table.add_row("oci manifest (child)", str(stats.oci_manifest.child))
    table.add_row("docker manifest", str(stats.docker_manifest))
    table.add_row("skipped", str(stats.skipped))
    table.add_row("total", str(stats.total))

    _console.print(table)


def print_manifest(fetched: FetchedManifest) -> None:
    """
    Print a manifest's digest, media type and JSON body.

    Args:
        fetched: Manifest as served by the registry
    """
    _console.print(f"[bold]Digest:[/] [dim]{fetched.digest}[/]")
    _console.print(f"[bold]Media type:[/] {fetched.media_type}")
    _console.print_json(fetched.content.decode("utf-8"))


def print_settings(settings: Dict[str, object]) -> None:
    """
    Print effective settings.

    Args:
        settings: Settings with secrets already masked
    """
    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    for name, value in settings.items():
        table.add_row(name, json.dumps(value) if value is not None else "[dim]unset[/]")

    _console.print(table)
