"""
Replication progress events.

The engine reports what it does to an injected observer instead of writing
to the console. ``LoggingObserver`` is the default and forwards events to the
standard logging module; tests record events to assert on ordering.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional, Protocol, runtime_checkable

EventKind = Literal[
    "tag_started",
    "blob_copied",
    "blob_mounted",
    "blob_skipped",
    "manifest_copied",
    "manifest_skipped",
    "cap_reached",
    "run_finished",
]

__all__ = ["EventKind", "ReplicationEvent", "ReplicationObserver", "LoggingObserver", "RecordingObserver"]


@dataclass(frozen=True)
class ReplicationEvent:
    """
    A single step of a replication run.

    ``reference`` is a tag or digest; ``detail`` carries event-specific
    values (the mount source, the final stats).
    """
    kind: EventKind
    repository: Optional[str] = None
    reference: Optional[str] = None
    media_type: Optional[str] = None
    detail: Dict[str, object] = field(default_factory=dict)


@runtime_checkable
class ReplicationObserver(Protocol):
    """Receives events from the replication engine."""

    def on_event(self, event: ReplicationEvent) -> None:
        ...


class LoggingObserver:
    """Forward replication events to a logger."""

    _LEVELS = {
        "tag_started": logging.INFO,
        "cap_reached": logging.WARNING,
        "run_finished": logging.INFO,
    }

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("registry_backup.replicate")

    def on_event(self, event: ReplicationEvent) -> None:
        level = self._LEVELS.get(event.kind, logging.DEBUG)
        if event.repository and event.reference:
            sep = "@" if ":" in event.reference else ":"
            target = f"{event.repository}{sep}{event.reference}"
        else:
            target = ""
        extra = " ".join(f"{k}={v}" for k, v in event.detail.items())
        self.logger.log(level, " ".join(p for p in (event.kind, target, event.media_type or "", extra) if p))


class RecordingObserver:
    """Keep every event in memory."""

    def __init__(self) -> None:
        self.events: List[ReplicationEvent] = []

    def on_event(self, event: ReplicationEvent) -> None:
        self.events.append(event)

    def kinds(self) -> List[str]:
        return [e.kind for e in self.events]
