"""Reporting of synchronization outcomes.

Every attempt that passes the eligibility filter produces a `SyncEvent`.
Notifiers receive it after the fact; they log it and, when a journal file is
configured, append it as a JSON line.
"""

import json
import logging
import os
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class SyncEvent:
    """A structured report of one synchronization attempt.

    Attributes:
        repo (str): The dependent repository that pushed.
        branch (str): The aggregator branch targeted.
        old_hash (str | None): The aggregator tip before the attempt.
        new_hash (str | None): The aggregator tip after the attempt (or the
                               commit that failed to publish).
        status (str): 'synced', 'unchanged' or 'failed'.
        detail (str): Free-form context, e.g. an error message.
        timestamp (float): Unix time the event was emitted.
    """

    repo: str
    branch: str
    old_hash: str | None
    new_hash: str | None
    status: str
    detail: str = ""
    timestamp: float = field(default_factory=time.time)


class Notifier:
    """Base class for synchronization observers. The default discards events."""

    def notify(self, event: SyncEvent) -> None:
        """Receives an event after a synchronization attempt.

        Args:
            event (SyncEvent): The attempt's outcome.
        """
        pass


class LogNotifier(Notifier):
    """Reports events through the application logger."""

    def notify(self, event: SyncEvent) -> None:
        level = logging.ERROR if event.status == "failed" else logging.INFO
        logger.log(
            level,
            f"EVENT {event.status.upper()} {event.repo} -> {event.branch}: "
            f"{event.old_hash} -> {event.new_hash}"
            + (f" ({event.detail})" if event.detail else ""),
        )


class JsonLinesNotifier(LogNotifier):
    """Logs events and appends them as JSON lines to a journal file."""

    def __init__(self, path: Path):
        self.path = path

    def notify(self, event: SyncEvent) -> None:
        super().notify(event)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(asdict(event), sort_keys=True) + "\n"
        with open(self.path, "a") as f:
            f.write(line)
            f.flush()
            os.fsync(f.fileno())


def get_notifier(events_file: str | None) -> Notifier:
    """Factory function to build the configured notifier.

    Args:
        events_file (str | None): Journal path; empty or None logs only.
    """
    if events_file:
        return JsonLinesNotifier(Path(events_file).expanduser())
    return LogNotifier()
