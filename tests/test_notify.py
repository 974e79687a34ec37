import json
import logging
from pathlib import Path

import pytest

from git_anchor.notify import (
    JsonLinesNotifier,
    LogNotifier,
    Notifier,
    SyncEvent,
    get_notifier,
)


def test_get_notifier_factory(tmp_path: Path) -> None:
    """Verifies that a journal path selects the JSON-lines notifier."""
    assert type(get_notifier("")) is LogNotifier
    assert type(get_notifier(None)) is LogNotifier

    journal = get_notifier(str(tmp_path / "events.jsonl"))
    assert isinstance(journal, JsonLinesNotifier)
    assert journal.path == tmp_path / "events.jsonl"


def test_base_notifier_discards() -> None:
    Notifier().notify(SyncEvent("backend", "main", None, None, "failed"))


def test_log_notifier_levels(caplog: pytest.LogCaptureFixture) -> None:
    """Verifies that failures are logged as errors and successes as info."""
    caplog.set_level(logging.INFO, logger="git-anchor")
    notifier = LogNotifier()

    notifier.notify(SyncEvent("backend", "main", "a" * 40, "b" * 40, "synced"))
    notifier.notify(
        SyncEvent("backend", "main", "a" * 40, None, "failed", detail="boom")
    )

    synced, failed = caplog.records
    assert synced.levelno == logging.INFO
    assert "EVENT SYNCED backend -> main" in synced.getMessage()
    assert failed.levelno == logging.ERROR
    assert failed.getMessage().endswith("(boom)")


def test_json_lines_notifier_appends(tmp_path: Path) -> None:
    """Verifies that each event becomes one JSON object per line."""
    path = tmp_path / "nested" / "events.jsonl"
    notifier = JsonLinesNotifier(path)

    notifier.notify(
        SyncEvent("backend", "main", "a" * 40, "b" * 40, "synced", timestamp=1.0)
    )
    notifier.notify(
        SyncEvent("frontend", "main", "b" * 40, "b" * 40, "unchanged", timestamp=2.0)
    )

    lines = [json.loads(line) for line in path.read_text().splitlines()]
    assert lines == [
        {
            "branch": "main",
            "detail": "",
            "new_hash": "b" * 40,
            "old_hash": "a" * 40,
            "repo": "backend",
            "status": "synced",
            "timestamp": 1.0,
        },
        {
            "branch": "main",
            "detail": "",
            "new_hash": "b" * 40,
            "old_hash": "b" * 40,
            "repo": "frontend",
            "status": "unchanged",
            "timestamp": 2.0,
        },
    ]
