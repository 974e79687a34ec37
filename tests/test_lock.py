import json
import os
import time
from pathlib import Path

import pytest

from git_anchor.errors import SynchronizationFailedError
from git_anchor.lock import (
    _break_stale,
    branch_lock,
    break_lock,
    lock_path,
    read_lock,
)


def test_lock_path_sanitizes_branch(tmp_path: Path) -> None:
    assert lock_path(tmp_path, "release/1.2") == (
        tmp_path / "anchor-locks" / "release--1.2.lock"
    )


def test_acquire_and_release(tmp_path: Path) -> None:
    """Verifies that the lock file exists only while the section is held."""
    path = lock_path(tmp_path, "main")

    with branch_lock(tmp_path, "main", timeout=1, stale_after=60) as record:
        assert path.exists()
        on_disk = read_lock(path)
        assert on_disk == record
        assert record.pid == os.getpid()
        assert record.branch == "main"

    assert not path.exists()


def test_second_holder_times_out(tmp_path: Path) -> None:
    """Verifies that a competing holder waits, then fails with a timeout."""
    with branch_lock(tmp_path, "main", timeout=1, stale_after=60) as first:
        start = time.monotonic()
        with pytest.raises(SynchronizationFailedError) as excinfo:
            with branch_lock(
                tmp_path, "main", timeout=0.2, stale_after=60, poll_interval=0.05
            ):
                pass

        assert time.monotonic() - start >= 0.2
        assert excinfo.value.context["owner"] == first.owner
        assert "Timed out" in str(excinfo.value)


def test_other_branches_are_independent(tmp_path: Path) -> None:
    with branch_lock(tmp_path, "main", timeout=1, stale_after=60):
        with branch_lock(tmp_path, "develop", timeout=0.1, stale_after=60):
            pass


def test_stale_lock_is_broken(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies that an abandoned lock older than the threshold is taken over."""
    path = lock_path(tmp_path, "main")
    path.parent.mkdir(parents=True)
    path.write_text(
        json.dumps(
            {
                "owner": "ghost:1:deadbeef",
                "host": "ghost",
                "pid": 1,
                "branch": "main",
                "acquired_at": time.time() - 3600,
            }
        )
    )

    with branch_lock(tmp_path, "main", timeout=0.2, stale_after=60) as record:
        assert record.owner != "ghost:1:deadbeef"

    assert "Stale lock on main" in caplog.text
    assert "ghost:1:deadbeef" in caplog.text


def test_fresh_unreadable_lock_is_respected(tmp_path: Path) -> None:
    """Verifies that a recent lock without a record still blocks (age from mtime)."""
    path = lock_path(tmp_path, "main")
    path.parent.mkdir(parents=True)
    path.write_text("garbage")

    with pytest.raises(SynchronizationFailedError):
        with branch_lock(
            tmp_path, "main", timeout=0.1, stale_after=60, poll_interval=0.02
        ):
            pass

    assert path.exists()


def test_release_keeps_lock_taken_over_by_another_owner(tmp_path: Path) -> None:
    """Verifies that a holder never removes a lock it no longer owns."""
    path = lock_path(tmp_path, "main")

    with branch_lock(tmp_path, "main", timeout=1, stale_after=60):
        path.write_text(
            json.dumps(
                {
                    "owner": "other:2:cafebabe",
                    "host": "other",
                    "pid": 2,
                    "branch": "main",
                    "acquired_at": time.time(),
                }
            )
        )

    assert read_lock(path).owner == "other:2:cafebabe"


def test_break_lock(tmp_path: Path) -> None:
    path = tmp_path / "x.lock"
    path.write_text("{}")

    assert break_lock(path) is True
    assert break_lock(path) is False
    assert read_lock(path) is None


def test_stale_break_spares_a_lock_taken_in_the_meantime(tmp_path: Path) -> None:
    """Verifies that a waiter never breaks a lock taken after its stale check."""
    path = lock_path(tmp_path, "main")
    path.parent.mkdir(parents=True)
    path.write_text(
        json.dumps(
            {
                "owner": "winner:3:feedface",
                "host": "winner",
                "pid": 3,
                "branch": "main",
                "acquired_at": time.time(),
            }
        )
    )

    assert _break_stale(path, "ghost:1:deadbeef") is False
    assert read_lock(path).owner == "winner:3:feedface"
    assert [p.name for p in path.parent.iterdir()] == [path.name]


def test_stale_break_removes_observed_owner(tmp_path: Path) -> None:
    path = lock_path(tmp_path, "main")
    path.parent.mkdir(parents=True)
    path.write_text("garbage")

    assert _break_stale(path, None) is True
    assert not path.exists()
    assert _break_stale(path, None) is False
