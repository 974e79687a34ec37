"""Cooperative per-branch lock serializing synchronization attempts.

The lock only keeps concurrent hooks from burning retries against each other.
Lost updates are prevented by the compare-and-swap in `refs.advance_ref`, not
by this file.
"""

import contextlib
import json
import logging
import os
import socket
import time
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterator

from .constants import APP_NAME, LOCK_DIR_NAME
from .errors import SynchronizationFailedError

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class LockRecord:
    """The owner information written into a lock file.

    Attributes:
        owner (str): Unique holder identity ('host:pid:token').
        host (str): Hostname of the holder.
        pid (int): Process ID of the holder.
        branch (str): The aggregator branch being synchronized.
        acquired_at (float): Unix timestamp of acquisition.
    """

    owner: str
    host: str
    pid: int
    branch: str
    acquired_at: float


def lock_path(git_dir: Path, branch: str) -> Path:
    """Returns the lock file used for an aggregator branch."""
    return git_dir / LOCK_DIR_NAME / f"{branch.replace('/', '--')}.lock"


def read_lock(path: Path) -> LockRecord | None:
    """Reads a lock file, returning None if it is missing or unreadable."""
    try:
        data = json.loads(path.read_text())
        return LockRecord(**data)
    except (OSError, ValueError, TypeError) as e:
        logger.debug(f"Failed to read lock {path}: {e}")
        return None


def _lock_age(path: Path) -> float | None:
    record = read_lock(path)
    try:
        started = record.acquired_at if record else path.stat().st_mtime
    except OSError:
        return None  # File vanished (race resolved).
    return time.time() - started


def break_lock(path: Path) -> bool:
    """Removes a lock file regardless of its owner.

    Returns:
        bool: True if a lock was removed.
    """
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False


def _break_stale(path: Path, expected_owner: str | None) -> bool:
    """Removes a stale lock only if it still belongs to `expected_owner`.

    The file is first renamed aside, which at most one waiter can do. If the
    renamed file turns out to be a fresh lock taken in the meantime, it is
    linked back into place.

    Returns:
        bool: True if the stale lock was removed.
    """
    grave = path.with_name(f"{path.name}.{uuid.uuid4().hex[:8]}.stale")
    try:
        os.rename(path, grave)
    except FileNotFoundError:
        return False

    taken = read_lock(grave)
    if (taken.owner if taken else None) != expected_owner:
        with contextlib.suppress(FileExistsError):
            os.link(grave, path)
        grave.unlink()
        return False

    grave.unlink()
    return True


@contextmanager
def branch_lock(
    git_dir: Path,
    branch: str,
    timeout: float,
    stale_after: float,
    poll_interval: float = 0.1,
) -> Iterator[LockRecord]:
    """Holds the critical section for one aggregator branch.

    Args:
        git_dir (Path): The aggregator's git directory.
        branch (str): The aggregator branch name.
        timeout (float): Seconds to wait for a competing holder.
        stale_after (float): Age in seconds after which a lock is considered abandoned.
        poll_interval (float): Seconds between acquisition attempts.

    Yields:
        LockRecord: The record written for this holder.

    Raises:
        SynchronizationFailedError: If the lock could not be acquired in time.
    """
    path = lock_path(git_dir, branch)
    path.parent.mkdir(parents=True, exist_ok=True)

    host = socket.gethostname()
    pid = os.getpid()
    deadline = time.monotonic() + timeout

    while True:
        try:
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            age = _lock_age(path)
            if age is not None and age > stale_after:
                holder = read_lock(path)
                owner = holder.owner if holder else None
                if _break_stale(path, owner):
                    logger.warning(
                        f"Stale lock on {branch} ({age:.0f}s old, "
                        f"owner {owner or 'unknown'}). Broke it."
                    )
                continue
            if time.monotonic() >= deadline:
                holder = read_lock(path)
                raise SynchronizationFailedError(
                    f"Timed out after {timeout:.0f}s waiting for lock on {branch}",
                    branch=branch,
                    owner=holder.owner if holder else None,
                )
            time.sleep(poll_interval)
            continue

        record = LockRecord(
            owner=f"{host}:{pid}:{uuid.uuid4().hex[:8]}",
            host=host,
            pid=pid,
            branch=branch,
            acquired_at=time.time(),
        )
        with os.fdopen(fd, "w") as f:
            json.dump(asdict(record), f)
            f.flush()
            os.fsync(f.fileno())
        break

    logger.debug(f"Acquired lock on {branch} ({record.owner})")
    try:
        yield record
    finally:
        # A stale-lock breaker may have replaced our file; only remove our own.
        current = read_lock(path)
        if current is not None and current.owner == record.owner:
            with contextlib.suppress(FileNotFoundError):
                path.unlink()
        logger.debug(f"Released lock on {branch}")
