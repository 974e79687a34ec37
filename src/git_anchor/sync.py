"""Synchronization coordinator.

Runs the eligibility filter, then, inside the per-branch critical section,
reads the aggregator tip, rewrites the targeted gitlink, builds a commit and
publishes it with a compare-and-swap. A swap that loses a race restarts from a
fresh tip read, a bounded number of times.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from .commit import Identity, build_commit, format_message
from .config import Config
from .constants import APP_NAME
from .errors import (
    ConcurrentUpdateError,
    NotFoundError,
    SynchronizationFailedError,
)
from .git_wrapper import GitRepo
from .lock import branch_lock
from .notify import Notifier, SyncEvent
from .policy import PushEvent, require_eligible
from .refs import advance_ref, branch_ref, read_tip
from .tree import rewrite_gitlink

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class SyncResult:
    """The outcome of a successful synchronization.

    Attributes:
        repo (str): The dependent repository that pushed.
        branch (str): The aggregator branch.
        path (str): The gitlink path.
        status (str): 'synced' or 'unchanged'.
        old_tip (str): The aggregator tip the final attempt started from.
        new_tip (str): The aggregator tip afterwards.
        tree_oid (str | None): The published tree ('unchanged': None).
        attempts (int): Number of compare-and-swap attempts made.
    """

    repo: str
    branch: str
    path: str
    status: str
    old_tip: str
    new_tip: str
    tree_oid: str | None
    attempts: int


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Exponential delay before retry number `attempt` (1-based)."""
    return min(cap, base * (2 ** (attempt - 1)))


def _emit(notifier: Notifier | None, event: SyncEvent) -> None:
    if notifier is None:
        return
    try:
        notifier.notify(event)
    except Exception as e:
        logger.warning(f"Notifier failed for {event.repo}: {e}")


def synchronize(
    repo: GitRepo,
    event: PushEvent,
    config: Config,
    notifier: Notifier | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> SyncResult:
    """Advances the aggregator's gitlink for `event.source` to `event.new`.

    Args:
        repo (GitRepo): The aggregator repository handle.
        event (PushEvent): The dependent repository's ref update.
        config (Config): The static configuration.
        notifier (Notifier | None): Receives a SyncEvent after the attempt.
        sleep (Callable[[float], None]): Delay function used between retries.

    Returns:
        SyncResult: What was published.

    Raises:
        ValidationError: If the event is not eligible. Nothing is touched.
        NotFoundError: If the aggregator branch or gitlink path does not exist.
        SynchronizationFailedError: If retries are exhausted, the lock times
            out or the object store fails.
    """
    decision = require_eligible(event, config.eligibility(), config.submodules)
    path = decision.path
    new_oid = decision.new
    branch = config.aggregator.branch or decision.branch
    ref = branch_ref(branch)
    settings = config.sync
    identity = Identity(config.commit.author_name, config.commit.author_email)

    observed: str | None = None
    candidate: str | None = None
    try:
        with branch_lock(
            repo.git_dir(), branch, settings.lock_timeout, settings.stale_lock
        ):
            attempts = 0
            while attempts <= settings.max_retries:
                attempts += 1

                observed = read_tip(repo, ref)
                rewrite = rewrite_gitlink(repo, observed, path, new_oid)
                if not rewrite.changed:
                    logger.info(f"UNCHANGED {event.source}: {path} already at {new_oid}")
                    _emit(
                        notifier,
                        SyncEvent(event.source, branch, observed, observed, "unchanged"),
                    )
                    return SyncResult(
                        repo=event.source,
                        branch=branch,
                        path=path,
                        status="unchanged",
                        old_tip=observed,
                        new_tip=observed,
                        tree_oid=None,
                        attempts=attempts,
                    )

                try:
                    message = format_message(
                        config.commit.message,
                        path=path,
                        oid=new_oid,
                        repo=event.source,
                        branch=decision.branch,
                        previous=rewrite.previous_oid,
                    )
                except (KeyError, IndexError, AttributeError, ValueError) as e:
                    raise SynchronizationFailedError(
                        f"Invalid commit message template: {e!r}",
                        repo=event.source,
                        branch=branch,
                        pin=new_oid,
                    ) from e
                built = build_commit(repo, rewrite.result, observed, message, identity)
                candidate = built.commit_oid

                try:
                    advance_ref(
                        repo,
                        ref,
                        observed,
                        candidate,
                        reason=f"git-anchor: {event.source} {path} -> {new_oid[:12]}",
                    )
                except ConcurrentUpdateError as e:
                    if attempts > settings.max_retries:
                        break
                    delay = backoff_delay(
                        attempts, settings.retry_backoff, settings.max_backoff
                    )
                    logger.warning(
                        f"RETRY {event.source}: {ref} moved to {e.actual} "
                        f"(attempt {attempts}, waiting {delay:.2f}s)"
                    )
                    sleep(delay)
                    continue

                logger.info(
                    f"SYNCED {event.source}: {ref} {observed[:12]} -> "
                    f"{candidate[:12]} ({path} @ {new_oid[:12]})"
                )
                _emit(
                    notifier,
                    SyncEvent(event.source, branch, observed, candidate, "synced"),
                )
                return SyncResult(
                    repo=event.source,
                    branch=branch,
                    path=path,
                    status="synced",
                    old_tip=observed,
                    new_tip=candidate,
                    tree_oid=built.tree_oid,
                    attempts=attempts,
                )

            raise SynchronizationFailedError(
                f"Gave up after {attempts} attempts; {ref} kept moving",
                repo=event.source,
                branch=branch,
                expected=observed,
                attempted=candidate,
                pin=new_oid,
            )
    except (NotFoundError, SynchronizationFailedError) as e:
        logger.error(f"FAILED {event.source}: {e}")
        _emit(
            notifier,
            SyncEvent(
                event.source, branch, observed, candidate, "failed", detail=str(e)
            ),
        )
        raise
    except (RuntimeError, OSError) as e:
        failure = SynchronizationFailedError(
            f"Object store failure: {e}",
            repo=event.source,
            branch=branch,
            expected=observed,
            attempted=candidate,
            pin=new_oid,
        )
        logger.error(f"FAILED {event.source}: {failure}")
        _emit(
            notifier,
            SyncEvent(
                event.source,
                branch,
                observed,
                candidate,
                "failed",
                detail=str(failure),
            ),
        )
        raise failure from e
