"""Publishing of new aggregator commits.

A branch only ever moves through `advance_ref`, which hands git the tip it
expects to replace. A writer that read a stale tip is told so instead of
overwriting a commit it never saw.
"""

import logging

from .constants import APP_NAME
from .errors import ConcurrentUpdateError, NotFoundError, SynchronizationFailedError
from .git_wrapper import GitRepo

logger = logging.getLogger(APP_NAME)


def branch_ref(branch: str) -> str:
    """Returns the fully qualified ref for a branch name."""
    return branch if branch.startswith("refs/") else f"refs/heads/{branch}"


def read_tip(repo: GitRepo, ref: str) -> str:
    """Reads the commit a branch currently points at.

    Raises:
        NotFoundError: If the branch does not exist in the aggregator.
    """
    tip = repo.rev_parse(ref)
    if not tip:
        raise NotFoundError(f"Aggregator branch {ref} does not exist", ref=ref)
    return tip


def advance_ref(
    repo: GitRepo,
    ref: str,
    expected_old: str,
    new_oid: str,
    reason: str = "git-anchor: sync gitlink",
) -> None:
    """Moves `ref` to `new_oid` only if it still points at `expected_old`.

    Git's `update-ref <ref> <new> <old>` performs the compare-and-swap under
    the ref's own lock, so concurrent writers cannot both succeed.

    Args:
        repo (GitRepo): The aggregator repository.
        ref (str): The fully qualified branch ref.
        expected_old (str): The tip observed when the attempt began.
        new_oid (str): The commit to publish.
        reason (str): The reflog message.

    Raises:
        ConcurrentUpdateError: If the branch no longer points at `expected_old`.
        SynchronizationFailedError: If the update failed for any other reason.
    """
    try:
        repo.update_ref(ref, new_oid, expected_old, reason)
    except RuntimeError as e:
        current = repo.rev_parse(ref)
        if current != expected_old:
            raise ConcurrentUpdateError(ref, expected_old, current) from e
        raise SynchronizationFailedError(
            f"Could not update {ref}: {e}", ref=ref, new=new_oid
        ) from e

    logger.debug(f"Advanced {ref}: {expected_old} -> {new_oid}")
