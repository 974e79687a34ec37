"""Materializes rewritten trees as new commit objects.

Nothing here reads or moves a ref: objects written by the builder stay
unreferenced until the ref advancer publishes them.
"""

import logging
import time
from dataclasses import dataclass

from .constants import APP_NAME
from .git_wrapper import GitRepo
from .tree import TreeSnapshot

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class Identity:
    """Author and committer identity stamped on synchronization commits."""

    name: str
    email: str


@dataclass(frozen=True)
class BuildResult:
    """The objects written for one synchronization attempt."""

    tree_oid: str
    commit_oid: str


def format_message(
    template: str, *, path: str, oid: str, repo: str, branch: str, previous: str
) -> str:
    """Renders a commit message template.

    Available fields: ``{path}``, ``{oid}``, ``{short}``, ``{repo}``,
    ``{branch}``, ``{previous}`` and ``{previous_short}``.
    """
    message = template.format(
        path=path,
        oid=oid,
        short=oid[:12],
        repo=repo,
        branch=branch,
        previous=previous,
        previous_short=previous[:12],
    )
    return message if message.endswith("\n") else message + "\n"


def build_commit(
    repo: GitRepo,
    snapshot: TreeSnapshot,
    parent: str,
    message: str,
    identity: Identity,
    timestamp: float | None = None,
) -> BuildResult:
    """Writes `snapshot` as a tree and a single-parent commit on top of `parent`.

    Args:
        repo (GitRepo): The aggregator repository.
        snapshot (TreeSnapshot): The rewritten top-level tree.
        parent (str): The tip observed when the attempt began.
        message (str): The commit message.
        identity (Identity): Author and committer.
        timestamp (float | None): Unix time for the commit; defaults to now.

    Returns:
        BuildResult: The new tree and commit hashes.
    """
    tree_oid = repo.mktree([e.as_tuple() for e in snapshot.entries])

    when = f"{int(timestamp if timestamp is not None else time.time())} +0000"
    env = {
        "GIT_AUTHOR_NAME": identity.name,
        "GIT_AUTHOR_EMAIL": identity.email,
        "GIT_AUTHOR_DATE": when,
        "GIT_COMMITTER_NAME": identity.name,
        "GIT_COMMITTER_EMAIL": identity.email,
        "GIT_COMMITTER_DATE": when,
    }
    commit_oid = repo.commit_tree(tree_oid, [parent], message, env=env)
    logger.debug(f"Built commit {commit_oid} (tree {tree_oid}, parent {parent})")
    return BuildResult(tree_oid=tree_oid, commit_oid=commit_oid)
