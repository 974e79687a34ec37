"""Structured read-modify-write of the aggregator's tree.

Trees are edited entry by entry, keyed by name, never through text
substitution of `ls-tree` output. A rewrite replaces exactly one gitlink and
hands back every other entry untouched, in its original order, so sibling
subtrees keep their hashes.
"""

import logging
from dataclasses import dataclass

from .constants import APP_NAME, GITLINK_KIND, GITLINK_MODE
from .errors import NotFoundError
from .git_wrapper import GitRepo

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class TreeEntry:
    """A single entry of a git tree.

    Attributes:
        mode (str): The octal mode string (e.g. '100644', '040000', '160000').
        kind (str): The object kind ('blob', 'tree' or 'commit').
        oid (str): The object hash.
        name (str): The entry name within its parent tree.
    """

    mode: str
    kind: str
    oid: str
    name: str

    @property
    def is_gitlink(self) -> bool:
        return self.mode == GITLINK_MODE and self.kind == GITLINK_KIND

    def as_tuple(self) -> tuple[str, str, str, str]:
        return (self.mode, self.kind, self.oid, self.name)


@dataclass(frozen=True)
class TreeSnapshot:
    """An ordered, immutable listing of one tree level."""

    entries: tuple[TreeEntry, ...]

    def get(self, name: str) -> TreeEntry | None:
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None

    def replace(self, name: str, oid: str) -> "TreeSnapshot":
        """Returns a copy where the entry called `name` points at `oid`."""
        return TreeSnapshot(
            tuple(
                TreeEntry(e.mode, e.kind, oid, e.name) if e.name == name else e
                for e in self.entries
            )
        )


@dataclass(frozen=True)
class Rewrite:
    """The result of retargeting one gitlink in a commit's tree.

    Attributes:
        base (TreeSnapshot): The top-level tree as read from the tip.
        result (TreeSnapshot): The top-level tree with the gitlink retargeted.
        path (str): The gitlink path.
        previous_oid (str): The hash the gitlink pinned before the rewrite.
        new_oid (str): The hash the gitlink pins afterwards.
    """

    base: TreeSnapshot
    result: TreeSnapshot
    path: str
    previous_oid: str
    new_oid: str

    @property
    def changed(self) -> bool:
        return self.previous_oid != self.new_oid


def split_path(path: str) -> list[str]:
    """Splits a gitlink path into components, rejecting empty or relative parts."""
    parts = path.strip("/").split("/")
    if any(p in ("", ".", "..") for p in parts):
        raise NotFoundError(f"Invalid submodule path '{path}'", path=path)
    return parts


def read_snapshot(repo: GitRepo, treeish: str) -> TreeSnapshot:
    """Reads one level of a tree (or of a commit's root tree)."""
    return TreeSnapshot(tuple(TreeEntry(*e) for e in repo.ls_tree(treeish)))


def replace_gitlink(
    snapshot: TreeSnapshot, name: str, new_oid: str
) -> tuple[TreeSnapshot, str]:
    """Retargets the gitlink called `name` within a single tree level.

    Args:
        snapshot (TreeSnapshot): The tree level to rewrite.
        name (str): The gitlink's entry name.
        new_oid (str): The commit hash to pin.

    Returns:
        tuple[TreeSnapshot, str]: The rewritten snapshot and the previously pinned hash.

    Raises:
        NotFoundError: If no gitlink with that name exists. One is never created.
    """
    entry = snapshot.get(name)
    if entry is None or not entry.is_gitlink:
        raise NotFoundError(f"No gitlink named '{name}'", path=name)
    return snapshot.replace(name, new_oid), entry.oid


def _rewrite_level(
    repo: GitRepo, treeish: str, parts: list[str], new_oid: str, path: str
) -> tuple[TreeSnapshot, TreeSnapshot, str]:
    snapshot = read_snapshot(repo, treeish)
    head, rest = parts[0], parts[1:]

    if not rest:
        try:
            result, previous = replace_gitlink(snapshot, head, new_oid)
        except NotFoundError:
            raise NotFoundError(
                f"Path '{path}' is not a registered gitlink", path=path
            ) from None
        return snapshot, result, previous

    entry = snapshot.get(head)
    if entry is None or entry.kind != "tree":
        raise NotFoundError(f"Path '{path}' is not a registered gitlink", path=path)

    _, child, previous = _rewrite_level(repo, entry.oid, rest, new_oid, path)
    if previous == new_oid:
        return snapshot, snapshot, previous

    # Intermediate trees are written as unreferenced objects; only the final
    # ref update publishes them.
    child_oid = repo.mktree([e.as_tuple() for e in child.entries])
    return snapshot, snapshot.replace(head, child_oid), previous


def rewrite_gitlink(repo: GitRepo, commit: str, path: str, new_oid: str) -> Rewrite:
    """Computes the top-level tree of `commit` with the gitlink at `path` retargeted.

    Nested paths (e.g. 'libs/backend') are followed through their parent
    trees; each rewritten parent level is stored with `mktree`.

    Args:
        repo (GitRepo): The aggregator repository.
        commit (str): The branch tip whose tree is rewritten.
        path (str): The gitlink path.
        new_oid (str): The commit hash to pin.

    Returns:
        Rewrite: The original and rewritten top-level snapshots.

    Raises:
        NotFoundError: If `path` is not a gitlink in the tip's tree.
    """
    parts = split_path(path)
    base, result, previous = _rewrite_level(repo, commit, parts, new_oid, path)
    logger.debug(f"Rewrote {path}: {previous} -> {new_oid}")
    return Rewrite(
        base=base, result=result, path=path, previous_oid=previous, new_oid=new_oid
    )


def read_gitlink(repo: GitRepo, commit: str, path: str) -> str | None:
    """Returns the hash pinned at `path` in `commit`, or None if absent."""
    try:
        parts = split_path(path)
    except NotFoundError:
        return None

    treeish = commit
    for part in parts[:-1]:
        entry = read_snapshot(repo, treeish).get(part)
        if entry is None or entry.kind != "tree":
            return None
        treeish = entry.oid

    entry = read_snapshot(repo, treeish).get(parts[-1])
    if entry is None or not entry.is_gitlink:
        return None
    return entry.oid
