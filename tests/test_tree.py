"""Tests for structured gitlink rewrites."""

import hashlib

import pytest

from git_anchor.errors import NotFoundError
from git_anchor.tree import (
    TreeEntry,
    TreeSnapshot,
    read_gitlink,
    replace_gitlink,
    rewrite_gitlink,
    split_path,
)

H0, H1 = "a0" * 20, "a1" * 20
F0 = "b0" * 20
W0, W1 = "c0" * 20, "c1" * 20
BLOB = "d0" * 20
SERVICES = "e0" * 20
DOCS = "e1" * 20


class FakeRepo:
    """In-memory object store answering ls_tree/mktree like GitRepo does."""

    def __init__(self, trees: dict[str, list[tuple[str, str, str, str]]]):
        self.trees = dict(trees)
        self.written: list[str] = []

    def ls_tree(self, treeish: str) -> list[tuple[str, str, str, str]]:
        return list(self.trees[treeish])

    def mktree(self, entries: list[tuple[str, str, str, str]]) -> str:
        oid = hashlib.sha1(repr(entries).encode()).hexdigest()
        self.trees[oid] = list(entries)
        self.written.append(oid)
        return oid


@pytest.fixture
def repo() -> FakeRepo:
    return FakeRepo(
        {
            "C0": [
                ("160000", "commit", H0, "backend"),
                ("100644", "blob", BLOB, "config.yaml"),
                ("040000", "tree", DOCS, "docs"),
                ("160000", "commit", F0, "frontend"),
                ("040000", "tree", SERVICES, "services"),
            ],
            SERVICES: [
                ("100644", "blob", BLOB, "README"),
                ("160000", "commit", W0, "web"),
            ],
            DOCS: [("100644", "blob", BLOB, "index.md")],
        }
    )


def test_rewrite_replaces_only_the_target(repo: FakeRepo) -> None:
    """Verifies that siblings keep their identity, order and hashes."""
    rewrite = rewrite_gitlink(repo, "C0", "backend", H1)

    assert rewrite.changed
    assert rewrite.previous_oid == H0
    assert [e.name for e in rewrite.result.entries] == [
        e.name for e in rewrite.base.entries
    ]
    for before, after in zip(rewrite.base.entries, rewrite.result.entries):
        if before.name == "backend":
            assert after == TreeEntry("160000", "commit", H1, "backend")
        else:
            assert after is before
    assert repo.written == []


def test_rewrite_nested_path_writes_parent_tree(repo: FakeRepo) -> None:
    """Verifies that a nested gitlink rewrites its parent tree and nothing else."""
    rewrite = rewrite_gitlink(repo, "C0", "services/web", W1)

    assert rewrite.previous_oid == W0
    assert len(repo.written) == 1
    new_services = repo.written[0]
    assert rewrite.result.get("services").oid == new_services
    assert repo.trees[new_services] == [
        ("100644", "blob", BLOB, "README"),
        ("160000", "commit", W1, "web"),
    ]
    assert rewrite.result.get("docs") is rewrite.base.get("docs")
    assert rewrite.result.get("backend") is rewrite.base.get("backend")


def test_rewrite_to_same_hash_is_unchanged(repo: FakeRepo) -> None:
    """Verifies that pinning the current hash reports no change and writes nothing."""
    rewrite = rewrite_gitlink(repo, "C0", "services/web", W0)

    assert not rewrite.changed
    assert rewrite.result == rewrite.base
    assert repo.written == []


@pytest.mark.parametrize(
    "path", ["ghost", "config.yaml", "docs", "services/ghost", "config.yaml/x"]
)
def test_missing_gitlink_is_fatal(repo: FakeRepo, path: str) -> None:
    """Verifies that unregistered paths raise NotFoundError and never create entries."""
    with pytest.raises(NotFoundError) as excinfo:
        rewrite_gitlink(repo, "C0", path, H1)

    assert excinfo.value.context["path"] == path
    assert repo.written == []


@pytest.mark.parametrize("path", ["", "a//b", "../backend", "services/./web"])
def test_split_path_rejects_relative_parts(path: str) -> None:
    with pytest.raises(NotFoundError):
        split_path(path)


def test_split_path_strips_slashes() -> None:
    assert split_path("/services/web/") == ["services", "web"]


def test_replace_gitlink_requires_commit_kind() -> None:
    """Verifies that a blob sharing the name is not treated as a gitlink."""
    snapshot = TreeSnapshot((TreeEntry("100644", "blob", BLOB, "backend"),))

    with pytest.raises(NotFoundError):
        replace_gitlink(snapshot, "backend", H1)


def test_read_gitlink(repo: FakeRepo) -> None:
    assert read_gitlink(repo, "C0", "backend") == H0
    assert read_gitlink(repo, "C0", "services/web") == W0
    assert read_gitlink(repo, "C0", "config.yaml") is None
    assert read_gitlink(repo, "C0", "services/ghost") is None
    assert read_gitlink(repo, "C0", "../x") is None
