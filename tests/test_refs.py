from unittest.mock import MagicMock

import pytest

from git_anchor.errors import (
    ConcurrentUpdateError,
    NotFoundError,
    SynchronizationFailedError,
)
from git_anchor.refs import advance_ref, branch_ref, read_tip

OLD = "1" * 40
NEW = "2" * 40
OTHER = "3" * 40


def test_branch_ref() -> None:
    assert branch_ref("main") == "refs/heads/main"
    assert branch_ref("release/1.2") == "refs/heads/release/1.2"
    assert branch_ref("refs/heads/main") == "refs/heads/main"


def test_read_tip_missing_branch() -> None:
    """Verifies that an absent aggregator branch is reported as NotFoundError."""
    repo = MagicMock()
    repo.rev_parse.return_value = None

    with pytest.raises(NotFoundError) as excinfo:
        read_tip(repo, "refs/heads/main")

    assert excinfo.value.context["ref"] == "refs/heads/main"


def test_advance_ref_passes_expected_old() -> None:
    """Verifies that the ref update carries the observed tip for the swap."""
    repo = MagicMock()

    advance_ref(repo, "refs/heads/main", OLD, NEW, reason="sync backend")

    repo.update_ref.assert_called_once_with("refs/heads/main", NEW, OLD, "sync backend")


def test_advance_ref_detects_moved_branch() -> None:
    """Verifies that a lost swap surfaces as ConcurrentUpdateError with both tips."""
    repo = MagicMock()
    repo.update_ref.side_effect = RuntimeError("cannot lock ref")
    repo.rev_parse.return_value = OTHER

    with pytest.raises(ConcurrentUpdateError) as excinfo:
        advance_ref(repo, "refs/heads/main", OLD, NEW)

    err = excinfo.value
    assert err.kind == "concurrent_update"
    assert err.expected == OLD
    assert err.actual == OTHER


def test_advance_ref_other_failure() -> None:
    """Verifies that a failure with an unmoved branch is not mistaken for a race."""
    repo = MagicMock()
    repo.update_ref.side_effect = RuntimeError("disk full")
    repo.rev_parse.return_value = OLD

    with pytest.raises(SynchronizationFailedError, match="disk full"):
        advance_ref(repo, "refs/heads/main", OLD, NEW)
