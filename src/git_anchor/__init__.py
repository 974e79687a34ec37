"""Git Anchor: keeps an aggregator repository's gitlinks in step with its dependents.

This package provides the push hook, the operator command-line interface and
the plumbing-level synchronization logic that advances an aggregator
branch's pinned submodule commits without a working-directory checkout.
"""

from . import (
    cli,
    commit,
    config,
    constants,
    errors,
    git_wrapper,
    hook,
    lock,
    notify,
    policy,
    refs,
    sync,
    tree,
)

__all__ = [
    "cli",
    "commit",
    "config",
    "constants",
    "errors",
    "git_wrapper",
    "hook",
    "lock",
    "notify",
    "policy",
    "refs",
    "sync",
    "tree",
]
