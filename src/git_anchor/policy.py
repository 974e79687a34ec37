"""Eligibility filtering for incoming push events.

The filter is a pure decision function: it never touches a repository and
rejects anything it cannot positively validate.
"""

import re
from dataclasses import dataclass, field

from .constants import DEFAULT_BRANCH_PATTERN, ZERO_OID
from .errors import ValidationError

_OID_RE = re.compile(r"[0-9a-f]{40}")
_SOURCE_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9._/-]*")
_BAD_REF_CHARS = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]")


@dataclass(frozen=True)
class PushEvent:
    """A single updated ref reported by a dependent repository's hook.

    Attributes:
        old (str): The previous commit of the ref.
        new (str): The commit the ref now points at.
        ref (str): The fully qualified ref name (e.g. 'refs/heads/main').
        source (str): The dependent repository's identifier.
    """

    old: str
    new: str
    ref: str
    source: str


@dataclass(frozen=True)
class EligibilityPolicy:
    """Static allow-lists deciding which pushes trigger synchronization.

    Attributes:
        branch_pattern (str): Regex the branch name must fully match.
        repos (tuple[str, ...]): Explicit allow-list of source identifiers.
    """

    branch_pattern: str = DEFAULT_BRANCH_PATTERN
    repos: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Decision:
    """The outcome of evaluating a push event.

    Attributes:
        accepted (bool): Whether synchronization should run.
        reason (str): Why the event was rejected (empty when accepted).
        path (str | None): Gitlink path inside the aggregator.
        new (str | None): The revision to pin.
        branch (str | None): The short branch name that was pushed.
    """

    accepted: bool
    reason: str = ""
    path: str | None = None
    new: str | None = None
    branch: str | None = None


def branch_name(ref: str) -> str | None:
    """Extracts a well-formed branch name from a fully qualified ref.

    Returns:
        str | None: The branch name, or None if `ref` is not a valid branch ref.
    """
    prefix = "refs/heads/"
    if not ref.startswith(prefix):
        return None
    name = ref[len(prefix) :]
    if not name or _BAD_REF_CHARS.search(name):
        return None
    if ".." in name or "@{" in name or "//" in name:
        return None
    if name.startswith(("-", "/", ".")) or name.endswith(("/", ".", ".lock")):
        return None
    if any(part.startswith(".") for part in name.split("/")):
        return None
    return name


def _reject(reason: str) -> Decision:
    return Decision(accepted=False, reason=reason)


def evaluate(
    event: PushEvent, policy: EligibilityPolicy, submodules: dict[str, str]
) -> Decision:
    """Decides whether a push event should advance the aggregator.

    Args:
        event (PushEvent): The pushed ref update.
        policy (EligibilityPolicy): Branch and repository allow-lists.
        submodules (dict[str, str]): Source identifier -> gitlink path mapping.

    Returns:
        Decision: Accepted with the path and revision to pin, or rejected with
                  a reason.
    """
    branch = branch_name(event.ref)
    if branch is None:
        return _reject(f"Malformed branch ref '{event.ref}'")

    try:
        matched = re.fullmatch(policy.branch_pattern, branch) is not None
    except (re.error, TypeError) as e:
        return _reject(f"Invalid branch pattern '{policy.branch_pattern}': {e}")
    if not matched:
        return _reject(f"Branch '{branch}' is not tracked")

    if not _OID_RE.fullmatch(event.old) or not _OID_RE.fullmatch(event.new):
        return _reject(f"Malformed revision in '{event.old} {event.new}'")
    if event.new == ZERO_OID:
        return _reject(f"Branch '{branch}' was deleted")

    source = event.source
    if not source or not _SOURCE_RE.fullmatch(source) or ".." in source:
        return _reject(f"Unparseable repository identifier '{source}'")

    allowed = policy.repos or tuple(submodules)
    if source not in allowed:
        return _reject(f"Repository '{source}' is not allow-listed")

    path = submodules.get(source)
    if not path:
        return _reject(f"Repository '{source}' has no submodule path")

    return Decision(accepted=True, path=path, new=event.new, branch=branch)


def require_eligible(
    event: PushEvent, policy: EligibilityPolicy, submodules: dict[str, str]
) -> Decision:
    """Evaluates an event and raises if it is rejected.

    Raises:
        ValidationError: If the event is not eligible.
    """
    decision = evaluate(event, policy, submodules)
    if not decision.accepted:
        raise ValidationError(decision.reason, repo=event.source, ref=event.ref)
    return decision
