"""Error taxonomy for synchronization attempts.

Every failure raised by Git Anchor carries an explicit ``kind`` and the
context (repository, branch, hashes) an operator needs to retry by hand.
"""

from typing import Any


class AnchorError(Exception):
    """Base class for all Git Anchor errors.

    Attributes:
        kind (str): A stable, machine-readable error category.
        context (dict[str, Any]): Details about the failed attempt.
    """

    kind = "error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(
            f"{k}={v}" for k, v in self.context.items() if v is not None
        )
        return f"{self.message} ({details})" if details else self.message


class ValidationError(AnchorError):
    """The push event is not eligible (branch, repo or revision rejected)."""

    kind = "validation"


class NotFoundError(AnchorError):
    """A required path, branch or file does not exist."""

    kind = "not_found"


class ParseError(AnchorError):
    """A configuration document or hook input line is malformed."""

    kind = "parse"


class ConcurrentUpdateError(AnchorError):
    """The branch moved between reading its tip and the compare-and-swap."""

    kind = "concurrent_update"

    def __init__(self, ref: str, expected: str, actual: str | None):
        super().__init__(
            f"Ref {ref} moved during update", ref=ref, expected=expected, actual=actual
        )
        self.ref = ref
        self.expected = expected
        self.actual = actual


class SynchronizationFailedError(AnchorError):
    """The attempt could not complete: retries exhausted, lock timeout or git failure."""

    kind = "synchronization_failed"
