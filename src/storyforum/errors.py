"""Exception types raised by the discussion engine."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:  # pragma: no cover - import only used for annotations
    from .assembly import StructuralIssue


class ForumError(RuntimeError):
    """Base class for every error surfaced by the discussion engine."""


class ValidationError(ForumError, ValueError):
    """Raised when a required field is blank, oversized or malformed."""


class AuthorizationError(ForumError):
    """Raised when a caller lacks the role or ownership for a mutation."""

    def __init__(
        self,
        message: str,
        *,
        action: str,
        caller_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.action = action
        self.caller_id = caller_id

    @property
    def is_anonymous(self) -> bool:
        return self.caller_id is None


class NotFoundError(ForumError):
    """Raised when an operation targets a post or reply that does not exist."""


class StoreUnavailableError(ForumError):
    """Raised when the store or identity provider fails or answers oddly."""


class StructuralError(ForumError):
    """Raised on request when the reply graph contains cycles or duplicates."""

    def __init__(self, issues: Sequence["StructuralIssue"]) -> None:
        self.issues = tuple(issues)
        summary = "; ".join(issue.message for issue in self.issues)
        super().__init__(f"Reply thread is structurally inconsistent: {summary}")


__all__ = [
    "AuthorizationError",
    "ForumError",
    "NotFoundError",
    "StoreUnavailableError",
    "StructuralError",
    "ValidationError",
]
