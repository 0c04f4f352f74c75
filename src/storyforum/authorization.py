"""Role and ownership rules deciding which callers may mutate forum content."""

from __future__ import annotations

from enum import Enum
from typing import Union

from .errors import AuthorizationError
from .models import Caller, Post, Reply, Role, Section

Target = Union[Post, Reply, Section, None]


class Action(str, Enum):
    """Mutations guarded by the authorization policy."""

    CREATE_POST = "create_post"
    DELETE_POST = "delete_post"
    CREATE_REPLY = "create_reply"
    DELETE_REPLY = "delete_reply"

    @property
    def description(self) -> str:
        return self.value.replace("_", " ")


def can_perform(caller: Caller, action: Action, target: Target = None) -> bool:
    """Return whether ``caller`` may perform ``action`` on ``target``.

    ``target`` is the destination :class:`Section` (or the draft :class:`Post`)
    for ``CREATE_POST``, the post being replied to for ``CREATE_REPLY`` and the
    record being removed for the delete actions. Reads need no check.
    """

    if not caller.is_authenticated:
        return False

    if action is Action.CREATE_POST:
        section = target.section if isinstance(target, Post) else target
        if isinstance(section, Section) and section.is_restricted:
            return caller.role is Role.ADMIN
        return True

    if action is Action.CREATE_REPLY:
        return True

    if action in (Action.DELETE_POST, Action.DELETE_REPLY):
        if caller.role is Role.ADMIN:
            return True
        if isinstance(target, (Post, Reply)):
            return target.author_id == caller.identifier
        return False

    return False


def require_permission(caller: Caller, action: Action, target: Target = None) -> None:
    """Raise :class:`AuthorizationError` unless :func:`can_perform` allows it."""

    if can_perform(caller, action, target):
        return

    if not caller.is_authenticated:
        raise AuthorizationError(
            f"Signing in is required to {action.description}.",
            action=action.value,
        )

    if action is Action.CREATE_POST:
        message = (
            f"Caller '{caller.identifier}' does not have permission to post in "
            f"'{Section.ANNOUNCEMENTS.value}'. Required role: {Role.ADMIN.value}."
        )
    else:
        message = (
            f"Caller '{caller.identifier}' does not have permission to "
            f"{action.description} written by someone else. "
            f"Required role: {Role.ADMIN.value} or authorship."
        )

    raise AuthorizationError(message, action=action.value, caller_id=caller.identifier)


__all__ = ["Action", "can_perform", "require_permission"]
