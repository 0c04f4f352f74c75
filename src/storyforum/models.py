"""Data model for forum posts, replies and the callers acting on them."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .errors import ValidationError

DEFAULT_MAX_TITLE_LENGTH = 200
DEFAULT_MAX_BODY_LENGTH = 10_000
DEFAULT_ANONYMOUS_NAME = "Anonymous"


class Role(str, Enum):
    """Permission levels supplied by the identity provider."""

    MEMBER = "member"
    AUTHOR = "author"
    ADMIN = "admin"


class Section(str, Enum):
    """Categories a post can be filed under, in display order."""

    ANNOUNCEMENTS = "announcements"
    GENERAL = "general"
    UPDATES = "updates"
    COMMUNITY = "community"

    @property
    def is_restricted(self) -> bool:
        return self is Section.ANNOUNCEMENTS


@dataclass(frozen=True)
class Caller:
    """The actor attempting an operation.

    Anonymous callers carry neither an identifier nor a role and may only read.
    """

    identifier: str | None
    display_name: str = DEFAULT_ANONYMOUS_NAME
    role: Role | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.identifier is not None

    @property
    def is_admin(self) -> bool:
        return self.is_authenticated and self.role is Role.ADMIN

    @classmethod
    def anonymous(cls) -> "Caller":
        return cls(identifier=None)

    @classmethod
    def authenticated(
        cls,
        identifier: str,
        display_name: str | None = None,
        role: Role | str = Role.MEMBER,
        *,
        anonymous_name: str = DEFAULT_ANONYMOUS_NAME,
    ) -> "Caller":
        """Build a caller from identity provider values, normalising each field."""

        trimmed_id = identifier.strip() if isinstance(identifier, str) else ""
        if not trimmed_id:
            raise ValidationError("Caller identifier must be a non-empty string.")
        return cls(
            identifier=trimmed_id,
            display_name=normalise_display_name(display_name, default=anonymous_name),
            role=parse_role(role),
        )


@dataclass(frozen=True)
class Post:
    """A top-level discussion item stored in the ``posts`` collection."""

    identifier: str
    title: str
    body: str
    author_id: str
    author_display_name: str
    section: Section
    created_at: datetime
    attachment_ref: str | None = None


@dataclass(frozen=True)
class Reply:
    """A comment on a post, optionally nested under another reply."""

    identifier: str
    post_id: str
    parent_reply_id: str | None
    author_id: str
    author_display_name: str
    body: str
    created_at: datetime
    attachment_ref: str | None = None

    @property
    def is_top_level(self) -> bool:
        return self.parent_reply_id is None


@dataclass(frozen=True)
class ReplyTreeNode:
    """A reply placed in the derived forest, with its depth and children."""

    reply: Reply
    depth: int
    children: tuple["ReplyTreeNode", ...] = field(default_factory=tuple)
    descendant_count: int = 0

    @property
    def identifier(self) -> str:
        return self.reply.identifier

    @property
    def created_at(self) -> datetime:
        return self.reply.created_at

    @property
    def body(self) -> str:
        return self.reply.body

    @property
    def author_display_name(self) -> str:
        return self.reply.author_display_name


def parse_role(value: Role | str) -> Role:
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        raise ValidationError("Role must be provided as a string.")
    try:
        return Role(value.strip().casefold())
    except ValueError as exc:
        allowed = ", ".join(role.value for role in Role)
        raise ValidationError(
            f"Unknown role '{value}'. Expected one of: {allowed}."
        ) from exc


def parse_section(value: Section | str) -> Section:
    if isinstance(value, Section):
        return value
    if not isinstance(value, str):
        raise ValidationError("Section must be provided as a string.")
    try:
        return Section(value.strip().casefold())
    except ValueError as exc:
        allowed = ", ".join(section.value for section in Section)
        raise ValidationError(
            f"Unknown section '{value}'. Expected one of: {allowed}."
        ) from exc


def normalise_title(value: Any, *, max_length: int = DEFAULT_MAX_TITLE_LENGTH) -> str:
    return _normalise_required_text(value, label="Post title", max_length=max_length)


def normalise_body(
    value: Any, *, label: str = "Body", max_length: int = DEFAULT_MAX_BODY_LENGTH
) -> str:
    return _normalise_required_text(value, label=label, max_length=max_length)


def normalise_reference(value: Any, *, label: str) -> str | None:
    """Return ``value`` trimmed, or ``None`` when it is absent or blank."""

    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{label} must be a string or null.")
    trimmed = value.strip()
    return trimmed or None


def normalise_display_name(value: Any, *, default: str = DEFAULT_ANONYMOUS_NAME) -> str:
    if value is None:
        return default
    if not isinstance(value, str):
        raise ValidationError("Display name must be a string or null.")
    trimmed = value.strip()
    return trimmed or default


def ensure_timezone(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _normalise_required_text(value: Any, *, label: str, max_length: int) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{label} must be provided as a string.")
    trimmed = value.strip()
    if not trimmed:
        raise ValidationError(f"{label} must be a non-empty string.")
    if len(trimmed) > max_length:
        raise ValidationError(
            f"{label} must be at most {max_length} characters long."
        )
    return trimmed


__all__ = [
    "Caller",
    "DEFAULT_ANONYMOUS_NAME",
    "DEFAULT_MAX_BODY_LENGTH",
    "DEFAULT_MAX_TITLE_LENGTH",
    "Post",
    "Reply",
    "ReplyTreeNode",
    "Role",
    "Section",
    "ensure_timezone",
    "normalise_body",
    "normalise_display_name",
    "normalise_reference",
    "normalise_title",
    "parse_role",
    "parse_section",
]
