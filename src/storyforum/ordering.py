"""Sort policies and text filtering applied to replies before display."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Iterable, Protocol, Sequence, TypeVar

from .errors import ValidationError
from .models import ReplyTreeNode


class SortPolicy(str, Enum):
    """Chronological orderings offered to readers."""

    NEWEST_FIRST = "newest"
    OLDEST_FIRST = "oldest"

    @classmethod
    def parse(cls, value: "SortPolicy | str") -> "SortPolicy":
        if isinstance(value, SortPolicy):
            return value
        if not isinstance(value, str):
            raise ValidationError("Sort policy must be provided as a string.")
        key = value.strip().casefold().replace("-", "_")
        aliases = {
            "newest": cls.NEWEST_FIRST,
            "newest_first": cls.NEWEST_FIRST,
            "new": cls.NEWEST_FIRST,
            "oldest": cls.OLDEST_FIRST,
            "oldest_first": cls.OLDEST_FIRST,
            "old": cls.OLDEST_FIRST,
        }
        try:
            return aliases[key]
        except KeyError as exc:
            raise ValidationError(
                f"Unknown sort policy '{value}'. Expected 'newest' or 'oldest'."
            ) from exc


class _Sortable(Protocol):
    @property
    def identifier(self) -> str: ...

    @property
    def created_at(self) -> datetime: ...


class _Searchable(Protocol):
    @property
    def body(self) -> str: ...

    @property
    def author_display_name(self) -> str: ...


SortableT = TypeVar("SortableT", bound=_Sortable)
SearchableT = TypeVar("SearchableT", bound=_Searchable)


def order(items: Iterable[SortableT], policy: SortPolicy | str) -> list[SortableT]:
    """Return ``items`` sorted by ``created_at`` under ``policy``.

    Equal timestamps fall back to ``identifier`` ascending under either policy,
    so repeated sorts of the same input always agree. Only the given sequence
    is reordered; the children of tree nodes are left untouched.
    """

    resolved = SortPolicy.parse(policy)
    by_identifier = sorted(items, key=lambda item: item.identifier)
    return sorted(
        by_identifier,
        key=lambda item: item.created_at,
        reverse=resolved is SortPolicy.NEWEST_FIRST,
    )


def order_tree(
    nodes: Sequence[ReplyTreeNode], policy: SortPolicy | str
) -> list[ReplyTreeNode]:
    """Order ``nodes`` and, recursively, every node's children under ``policy``."""

    resolved = SortPolicy.parse(policy)
    roots = order(nodes, resolved)
    # Post-order rebuild with an explicit stack; threads may nest deeply.
    rebuilt: dict[int, ReplyTreeNode] = {}
    stack: list[tuple[ReplyTreeNode, bool]] = [(node, False) for node in roots]
    while stack:
        node, expanded = stack.pop()
        if not node.children:
            rebuilt[id(node)] = node
            continue
        if not expanded:
            stack.append((node, True))
            stack.extend((child, False) for child in node.children)
            continue
        children = tuple(
            rebuilt.pop(id(child)) for child in order(node.children, resolved)
        )
        rebuilt[id(node)] = replace(node, children=children)
    return [rebuilt.pop(id(node)) for node in roots]


def filter_replies(
    items: Iterable[SearchableT], query: str | None
) -> list[SearchableT]:
    """Keep the items whose body or author display name contains ``query``.

    Matching is case-insensitive. A blank or missing query keeps everything.
    Tree nodes are matched on their own reply only: a match deep inside a
    thread does not pull its top-level ancestor into the result.
    """

    needle = (query or "").strip().casefold()
    materialised = list(items)
    if not needle:
        return materialised
    return [
        item
        for item in materialised
        if needle in item.body.casefold()
        or needle in item.author_display_name.casefold()
    ]


__all__ = ["SortPolicy", "filter_replies", "order", "order_tree"]
