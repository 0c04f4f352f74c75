"""Build the reply forest for a post from its flat reply collection."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Iterator, Literal, Mapping, Sequence

from .errors import StructuralError
from .models import Reply, ReplyTreeNode

IssueKind = Literal["cycle", "duplicate"]


@dataclass(frozen=True)
class StructuralIssue:
    """Diagnostic describing a structural problem found during assembly."""

    kind: IssueKind
    reply_ids: tuple[str, ...]
    message: str


@dataclass(frozen=True)
class ReplyForest:
    """Result of assembling a flat reply collection.

    ``roots`` holds top-level nodes in chronological order (``created_at`` then
    ``id``); presentation ordering is applied separately. Orphans and replies
    caught in a parent cycle are promoted to the top level so no content is
    hidden.
    """

    roots: tuple[ReplyTreeNode, ...]
    orphan_ids: tuple[str, ...] = ()
    issues: tuple[StructuralIssue, ...] = ()

    @property
    def node_count(self) -> int:
        return sum(1 + root.descendant_count for root in self.roots)

    @property
    def is_consistent(self) -> bool:
        return not self.issues

    def walk(self) -> Iterator[ReplyTreeNode]:
        """Yield every node depth-first, parents before their children."""

        stack = list(reversed(self.roots))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def find(self, reply_id: str) -> ReplyTreeNode | None:
        for node in self.walk():
            if node.identifier == reply_id:
                return node
        return None

    def raise_for_issues(self) -> None:
        if self.issues:
            raise StructuralError(self.issues)


def assemble(replies: Iterable[Reply]) -> ReplyForest:
    """Return the forest described by the ``parent_reply_id`` links in ``replies``.

    The result depends only on the set of replies, not on their input order.
    A parent is only honoured when it belongs to the same post as the child.
    Replies whose parent cannot be resolved become top-level orphans; every
    reply on a parent cycle becomes top-level and is reported as a ``cycle``
    issue instead of being traversed forever.
    """

    arena, issues = _build_arena(replies)

    roots: list[Reply] = []
    orphan_ids: list[str] = []
    children: dict[str, list[Reply]] = defaultdict(list)
    for reply in arena.values():
        parent_id = reply.parent_reply_id
        if parent_id is None:
            roots.append(reply)
            continue
        parent = arena.get(parent_id)
        if parent is None or parent.post_id != reply.post_id:
            roots.append(reply)
            orphan_ids.append(reply.identifier)
            continue
        children[parent_id].append(reply)

    reachable = _collect_reachable(roots, children)
    for reply in sorted(arena.values(), key=_chronological_key):
        if reply.identifier in reachable:
            continue
        cycle = _trace_cycle(reply, arena)
        for member in cycle:
            siblings = children[member.parent_reply_id or ""]
            siblings.remove(member)
            roots.append(member)
        ids = tuple(member.identifier for member in cycle)
        issues.append(
            StructuralIssue(
                kind="cycle",
                reply_ids=ids,
                message=f"Replies {', '.join(ids)} reference each other as parents.",
            )
        )
        reachable |= _collect_reachable(cycle, children)

    for siblings in children.values():
        siblings.sort(key=_chronological_key)
    roots.sort(key=_chronological_key)

    return ReplyForest(
        roots=tuple(_build_node(root, children) for root in roots),
        orphan_ids=tuple(sorted(orphan_ids)),
        issues=tuple(issues),
    )


def _build_arena(
    replies: Iterable[Reply],
) -> tuple[dict[str, Reply], list[StructuralIssue]]:
    arena: dict[str, Reply] = {}
    duplicates: set[str] = set()
    for reply in replies:
        if reply.identifier in arena:
            duplicates.add(reply.identifier)
            continue
        arena[reply.identifier] = reply

    issues = [
        StructuralIssue(
            kind="duplicate",
            reply_ids=(identifier,),
            message=f"Reply '{identifier}' appears more than once; the first copy was kept.",
        )
        for identifier in sorted(duplicates)
    ]
    return arena, issues


def _collect_reachable(
    starts: Sequence[Reply], children: Mapping[str, Sequence[Reply]]
) -> set[str]:
    seen: set[str] = set()
    stack = [reply.identifier for reply in starts]
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        stack.extend(child.identifier for child in children.get(current, ()))
    return seen


def _trace_cycle(start: Reply, arena: Mapping[str, Reply]) -> list[Reply]:
    """Follow parent links from ``start`` and return the cycle it runs into."""

    path: list[Reply] = []
    positions: dict[str, int] = {}
    current: Reply | None = start
    while current is not None and current.identifier not in positions:
        positions[current.identifier] = len(path)
        path.append(current)
        current = arena.get(current.parent_reply_id or "")

    if current is None:
        return path
    cycle = path[positions[current.identifier]:]
    return sorted(cycle, key=_chronological_key)


def _build_node(
    root: Reply, children: Mapping[str, Sequence[Reply]]
) -> ReplyTreeNode:
    # Post-order walk with an explicit stack so deep threads cannot exhaust
    # the interpreter's recursion limit.
    built: dict[str, ReplyTreeNode] = {}
    stack: list[tuple[Reply, int, bool]] = [(root, 0, False)]
    while stack:
        reply, depth, expanded = stack.pop()
        kids = children.get(reply.identifier, ())
        if not expanded:
            stack.append((reply, depth, True))
            stack.extend((kid, depth + 1, False) for kid in reversed(kids))
            continue
        nodes = tuple(built.pop(kid.identifier) for kid in kids)
        built[reply.identifier] = ReplyTreeNode(
            reply=reply,
            depth=depth,
            children=nodes,
            descendant_count=sum(1 + node.descendant_count for node in nodes),
        )
    return built[root.identifier]


def _chronological_key(reply: Reply) -> tuple[datetime, str]:
    return (reply.created_at, reply.identifier)


__all__ = ["ReplyForest", "StructuralIssue", "assemble"]
