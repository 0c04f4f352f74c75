"""Derived counts for posts and authors, always recomputed from records."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

from .models import Post, Reply


@dataclass(frozen=True)
class PostSummary:
    """A post paired with the number of replies stored under it."""

    post: Post
    reply_count: int


@dataclass(frozen=True)
class AuthorStatistics:
    """Totals of posts and replies written by a single author."""

    author_id: str
    total_posts: int
    total_replies: int

    @property
    def total_contributions(self) -> int:
        return self.total_posts + self.total_replies


def reply_count(replies: Iterable[Reply]) -> int:
    """Return the number of distinct replies, nested or not.

    This is a flat cardinality and always equals the node count of the forest
    :func:`storyforum.assembly.assemble` builds from the same replies.
    """

    return len({reply.identifier for reply in replies})


def reply_counts_by_post(replies: Iterable[Reply]) -> dict[str, int]:
    seen: set[tuple[str, str]] = set()
    counts: Counter[str] = Counter()
    for reply in replies:
        key = (reply.post_id, reply.identifier)
        if key in seen:
            continue
        seen.add(key)
        counts[reply.post_id] += 1
    return dict(counts)


def summarise_posts(
    posts: Sequence[Post], replies_by_post: Mapping[str, Sequence[Reply]]
) -> list[PostSummary]:
    return [
        PostSummary(post=post, reply_count=reply_count(replies_by_post.get(post.identifier, ())))
        for post in posts
    ]


def author_statistics(
    author_id: str, posts: Iterable[Post], replies: Iterable[Reply]
) -> AuthorStatistics:
    """Count the posts and replies in the given record sets owned by ``author_id``."""

    total_posts = sum(1 for post in posts if post.author_id == author_id)
    total_replies = len(
        {
            (reply.post_id, reply.identifier)
            for reply in replies
            if reply.author_id == author_id
        }
    )
    return AuthorStatistics(
        author_id=author_id,
        total_posts=total_posts,
        total_replies=total_replies,
    )


__all__ = [
    "AuthorStatistics",
    "PostSummary",
    "author_statistics",
    "reply_count",
    "reply_counts_by_post",
    "summarise_posts",
]
