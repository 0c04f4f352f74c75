from datetime import datetime, timezone
from typing import Callable

from storyforum import (
    Post,
    Reply,
    Section,
    assemble,
    author_statistics,
    reply_count,
    reply_counts_by_post,
    summarise_posts,
)


def _post(identifier: str, author_id: str) -> Post:
    return Post(
        identifier=identifier,
        title=f"Post {identifier}",
        body="Body",
        author_id=author_id,
        author_display_name=author_id.title(),
        section=Section.GENERAL,
        created_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )


def test_reply_count_includes_nested_and_orphaned_replies(
    reply_factory: Callable[..., Reply],
) -> None:
    replies = [
        reply_factory("a", minute=1),
        reply_factory("b", "a", minute=2),
        reply_factory("c", "b", minute=3),
        reply_factory("d", "gone", minute=4),
    ]

    assert reply_count(replies) == 4
    assert reply_count(replies) == assemble(replies).node_count


def test_reply_count_ignores_duplicate_ids(reply_factory: Callable[..., Reply]) -> None:
    replies = [reply_factory("a", minute=1), reply_factory("a", minute=2)]

    assert reply_count(replies) == 1 == assemble(replies).node_count


def test_reply_counts_by_post_groups_replies(
    reply_factory: Callable[..., Reply],
) -> None:
    replies = [
        reply_factory("a", post_id="p1"),
        reply_factory("b", post_id="p1"),
        reply_factory("a", post_id="p2"),
    ]

    assert reply_counts_by_post(replies) == {"p1": 2, "p2": 1}


def test_summarise_posts_defaults_to_zero_replies(
    reply_factory: Callable[..., Reply],
) -> None:
    posts = [_post("p1", "mara"), _post("p2", "niko")]
    summaries = summarise_posts(
        posts, {"p1": [reply_factory("a", post_id="p1")]}
    )

    assert [(s.post.identifier, s.reply_count) for s in summaries] == [
        ("p1", 1),
        ("p2", 0),
    ]


def test_author_statistics_counts_posts_and_replies(
    reply_factory: Callable[..., Reply],
) -> None:
    posts = [_post("p1", "mara"), _post("p2", "niko"), _post("p3", "mara")]
    replies = [
        reply_factory("a", post_id="p1", author_id="mara"),
        reply_factory("b", post_id="p2", author_id="mara"),
        reply_factory("c", post_id="p2", author_id="niko"),
    ]

    stats = author_statistics("mara", posts, replies)

    assert stats.total_posts == 2
    assert stats.total_replies == 2
    assert stats.total_contributions == 4

    empty = author_statistics("nobody", posts, replies)
    assert empty.total_contributions == 0
