import random
from typing import Callable

import pytest

from storyforum import Reply, StructuralError, assemble


def _shape(nodes) -> list:
    return [(node.identifier, node.depth, _shape(node.children)) for node in nodes]


def test_nested_replies_form_tree_in_chronological_order(
    reply_factory: Callable[..., Reply],
) -> None:
    replies = [
        reply_factory("c", "a", minute=3),
        reply_factory("a", minute=1),
        reply_factory("b", minute=2),
        reply_factory("d", "c", minute=4),
        reply_factory("e", "a", minute=5),
    ]

    forest = assemble(replies)

    assert _shape(forest.roots) == [
        ("a", 0, [("c", 1, [("d", 2, [])]), ("e", 1, [])]),
        ("b", 0, []),
    ]
    assert forest.node_count == 5
    assert forest.roots[0].descendant_count == 3
    assert forest.orphan_ids == ()
    assert forest.is_consistent


def test_missing_parent_promotes_reply_to_top_level(
    reply_factory: Callable[..., Reply],
) -> None:
    replies = [
        reply_factory("a", minute=1),
        reply_factory("b", "deleted", minute=2),
        reply_factory("c", "b", minute=3),
    ]

    forest = assemble(replies)

    assert _shape(forest.roots) == [
        ("a", 0, []),
        ("b", 0, [("c", 1, [])]),
    ]
    assert forest.orphan_ids == ("b",)
    assert forest.is_consistent


def test_parent_from_another_post_is_not_honoured(
    reply_factory: Callable[..., Reply],
) -> None:
    replies = [
        reply_factory("a", minute=1, post_id="post-2"),
        reply_factory("b", "a", minute=2),
    ]

    forest = assemble(replies)

    assert [node.identifier for node in forest.roots] == ["a", "b"]
    assert forest.orphan_ids == ("b",)


def test_cycle_members_are_promoted_and_reported(
    reply_factory: Callable[..., Reply],
) -> None:
    replies = [
        reply_factory("x", "y", minute=1),
        reply_factory("y", "x", minute=2),
        reply_factory("z", "y", minute=3),
        reply_factory("root", minute=0),
    ]

    forest = assemble(replies)

    assert _shape(forest.roots) == [
        ("root", 0, []),
        ("x", 0, []),
        ("y", 0, [("z", 1, [])]),
    ]
    assert forest.node_count == 4
    assert len(forest.issues) == 1
    issue = forest.issues[0]
    assert issue.kind == "cycle"
    assert issue.reply_ids == ("x", "y")

    with pytest.raises(StructuralError) as excinfo:
        forest.raise_for_issues()
    assert excinfo.value.issues == forest.issues


def test_self_parent_is_reported_as_cycle(reply_factory: Callable[..., Reply]) -> None:
    forest = assemble([reply_factory("loop", "loop", minute=1)])

    assert [node.identifier for node in forest.roots] == ["loop"]
    assert forest.issues[0].reply_ids == ("loop",)


def test_duplicate_ids_keep_first_copy(reply_factory: Callable[..., Reply]) -> None:
    first = reply_factory("a", minute=1, body="original")
    second = reply_factory("a", minute=2, body="copy")

    forest = assemble([first, second])

    assert forest.node_count == 1
    assert forest.roots[0].body == "original"
    assert [issue.kind for issue in forest.issues] == ["duplicate"]


def test_assembly_is_independent_of_input_order(
    reply_factory: Callable[..., Reply],
) -> None:
    replies = [
        reply_factory("a", minute=1),
        reply_factory("b", "a", minute=1),
        reply_factory("c", "a", minute=1),
        reply_factory("d", "missing", minute=1),
        reply_factory("e", "b", minute=2),
        reply_factory("f", minute=0),
    ]
    expected = _shape(assemble(replies).roots)

    shuffler = random.Random(7)
    for _ in range(10):
        shuffled = list(replies)
        shuffler.shuffle(shuffled)
        assert _shape(assemble(shuffled).roots) == expected


def test_equal_timestamps_break_ties_by_identifier(
    reply_factory: Callable[..., Reply],
) -> None:
    forest = assemble(
        [reply_factory("b", minute=1), reply_factory("a", minute=1)]
    )

    assert [node.identifier for node in forest.roots] == ["a", "b"]


def test_deep_chain_does_not_hit_recursion_limit(
    reply_factory: Callable[..., Reply],
) -> None:
    depth = 5000
    replies = [reply_factory("r0", minute=0)]
    replies.extend(
        reply_factory(f"r{index}", f"r{index - 1}", minute=index)
        for index in range(1, depth)
    )

    forest = assemble(replies)

    assert forest.node_count == depth
    assert forest.roots[0].descendant_count == depth - 1
    deepest = forest.find(f"r{depth - 1}")
    assert deepest is not None
    assert deepest.depth == depth - 1


def test_empty_collection_yields_empty_forest() -> None:
    forest = assemble([])

    assert forest.roots == ()
    assert forest.node_count == 0
    assert list(forest.walk()) == []


def test_walk_visits_parents_before_children(
    reply_factory: Callable[..., Reply],
) -> None:
    forest = assemble(
        [
            reply_factory("a", minute=1),
            reply_factory("b", "a", minute=2),
            reply_factory("c", minute=3),
        ]
    )

    assert [node.identifier for node in forest.walk()] == ["a", "b", "c"]
    assert forest.find("missing") is None
