"""Test configuration for the story forum project."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from storyforum import (
    Caller,
    FileDocumentStore,
    ForumRepository,
    ForumSettings,
    InMemoryDocumentStore,
    MutationCoordinator,
    Reply,
    Role,
)

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class SteppingClock:
    """Deterministic clock advancing one second on every reading."""

    def __init__(self, start: datetime = BASE_TIME, step: timedelta | None = None) -> None:
        self._current = start
        self._step = step or timedelta(seconds=1)

    def __call__(self) -> datetime:
        value = self._current
        self._current = value + self._step
        return value


def make_reply(
    identifier: str,
    parent: str | None = None,
    *,
    minute: int = 0,
    post_id: str = "post-1",
    body: str | None = None,
    author_id: str = "user-1",
    author_display_name: str = "Reader",
) -> Reply:
    """Build a reply stamped ``minute`` minutes after :data:`BASE_TIME`."""

    return Reply(
        identifier=identifier,
        post_id=post_id,
        parent_reply_id=parent,
        author_id=author_id,
        author_display_name=author_display_name,
        body=body if body is not None else f"Reply {identifier}",
        created_at=BASE_TIME + timedelta(minutes=minute),
    )


@pytest.fixture()
def reply_factory() -> Callable[..., Reply]:
    """Return :func:`make_reply` so tests can build replies inline."""

    return make_reply


@pytest.fixture()
def file_store(tmp_path: Path) -> FileDocumentStore:
    return FileDocumentStore(tmp_path / "store", clock=SteppingClock())


@pytest.fixture()
def member() -> Caller:
    return Caller.authenticated("member-1", "Mara", Role.MEMBER)


@pytest.fixture()
def other_member() -> Caller:
    return Caller.authenticated("member-2", "Niko", Role.MEMBER)


@pytest.fixture()
def author() -> Caller:
    return Caller.authenticated("author-1", "Iris", Role.AUTHOR)


@pytest.fixture()
def admin() -> Caller:
    return Caller.authenticated("admin-1", "Moderator", Role.ADMIN)


@pytest.fixture()
def anonymous() -> Caller:
    return Caller.anonymous()


@pytest.fixture()
def clock() -> SteppingClock:
    return SteppingClock()


@pytest.fixture()
def store(clock: SteppingClock) -> InMemoryDocumentStore:
    return InMemoryDocumentStore(clock=clock)


@pytest.fixture()
def repository(store: InMemoryDocumentStore) -> ForumRepository:
    return ForumRepository(store)


@pytest.fixture()
def make_coordinator() -> Callable[..., MutationCoordinator]:
    """Factory fixture wiring a coordinator around a given store."""

    def _factory(store: Any = None, **kwargs: Any) -> MutationCoordinator:
        backing = store if store is not None else InMemoryDocumentStore(clock=SteppingClock())
        kwargs.setdefault("settings", ForumSettings())
        return MutationCoordinator(ForumRepository(backing), **kwargs)

    return _factory


@pytest.fixture()
def coordinator(
    store: InMemoryDocumentStore, make_coordinator: Callable[..., MutationCoordinator]
) -> MutationCoordinator:
    return make_coordinator(store)


__all__ = ["BASE_TIME", "SteppingClock", "make_reply"]
