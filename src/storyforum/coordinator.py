"""Authorised, optimistic mutations of posts and replies.

The coordinator keeps a local view of every post it has touched. Each
mutation is applied to that view straight away under its own pending
operation token, written to the store, and then either reconciled with the
record the store confirms or rolled back. Tokens keep concurrent mutations
on the same post from undoing one another's local changes.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from .aggregates import (
    AuthorStatistics,
    PostSummary,
    author_statistics,
    reply_count,
    summarise_posts,
)
from .assembly import ReplyForest, StructuralIssue, assemble
from .authorization import Action, require_permission
from .errors import ForumError, NotFoundError, StoreUnavailableError, ValidationError
from .identity import IdentityProvider, StaticIdentityProvider
from .models import (
    Caller,
    Post,
    Reply,
    ReplyTreeNode,
    Section,
    normalise_body,
    normalise_reference,
    normalise_title,
    parse_section,
)
from .ordering import SortPolicy, filter_replies, order, order_tree
from .repository import ForumRepository
from .settings import ForumSettings
from .store import DocumentStore, FileDocumentStore, InMemoryDocumentStore

logger = logging.getLogger(__name__)

_PROVISIONAL_PREFIX = "pending-"


class PostViewState(str, Enum):
    """Consistency of a local post view with the store."""

    CLEAN = "clean"
    PENDING_WRITE = "pending_write"
    REVERTED = "reverted"


class MutationKind(str, Enum):
    CREATE_POST = "create_post"
    DELETE_POST = "delete_post"
    CREATE_REPLY = "create_reply"
    DELETE_REPLY = "delete_reply"


@dataclass(frozen=True)
class PendingOperation:
    """A mutation that has been applied locally but not yet confirmed."""

    token: str
    kind: MutationKind
    post_id: str
    target_id: str


class PostView:
    """Local optimistic copy of one post and its flat reply collection."""

    def __init__(self, post_id: str) -> None:
        self.post_id = post_id
        self.post: Post | None = None
        self._replies: list[Reply] = []
        self._pending: dict[str, PendingOperation] = {}
        self._outcome = PostViewState.CLEAN

    @property
    def replies(self) -> tuple[Reply, ...]:
        return tuple(self._replies)

    @property
    def pending(self) -> tuple[PendingOperation, ...]:
        return tuple(self._pending.values())

    @property
    def state(self) -> PostViewState:
        if self._pending:
            return PostViewState.PENDING_WRITE
        return self._outcome

    def begin(self, kind: MutationKind, target_id: str, token: str) -> PendingOperation:
        operation = PendingOperation(
            token=token, kind=kind, post_id=self.post_id, target_id=target_id
        )
        self._pending[token] = operation
        return operation

    def finish(self, token: str, *, succeeded: bool) -> None:
        self._pending.pop(token, None)
        self._outcome = PostViewState.CLEAN if succeeded else PostViewState.REVERTED

    def prepend(self, reply: Reply) -> None:
        self._replies.insert(0, reply)

    def replace(self, reply_id: str, confirmed: Reply) -> None:
        """Swap a provisional reply for the record the store confirmed."""

        if any(reply.identifier == confirmed.identifier for reply in self._replies):
            self.discard(reply_id)
            return
        for index, reply in enumerate(self._replies):
            if reply.identifier == reply_id:
                self._replies[index] = confirmed
                return
        self._replies.insert(0, confirmed)

    def discard(self, reply_id: str) -> tuple[int, Reply] | None:
        for index, reply in enumerate(self._replies):
            if reply.identifier == reply_id:
                del self._replies[index]
                return index, reply
        return None

    def restore(self, reply: Reply, index: int) -> None:
        if any(existing.identifier == reply.identifier for existing in self._replies):
            return
        self._replies.insert(min(index, len(self._replies)), reply)

    def merge(self, confirmed: list[Reply]) -> None:
        """Replace confirmed replies while keeping in-flight local changes."""

        creating = {
            op.target_id
            for op in self._pending.values()
            if op.kind is MutationKind.CREATE_REPLY
        }
        deleting = {
            op.target_id
            for op in self._pending.values()
            if op.kind is MutationKind.DELETE_REPLY
        }
        provisional = [reply for reply in self._replies if reply.identifier in creating]
        self._replies = provisional + [
            reply for reply in confirmed if reply.identifier not in deleting
        ]
        if not self._pending:
            self._outcome = PostViewState.CLEAN


@dataclass(frozen=True)
class ThreadView:
    """A post with its replies assembled, ordered and filtered for display."""

    post: Post
    replies: tuple[ReplyTreeNode, ...]
    forest: ReplyForest
    reply_count: int
    policy: SortPolicy
    query: str | None
    state: PostViewState

    @property
    def issues(self) -> tuple[StructuralIssue, ...]:
        return self.forest.issues


class MutationCoordinator:
    """Validate, authorise and apply forum mutations for one session."""

    def __init__(
        self,
        repository: ForumRepository,
        *,
        identity: IdentityProvider | None = None,
        settings: ForumSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._identity = identity or StaticIdentityProvider()
        self._settings = settings or ForumSettings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._posts: dict[str, Post] = {}
        self._views: dict[str, PostView] = {}

    @classmethod
    def from_settings(
        cls,
        settings: ForumSettings,
        *,
        identity: IdentityProvider | None = None,
    ) -> "MutationCoordinator":
        """Build a coordinator backed by the store ``settings`` describes."""

        store: DocumentStore
        if settings.store_root is not None:
            store = FileDocumentStore(settings.store_root)
        else:
            store = InMemoryDocumentStore()
        return cls(ForumRepository(store), identity=identity, settings=settings)

    @property
    def settings(self) -> ForumSettings:
        return self._settings

    @property
    def posts(self) -> list[Post]:
        """Locally known posts, newest first, including unconfirmed ones."""

        return order(self._posts.values(), SortPolicy.NEWEST_FIRST)

    def view(self, post_id: str) -> PostView:
        view = self._views.get(post_id)
        if view is None:
            view = PostView(post_id)
            self._views[post_id] = view
        return view

    async def list_posts(self, section: Section | str | None = None) -> list[PostSummary]:
        """Return stored posts newest first with their reply counts."""

        resolved = parse_section(section) if section is not None else None
        posts = await self._repository.list_posts(section=resolved)
        reply_lists = await asyncio.gather(
            *(self._repository.list_replies(post.identifier) for post in posts)
        )
        self._merge_posts(posts, resolved)
        replies_by_post = {
            post.identifier: replies for post, replies in zip(posts, reply_lists)
        }
        return summarise_posts(posts, replies_by_post)

    async def recent_announcements(self, limit: int = 5) -> list[Post]:
        if limit < 1:
            raise ValidationError("limit must be greater than or equal to 1.")
        posts = await self._repository.list_posts(section=Section.ANNOUNCEMENTS)
        return posts[:limit]

    async def load_thread(self, post_id: str) -> PostView:
        """Refresh the local view of ``post_id`` from the store."""

        try:
            post = await self._repository.get_post(post_id)
        except NotFoundError:
            view = self._views.get(post_id)
            if view is not None and not view.pending:
                del self._views[post_id]
            self._posts.pop(post_id, None)
            raise
        replies = await self._repository.list_replies(post_id)

        view = self.view(post_id)
        view.post = post
        view.merge(replies)
        if not any(op.kind is MutationKind.DELETE_POST for op in view.pending):
            self._posts[post_id] = post
        return view

    def thread(
        self,
        post_id: str,
        *,
        policy: SortPolicy | str | None = None,
        query: str | None = None,
    ) -> ThreadView:
        """Assemble the local view of ``post_id`` for display."""

        view = self._views.get(post_id)
        if view is None or view.post is None:
            raise NotFoundError(f"Post '{post_id}' has not been loaded.")

        resolved = (
            SortPolicy.parse(policy) if policy is not None else self._settings.default_sort
        )
        forest = assemble(view.replies)
        for issue in forest.issues:
            logger.warning("Post %s: %s", post_id, issue.message)

        roots = filter_replies(order_tree(forest.roots, resolved), query)
        return ThreadView(
            post=view.post,
            replies=tuple(roots),
            forest=forest,
            reply_count=reply_count(view.replies),
            policy=resolved,
            query=query,
            state=view.state,
        )

    async def read_thread(
        self,
        post_id: str,
        *,
        policy: SortPolicy | str | None = None,
        query: str | None = None,
    ) -> ThreadView:
        await self.load_thread(post_id)
        return self.thread(post_id, policy=policy, query=query)

    async def author_statistics(self, author_id: str) -> AuthorStatistics:
        """Recompute post and reply totals for ``author_id`` from the store."""

        posts = await self._repository.list_posts()
        reply_lists = await asyncio.gather(
            *(self._repository.list_replies(post.identifier) for post in posts)
        )
        return author_statistics(author_id, posts, itertools.chain.from_iterable(reply_lists))

    async def create_post(
        self,
        title: str,
        body: str,
        section: Section | str = Section.GENERAL,
        *,
        attachment_ref: str | None = None,
        caller: Caller | None = None,
    ) -> Post:
        actor = await self._resolve_caller(caller)
        if not actor.is_authenticated:
            require_permission(actor, Action.CREATE_POST)
        resolved_section = parse_section(section)
        require_permission(actor, Action.CREATE_POST, resolved_section)
        clean_title = normalise_title(title, max_length=self._settings.max_title_length)
        clean_body = normalise_body(
            body, label="Post body", max_length=self._settings.max_body_length
        )
        attachment = normalise_reference(attachment_ref, label="Attachment reference")
        author_id = self._author_id(actor)

        token = uuid.uuid4().hex
        provisional = Post(
            identifier=f"{_PROVISIONAL_PREFIX}{token}",
            title=clean_title,
            body=clean_body,
            author_id=author_id,
            author_display_name=self._display_name(actor),
            section=resolved_section,
            created_at=self._clock(),
            attachment_ref=attachment,
        )
        provisional_view = self.view(provisional.identifier)
        provisional_view.post = provisional
        provisional_view.begin(MutationKind.CREATE_POST, provisional.identifier, token)
        self._posts[provisional.identifier] = provisional

        try:
            post = await self._repository.create_post(
                title=clean_title,
                body=clean_body,
                section=resolved_section,
                author_id=author_id,
                author_display_name=provisional.author_display_name,
                attachment_ref=attachment,
            )
        except ForumError as exc:
            logger.warning("Rolled back post creation %s: %s", token, exc)
            raise
        finally:
            self._posts.pop(provisional.identifier, None)
            self._views.pop(provisional.identifier, None)

        self._posts[post.identifier] = post
        self.view(post.identifier).post = post
        logger.info("Created post %s in %s", post.identifier, post.section.value)
        return post

    async def delete_post(self, post_id: str, *, caller: Caller | None = None) -> None:
        actor = await self._resolve_caller(caller)
        if not actor.is_authenticated:
            require_permission(actor, Action.DELETE_POST)
        post = await self._repository.get_post(post_id)
        require_permission(actor, Action.DELETE_POST, post)

        # Unloaded views keep ``post`` unset so ``thread`` cannot show them.
        view = self.view(post_id)
        token = uuid.uuid4().hex
        view.begin(MutationKind.DELETE_POST, post_id, token)
        removed = self._posts.pop(post_id, None)

        try:
            await self._repository.delete_post(post_id)
        except NotFoundError:
            view.finish(token, succeeded=True)
            raise
        except ForumError as exc:
            if removed is not None:
                self._posts[post_id] = removed
            view.finish(token, succeeded=False)
            logger.warning("Rolled back deletion of post %s: %s", post_id, exc)
            raise

        view.finish(token, succeeded=True)
        if not view.pending:
            self._views.pop(post_id, None)
        logger.info("Deleted post %s on behalf of %s", post_id, actor.identifier)

        if self._settings.cascade_post_deletes:
            await self._delete_reply_records(post_id)

    async def create_reply(
        self,
        post_id: str,
        body: str,
        *,
        parent_reply_id: str | None = None,
        attachment_ref: str | None = None,
        caller: Caller | None = None,
    ) -> Reply:
        actor = await self._resolve_caller(caller)
        require_permission(actor, Action.CREATE_REPLY)
        clean_body = normalise_body(
            body, label="Reply body", max_length=self._settings.max_body_length
        )
        parent_id = normalise_reference(parent_reply_id, label="Parent reply id")
        attachment = normalise_reference(attachment_ref, label="Attachment reference")
        author_id = self._author_id(actor)

        view = self._views.get(post_id)
        if view is None or view.post is None:
            # The optimistic reply must join the stored ones, not replace them.
            view = await self.load_thread(post_id)
        else:
            await self._repository.get_post(post_id)
        if parent_id is not None:
            try:
                await self._repository.get_reply(post_id, parent_id)
            except NotFoundError as exc:
                raise ValidationError(
                    f"Parent reply '{parent_id}' does not exist in post '{post_id}'."
                ) from exc

        token = uuid.uuid4().hex
        provisional = Reply(
            identifier=f"{_PROVISIONAL_PREFIX}{token}",
            post_id=post_id,
            parent_reply_id=parent_id,
            author_id=author_id,
            author_display_name=self._display_name(actor),
            body=clean_body,
            created_at=self._clock(),
            attachment_ref=attachment,
        )
        view.begin(MutationKind.CREATE_REPLY, provisional.identifier, token)
        view.prepend(provisional)

        try:
            reply = await self._repository.create_reply(
                post_id,
                body=clean_body,
                author_id=author_id,
                author_display_name=provisional.author_display_name,
                parent_reply_id=parent_id,
                attachment_ref=attachment,
            )
        except ForumError as exc:
            view.discard(provisional.identifier)
            view.finish(token, succeeded=False)
            logger.warning("Rolled back reply creation on post %s: %s", post_id, exc)
            raise

        view.replace(provisional.identifier, reply)
        view.finish(token, succeeded=True)
        logger.info("Created reply %s on post %s", reply.identifier, post_id)
        return reply

    async def delete_reply(
        self, post_id: str, reply_id: str, *, caller: Caller | None = None
    ) -> None:
        """Delete one reply. Its children stay in the store as orphans."""

        actor = await self._resolve_caller(caller)
        if not actor.is_authenticated:
            require_permission(actor, Action.DELETE_REPLY)
        reply = await self._repository.get_reply(post_id, reply_id)
        require_permission(actor, Action.DELETE_REPLY, reply)

        view = self.view(post_id)
        token = uuid.uuid4().hex
        view.begin(MutationKind.DELETE_REPLY, reply_id, token)
        removed = view.discard(reply_id)

        try:
            await self._repository.delete_reply(post_id, reply_id)
        except NotFoundError:
            view.finish(token, succeeded=True)
            raise
        except ForumError as exc:
            if removed is not None:
                index, local_copy = removed
                view.restore(local_copy, index)
            view.finish(token, succeeded=False)
            logger.warning("Rolled back deletion of reply %s: %s", reply_id, exc)
            raise

        view.finish(token, succeeded=True)
        logger.info("Deleted reply %s from post %s", reply_id, post_id)

    async def _delete_reply_records(self, post_id: str) -> None:
        # Not atomic with the post deletion; leftovers are unreachable anyway.
        try:
            replies = await self._repository.list_replies(post_id)
        except ForumError as exc:
            logger.warning("Could not list replies of deleted post %s: %s", post_id, exc)
            return
        for reply in replies:
            try:
                await self._repository.delete_reply(post_id, reply.identifier)
            except ForumError as exc:
                logger.warning(
                    "Could not delete reply %s of deleted post %s: %s",
                    reply.identifier,
                    post_id,
                    exc,
                )

    async def _resolve_caller(self, caller: Caller | None) -> Caller:
        if caller is not None:
            return caller
        try:
            resolved = await self._identity.current_caller()
        except ForumError:
            raise
        except Exception as exc:
            raise StoreUnavailableError("Identity provider failed to respond.") from exc
        if not isinstance(resolved, Caller):
            raise StoreUnavailableError(
                "Identity provider returned an unexpected caller payload."
            )
        return resolved

    def _display_name(self, caller: Caller) -> str:
        return caller.display_name.strip() or self._settings.anonymous_name

    @staticmethod
    def _author_id(caller: Caller) -> str:
        # Only reached after an authorisation check, so the id is present.
        return caller.identifier or ""

    def _merge_posts(self, posts: list[Post], section: Section | None) -> None:
        creating: set[str] = set()
        deleting: set[str] = set()
        for view in self._views.values():
            for op in view.pending:
                if op.kind is MutationKind.CREATE_POST:
                    creating.add(op.target_id)
                elif op.kind is MutationKind.DELETE_POST:
                    deleting.add(op.target_id)

        retained = {
            identifier: post
            for identifier, post in self._posts.items()
            if identifier in creating
            or (section is not None and post.section is not section)
        }
        for post in posts:
            if post.identifier not in deleting:
                retained[post.identifier] = post
        self._posts = retained


__all__ = [
    "MutationCoordinator",
    "MutationKind",
    "PendingOperation",
    "PostView",
    "PostViewState",
    "ThreadView",
]
