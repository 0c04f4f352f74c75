"""FastAPI application exposing the forum discussion endpoints."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import FastAPI, Header, HTTPException, Query
from pydantic import BaseModel, Field, field_serializer, field_validator

from ..aggregates import AuthorStatistics, PostSummary
from ..assembly import StructuralIssue
from ..coordinator import MutationCoordinator, ThreadView
from ..errors import (
    AuthorizationError,
    ForumError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError as ForumValidationError,
)
from ..models import Caller, Post, Reply, ReplyTreeNode, Role, Section
from ..settings import ForumSettings

# Thread responses nest at most this deep; deeper replies are listed flat.
MAX_RENDERED_DEPTH = 64


class Pagination(BaseModel):
    """Pagination metadata returned alongside collection responses."""

    page: int = Field(..., ge=1)
    page_size: int = Field(..., ge=1)
    total_items: int = Field(..., ge=0)
    total_pages: int = Field(..., ge=0)


class PostResource(BaseModel):
    """Representation of a forum post exposed via the API."""

    id: str = Field(..., description="Stable identifier for the post.")
    title: str = Field(..., description="Title describing the discussion topic.")
    body: str = Field(..., description="Content of the post.")
    section: Section = Field(..., description="Category the post is filed under.")
    author_id: str = Field(..., description="Identifier of the post author.")
    author_display_name: str = Field(
        ..., description="Author display name captured when the post was created."
    )
    attachment_ref: str | None = Field(
        None, description="Optional reference to an attached image."
    )
    created_at: datetime = Field(
        ..., description="Timestamp assigned by the store when the post was created."
    )

    @field_serializer("created_at")
    def _serialise_created_at(self, value: datetime) -> str:
        return value.isoformat()


class PostSummaryResource(PostResource):
    """Post overview including the number of replies stored under it."""

    reply_count: int = Field(..., ge=0, description="Number of replies, nested or not.")


class PostListResponse(BaseModel):
    """Response envelope describing paginated forum posts."""

    data: list[PostSummaryResource] = Field(
        default_factory=list,
        description="Collection of posts ordered newest first.",
    )
    pagination: Pagination


class ReplyResource(BaseModel):
    """Representation of a single reply."""

    id: str = Field(..., description="Identifier of the reply within its post.")
    post_id: str = Field(..., description="Identifier of the owning post.")
    parent_reply_id: str | None = Field(
        None, description="Reply this one answers, or null for a top-level reply."
    )
    author_id: str
    author_display_name: str
    body: str
    attachment_ref: str | None = None
    created_at: datetime

    @field_serializer("created_at")
    def _serialise_created_at(self, value: datetime) -> str:
        return value.isoformat()


class ReplyNodeResource(ReplyResource):
    """A reply placed in its thread, with nested answers."""

    depth: int = Field(..., ge=0, description="Zero for top-level replies.")
    descendant_count: int = Field(..., ge=0)
    children: list["ReplyNodeResource"] = Field(default_factory=list)


ReplyNodeResource.model_rebuild()


class StructuralIssueResource(BaseModel):
    """Diagnostic reported when the stored reply links are inconsistent."""

    kind: str
    reply_ids: list[str]
    message: str


class ThreadResponse(BaseModel):
    """A post together with its assembled reply tree."""

    post: PostResource
    replies: list[ReplyNodeResource] = Field(
        default_factory=list,
        description="Top-level replies after sorting and filtering.",
    )
    reply_count: int = Field(..., ge=0)
    sort: str
    query: str | None = None
    orphan_ids: list[str] = Field(default_factory=list)
    issues: list[StructuralIssueResource] = Field(default_factory=list)


class AnnouncementListResponse(BaseModel):
    data: list[PostResource] = Field(default_factory=list)


class AuthorStatisticsResource(BaseModel):
    """Totals of posts and replies written by one author."""

    author_id: str
    total_posts: int = Field(..., ge=0)
    total_replies: int = Field(..., ge=0)


class PostCreateRequest(BaseModel):
    """Request payload for creating a new forum post."""

    title: str = Field(..., description="Title describing the discussion topic.")
    body: str = Field(..., description="Content of the post.")
    section: str = Field(
        Section.GENERAL.value, description="Category to file the post under."
    )
    attachment_ref: str | None = Field(
        None, description="Optional reference to an uploaded image."
    )

    @field_validator("attachment_ref", mode="before")
    @classmethod
    def _normalise_attachment(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            trimmed = value.strip()
            return trimmed or None
        raise TypeError("Attachment reference must be a string or null.")


class ReplyCreateRequest(BaseModel):
    """Request payload for replying to a post or to another reply."""

    body: str = Field(..., description="Content of the reply.")
    parent_reply_id: str | None = Field(
        None, description="Reply being answered; omit for a top-level reply."
    )
    attachment_ref: str | None = Field(
        None, description="Optional reference to an uploaded image."
    )

    @field_validator("parent_reply_id", "attachment_ref", mode="before")
    @classmethod
    def _normalise_optional(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            trimmed = value.strip()
            return trimmed or None
        raise TypeError("Optional references must be strings or null.")


def create_app(
    coordinator: MutationCoordinator | None = None,
    *,
    settings: ForumSettings | None = None,
) -> FastAPI:
    """Create a FastAPI app exposing the forum endpoints."""

    resolved_settings = settings or (
        coordinator.settings if coordinator is not None else ForumSettings.from_env()
    )
    logging.getLogger("storyforum").setLevel(resolved_settings.log_level)

    forum = coordinator or MutationCoordinator.from_settings(resolved_settings)

    tags_metadata = [
        {
            "name": "Forum",
            "description": "Posts, threaded replies and author statistics.",
        }
    ]

    app = FastAPI(
        title="Story Forum API",
        version="0.1.0",
        description=(
            "HTTP API for the serialized fiction community forum. Callers are "
            "identified by the X-User-Id, X-User-Name and X-User-Role headers "
            "set by the upstream identity provider."
        ),
        openapi_tags=tags_metadata,
    )

    def _caller(
        user_id: str | None, user_name: str | None, user_role: str | None
    ) -> Caller:
        if user_id is None or not user_id.strip():
            return Caller.anonymous()
        try:
            return Caller.authenticated(
                user_id,
                user_name,
                user_role or Role.MEMBER,
                anonymous_name=resolved_settings.anonymous_name,
            )
        except ForumValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.get(
        "/api/forum/posts",
        response_model=PostListResponse,
        tags=["Forum"],
    )
    async def list_posts(
        section: str | None = Query(None, description="Only list posts in this section."),
        page: int = Query(1, ge=1),
        page_size: int = Query(
            20,
            ge=1,
            le=100,
            description="Number of posts to return per page (maximum 100).",
        ),
    ) -> PostListResponse:
        try:
            summaries = await forum.list_posts(section)
        except ForumError as exc:
            raise _http_error(exc) from exc

        total_items = len(summaries)
        start_index = (page - 1) * page_size
        visible = summaries[start_index : start_index + page_size]
        return PostListResponse(
            data=[_build_post_summary(summary) for summary in visible],
            pagination=Pagination(
                page=page,
                page_size=page_size,
                total_items=total_items,
                total_pages=_compute_total_pages(total_items, page_size),
            ),
        )

    @app.post(
        "/api/forum/posts",
        response_model=PostResource,
        status_code=201,
        tags=["Forum"],
    )
    async def create_post(
        payload: PostCreateRequest,
        x_user_id: str | None = Header(None, alias="X-User-Id"),
        x_user_name: str | None = Header(None, alias="X-User-Name"),
        x_user_role: str | None = Header(None, alias="X-User-Role"),
    ) -> PostResource:
        caller = _caller(x_user_id, x_user_name, x_user_role)
        try:
            post = await forum.create_post(
                payload.title,
                payload.body,
                payload.section,
                attachment_ref=payload.attachment_ref,
                caller=caller,
            )
        except ForumError as exc:
            raise _http_error(exc) from exc
        return _build_post(post)

    @app.get(
        "/api/forum/announcements",
        response_model=AnnouncementListResponse,
        tags=["Forum"],
    )
    async def list_announcements(
        limit: int = Query(5, ge=1, le=50),
    ) -> AnnouncementListResponse:
        try:
            posts = await forum.recent_announcements(limit)
        except ForumError as exc:
            raise _http_error(exc) from exc
        return AnnouncementListResponse(data=[_build_post(post) for post in posts])

    @app.get(
        "/api/forum/posts/{post_id}",
        response_model=ThreadResponse,
        tags=["Forum"],
        description=(
            "Return a post with its reply tree. Replies nested deeper than "
            f"{MAX_RENDERED_DEPTH} levels are listed flat under their deepest "
            "rendered ancestor."
        ),
    )
    async def get_thread(
        post_id: str,
        sort: str | None = Query(None, description="Either 'newest' or 'oldest'."),
        q: str | None = Query(None, description="Case-insensitive text filter."),
    ) -> ThreadResponse:
        try:
            thread = await forum.read_thread(post_id, policy=sort, query=q)
        except ForumError as exc:
            raise _http_error(exc) from exc
        return _build_thread(thread)

    @app.delete(
        "/api/forum/posts/{post_id}",
        response_model=None,
        status_code=204,
        tags=["Forum"],
    )
    async def delete_post(
        post_id: str,
        x_user_id: str | None = Header(None, alias="X-User-Id"),
        x_user_name: str | None = Header(None, alias="X-User-Name"),
        x_user_role: str | None = Header(None, alias="X-User-Role"),
    ) -> None:
        caller = _caller(x_user_id, x_user_name, x_user_role)
        try:
            await forum.delete_post(post_id, caller=caller)
        except ForumError as exc:
            raise _http_error(exc) from exc

    @app.post(
        "/api/forum/posts/{post_id}/replies",
        response_model=ReplyResource,
        status_code=201,
        tags=["Forum"],
    )
    async def create_reply(
        post_id: str,
        payload: ReplyCreateRequest,
        x_user_id: str | None = Header(None, alias="X-User-Id"),
        x_user_name: str | None = Header(None, alias="X-User-Name"),
        x_user_role: str | None = Header(None, alias="X-User-Role"),
    ) -> ReplyResource:
        caller = _caller(x_user_id, x_user_name, x_user_role)
        try:
            reply = await forum.create_reply(
                post_id,
                payload.body,
                parent_reply_id=payload.parent_reply_id,
                attachment_ref=payload.attachment_ref,
                caller=caller,
            )
        except ForumError as exc:
            raise _http_error(exc) from exc
        return _build_reply(reply)

    @app.delete(
        "/api/forum/posts/{post_id}/replies/{reply_id}",
        response_model=None,
        status_code=204,
        tags=["Forum"],
    )
    async def delete_reply(
        post_id: str,
        reply_id: str,
        x_user_id: str | None = Header(None, alias="X-User-Id"),
        x_user_name: str | None = Header(None, alias="X-User-Name"),
        x_user_role: str | None = Header(None, alias="X-User-Role"),
    ) -> None:
        caller = _caller(x_user_id, x_user_name, x_user_role)
        try:
            await forum.delete_reply(post_id, reply_id, caller=caller)
        except ForumError as exc:
            raise _http_error(exc) from exc

    @app.get(
        "/api/forum/authors/{author_id}/stats",
        response_model=AuthorStatisticsResource,
        tags=["Forum"],
    )
    async def get_author_statistics(author_id: str) -> AuthorStatisticsResource:
        try:
            statistics = await forum.author_statistics(author_id)
        except ForumError as exc:
            raise _http_error(exc) from exc
        return _build_author_statistics(statistics)

    return app


def _http_error(exc: ForumError) -> HTTPException:
    if isinstance(exc, ForumValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, AuthorizationError):
        status_code = 401 if exc.is_anonymous else 403
        return HTTPException(status_code=status_code, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, StoreUnavailableError):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _build_post(post: Post) -> PostResource:
    return PostResource(
        id=post.identifier,
        title=post.title,
        body=post.body,
        section=post.section,
        author_id=post.author_id,
        author_display_name=post.author_display_name,
        attachment_ref=post.attachment_ref,
        created_at=post.created_at,
    )


def _build_post_summary(summary: PostSummary) -> PostSummaryResource:
    post = summary.post
    return PostSummaryResource(
        id=post.identifier,
        title=post.title,
        body=post.body,
        section=post.section,
        author_id=post.author_id,
        author_display_name=post.author_display_name,
        attachment_ref=post.attachment_ref,
        created_at=post.created_at,
        reply_count=summary.reply_count,
    )


def _build_reply(reply: Reply) -> ReplyResource:
    return ReplyResource(
        id=reply.identifier,
        post_id=reply.post_id,
        parent_reply_id=reply.parent_reply_id,
        author_id=reply.author_id,
        author_display_name=reply.author_display_name,
        body=reply.body,
        attachment_ref=reply.attachment_ref,
        created_at=reply.created_at,
    )


def _build_reply_node(root: ReplyTreeNode) -> ReplyNodeResource:
    # Post-order build with an explicit stack. Nesting below
    # MAX_RENDERED_DEPTH is flattened into the deepest rendered node.
    built: dict[int, ReplyNodeResource] = {}
    stack: list[tuple[ReplyTreeNode, bool]] = [(root, False)]
    while stack:
        node, expanded = stack.pop()
        if node.depth >= MAX_RENDERED_DEPTH:
            flattened = [_reply_node_resource(item, []) for item in _descendants(node)]
            built[id(node)] = _reply_node_resource(node, flattened)
            continue
        if node.children and not expanded:
            stack.append((node, True))
            stack.extend((child, False) for child in node.children)
            continue
        children = [built.pop(id(child)) for child in node.children]
        built[id(node)] = _reply_node_resource(node, children)
    return built.pop(id(root))


def _descendants(node: ReplyTreeNode) -> list[ReplyTreeNode]:
    result: list[ReplyTreeNode] = []
    stack = list(reversed(node.children))
    while stack:
        current = stack.pop()
        result.append(current)
        stack.extend(reversed(current.children))
    return result


def _reply_node_resource(
    node: ReplyTreeNode, children: list[ReplyNodeResource]
) -> ReplyNodeResource:
    reply = node.reply
    return ReplyNodeResource(
        id=reply.identifier,
        post_id=reply.post_id,
        parent_reply_id=reply.parent_reply_id,
        author_id=reply.author_id,
        author_display_name=reply.author_display_name,
        body=reply.body,
        attachment_ref=reply.attachment_ref,
        created_at=reply.created_at,
        depth=node.depth,
        descendant_count=node.descendant_count,
        children=children,
    )


def _build_issue(issue: StructuralIssue) -> StructuralIssueResource:
    return StructuralIssueResource(
        kind=issue.kind,
        reply_ids=list(issue.reply_ids),
        message=issue.message,
    )


def _build_thread(thread: ThreadView) -> ThreadResponse:
    return ThreadResponse(
        post=_build_post(thread.post),
        replies=[_build_reply_node(node) for node in thread.replies],
        reply_count=thread.reply_count,
        sort=thread.policy.value,
        query=thread.query,
        orphan_ids=list(thread.forest.orphan_ids),
        issues=[_build_issue(issue) for issue in thread.issues],
    )


def _build_author_statistics(statistics: AuthorStatistics) -> AuthorStatisticsResource:
    return AuthorStatisticsResource(
        author_id=statistics.author_id,
        total_posts=statistics.total_posts,
        total_replies=statistics.total_replies,
    )


def _compute_total_pages(total_items: int, page_size: int) -> int:
    if total_items == 0:
        return 0
    return (total_items + page_size - 1) // page_size


__all__ = ["MAX_RENDERED_DEPTH", "create_app"]
