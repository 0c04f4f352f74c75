"""Translate between document store records and forum models."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Awaitable, Mapping, TypeVar

from .errors import NotFoundError, StoreUnavailableError
from .models import Post, Reply, Section, ensure_timezone
from .store import (
    POSTS_COLLECTION,
    SERVER_TIMESTAMP,
    DocumentStore,
    RecordNotFoundError,
    StoredRecord,
    StoreError,
    replies_collection,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ForumRepository:
    """Typed access to posts and replies held in a :class:`DocumentStore`.

    Store failures surface as :class:`StoreUnavailableError` and missing
    records as :class:`NotFoundError`. Nothing is retried.
    """

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    @property
    def store(self) -> DocumentStore:
        return self._store

    async def create_post(
        self,
        *,
        title: str,
        body: str,
        section: Section,
        author_id: str,
        author_display_name: str,
        attachment_ref: str | None = None,
    ) -> Post:
        fields = {
            "title": title,
            "body": body,
            "section": section.value,
            "author_id": author_id,
            "author_display_name": author_display_name,
            "attachment_ref": attachment_ref,
            "created_at": SERVER_TIMESTAMP,
        }
        record_id = await self._call(self._store.create_record(POSTS_COLLECTION, fields))
        return await self.get_post(record_id)

    async def get_post(self, post_id: str) -> Post:
        record = await self._fetch(POSTS_COLLECTION, post_id, label="Post")
        return self._post_from_record(record)

    async def list_posts(self, *, section: Section | None = None) -> list[Post]:
        """Return posts newest first, optionally restricted to one section."""

        where = {"section": section.value} if section is not None else None
        records = await self._call(
            self._store.list_records(
                POSTS_COLLECTION, order_by="created_at", descending=True, where=where
            )
        )
        return [self._post_from_record(record) for record in records]

    async def delete_post(self, post_id: str) -> None:
        await self._remove(POSTS_COLLECTION, post_id, label="Post")

    async def create_reply(
        self,
        post_id: str,
        *,
        body: str,
        author_id: str,
        author_display_name: str,
        parent_reply_id: str | None = None,
        attachment_ref: str | None = None,
    ) -> Reply:
        fields = {
            "post_id": post_id,
            "parent_reply_id": parent_reply_id,
            "body": body,
            "author_id": author_id,
            "author_display_name": author_display_name,
            "attachment_ref": attachment_ref,
            "created_at": SERVER_TIMESTAMP,
        }
        collection = replies_collection(post_id)
        record_id = await self._call(self._store.create_record(collection, fields))
        return await self.get_reply(post_id, record_id)

    async def get_reply(self, post_id: str, reply_id: str) -> Reply:
        record = await self._fetch(
            replies_collection(post_id), reply_id, label="Reply"
        )
        return self._reply_from_record(post_id, record)

    async def list_replies(self, post_id: str) -> list[Reply]:
        """Return every reply stored under the post, newest first."""

        records = await self._call(
            self._store.list_records(
                replies_collection(post_id),
                order_by="created_at",
                descending=True,
            )
        )
        return [self._reply_from_record(post_id, record) for record in records]

    async def delete_reply(self, post_id: str, reply_id: str) -> None:
        await self._remove(replies_collection(post_id), reply_id, label="Reply")

    async def _call(self, operation: Awaitable[T]) -> T:
        try:
            return await operation
        except StoreError as exc:
            logger.warning("Document store call failed: %s", exc)
            raise StoreUnavailableError(f"Document store unavailable: {exc}") from exc
        except OSError as exc:
            logger.warning("Document store I/O failed: %s", exc)
            raise StoreUnavailableError(f"Document store unavailable: {exc}") from exc

    async def _fetch(self, collection: str, record_id: str, *, label: str) -> StoredRecord:
        try:
            return await self._call(self._store.get_record(collection, record_id))
        except (RecordNotFoundError, ValueError) as exc:
            raise NotFoundError(f"{label} '{record_id}' does not exist.") from exc

    async def _remove(self, collection: str, record_id: str, *, label: str) -> None:
        try:
            await self._call(self._store.delete_record(collection, record_id))
        except (RecordNotFoundError, ValueError) as exc:
            raise NotFoundError(f"{label} '{record_id}' does not exist.") from exc

    def _post_from_record(self, record: StoredRecord) -> Post:
        fields = record.fields
        label = f"Post '{record.identifier}'"
        section_raw = _require_text(fields, "section", label)
        try:
            section = Section(section_raw)
        except ValueError as exc:
            raise StoreUnavailableError(
                f"{label} has an unknown 'section' value '{section_raw}'."
            ) from exc

        return Post(
            identifier=record.identifier,
            title=_require_text(fields, "title", label),
            body=_require_text(fields, "body", label),
            author_id=_require_text(fields, "author_id", label),
            author_display_name=_require_text(fields, "author_display_name", label),
            section=section,
            created_at=_require_timestamp(fields, label),
            attachment_ref=_optional_text(fields, "attachment_ref", label),
        )

    def _reply_from_record(self, post_id: str, record: StoredRecord) -> Reply:
        fields = record.fields
        label = f"Reply '{record.identifier}'"
        return Reply(
            identifier=record.identifier,
            post_id=post_id,
            parent_reply_id=_optional_text(fields, "parent_reply_id", label),
            author_id=_require_text(fields, "author_id", label),
            author_display_name=_require_text(fields, "author_display_name", label),
            body=_require_text(fields, "body", label),
            created_at=_require_timestamp(fields, label),
            attachment_ref=_optional_text(fields, "attachment_ref", label),
        )


def _require_text(fields: Mapping[str, Any], key: str, label: str) -> str:
    value = fields.get(key)
    if not isinstance(value, str) or not value.strip():
        raise StoreUnavailableError(f"{label} is missing a valid '{key}'.")
    return value.strip()


def _optional_text(fields: Mapping[str, Any], key: str, label: str) -> str | None:
    value = fields.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise StoreUnavailableError(f"{label} has an invalid '{key}'.")
    return value.strip() or None


def _require_timestamp(fields: Mapping[str, Any], label: str) -> datetime:
    value = fields.get("created_at")
    if isinstance(value, datetime):
        return ensure_timezone(value)
    if not isinstance(value, str):
        raise StoreUnavailableError(f"{label} is missing a valid 'created_at'.")
    try:
        return ensure_timezone(datetime.fromisoformat(value))
    except ValueError as exc:
        raise StoreUnavailableError(
            f"{label} contains an invalid 'created_at'."
        ) from exc


__all__ = ["ForumRepository"]
