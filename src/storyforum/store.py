"""Document store collaborators holding posts and their reply collections."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping

logger = logging.getLogger(__name__)

POSTS_COLLECTION = "posts"

_SEGMENT_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class _ServerTimestamp:
    """Sentinel asking the store to fill in its own clock reading."""

    __slots__ = ()

    def __repr__(self) -> str:  # pragma: no cover - trivial representation
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


class StoreError(RuntimeError):
    """Raised when the store cannot complete an operation."""


class RecordNotFoundError(KeyError):
    """Raised when a record or collection entry does not exist."""

    def __init__(self, collection: str, record_id: str) -> None:
        super().__init__(f"Record '{record_id}' does not exist in '{collection}'.")
        self.collection = collection
        self.record_id = record_id

    def __str__(self) -> str:
        return str(self.args[0])


@dataclass(frozen=True)
class StoredRecord:
    """A record identifier together with its stored fields."""

    identifier: str
    fields: Mapping[str, Any]


def replies_collection(post_id: str) -> str:
    return f"{POSTS_COLLECTION}/{post_id}/replies"


class DocumentStore(ABC):
    """Interface of the hosted document store the engine depends on.

    Records live in collections addressed by slash separated paths. Nothing
    spans more than one record, so no operation is transactional beyond a
    single create or delete.
    """

    @abstractmethod
    async def create_record(self, collection: str, fields: Mapping[str, Any]) -> str:
        """Store ``fields`` as a new record and return its identifier.

        Any field set to :data:`SERVER_TIMESTAMP` receives the store's time.
        """

    @abstractmethod
    async def get_record(self, collection: str, record_id: str) -> StoredRecord:
        """Return the record.

        Raises:
            RecordNotFoundError: If no such record exists.
        """

    @abstractmethod
    async def list_records(
        self,
        collection: str,
        *,
        order_by: str | None = None,
        descending: bool = False,
        where: Mapping[str, Any] | None = None,
    ) -> List[StoredRecord]:
        """Return the records in ``collection`` matching every ``where`` clause."""

    @abstractmethod
    async def delete_record(self, collection: str, record_id: str) -> None:
        """Remove the record.

        Raises:
            RecordNotFoundError: If no such record exists.
        """


class _ClockMixin:
    """Hands out non-decreasing timestamps for ``SERVER_TIMESTAMP`` fields."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._last_timestamp: datetime | None = None

    def _next_timestamp(self) -> datetime:
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        if self._last_timestamp is not None and now < self._last_timestamp:
            now = self._last_timestamp
        self._last_timestamp = now
        return now

    def _resolve_fields(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        timestamp: datetime | None = None
        resolved: Dict[str, Any] = {}
        for key, value in fields.items():
            if value is SERVER_TIMESTAMP:
                if timestamp is None:
                    timestamp = self._next_timestamp()
                value = timestamp
            resolved[key] = value
        return resolved


class InMemoryDocumentStore(_ClockMixin, DocumentStore):
    """Keep records in local process memory."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        super().__init__(clock)
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    async def create_record(self, collection: str, fields: Mapping[str, Any]) -> str:
        key = _validate_collection(collection)
        record_id = uuid.uuid4().hex
        self._collections.setdefault(key, {})[record_id] = self._resolve_fields(fields)
        logger.debug("Created record %s in %s", record_id, key)
        return record_id

    async def get_record(self, collection: str, record_id: str) -> StoredRecord:
        key = _validate_collection(collection)
        try:
            fields = self._collections[key][record_id]
        except KeyError as exc:
            raise RecordNotFoundError(key, record_id) from exc
        return StoredRecord(identifier=record_id, fields=dict(fields))

    async def list_records(
        self,
        collection: str,
        *,
        order_by: str | None = None,
        descending: bool = False,
        where: Mapping[str, Any] | None = None,
    ) -> List[StoredRecord]:
        key = _validate_collection(collection)
        records = [
            StoredRecord(identifier=record_id, fields=dict(fields))
            for record_id, fields in self._collections.get(key, {}).items()
        ]
        return _select(records, order_by=order_by, descending=descending, where=where)

    async def delete_record(self, collection: str, record_id: str) -> None:
        key = _validate_collection(collection)
        records = self._collections.get(key, {})
        if record_id not in records:
            raise RecordNotFoundError(key, record_id)
        del records[record_id]
        logger.debug("Deleted record %s from %s", record_id, key)


class FileDocumentStore(_ClockMixin, DocumentStore):
    """Persist each record as a JSON file under ``root/<collection>/``.

    Datetime values are written as ISO-8601 strings. File system work runs in
    a worker thread so the event loop is never blocked on disk access.
    """

    def __init__(
        self, root: Path, clock: Callable[[], datetime] | None = None
    ) -> None:
        super().__init__(clock)
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    async def create_record(self, collection: str, fields: Mapping[str, Any]) -> str:
        key = _validate_collection(collection)
        record_id = uuid.uuid4().hex
        resolved = self._resolve_fields(fields)
        await asyncio.to_thread(self._write, key, record_id, resolved)
        logger.debug("Created record %s in %s", record_id, key)
        return record_id

    async def get_record(self, collection: str, record_id: str) -> StoredRecord:
        key = _validate_collection(collection)
        path = self._path_for(key, record_id)
        return await asyncio.to_thread(self._read, key, record_id, path)

    async def list_records(
        self,
        collection: str,
        *,
        order_by: str | None = None,
        descending: bool = False,
        where: Mapping[str, Any] | None = None,
    ) -> List[StoredRecord]:
        key = _validate_collection(collection)
        records = await asyncio.to_thread(self._read_all, key)
        return _select(records, order_by=order_by, descending=descending, where=where)

    async def delete_record(self, collection: str, record_id: str) -> None:
        key = _validate_collection(collection)
        path = self._path_for(key, record_id)
        await asyncio.to_thread(self._unlink, key, record_id, path)
        logger.debug("Deleted record %s from %s", record_id, key)

    def _path_for(self, collection: str, record_id: str) -> Path:
        directory = self._root.joinpath(*collection.split("/"))
        return directory / f"{_validate_segment(record_id)}.json"

    def _write(self, collection: str, record_id: str, fields: Mapping[str, Any]) -> None:
        path = self._path_for(collection, record_id)
        payload = {key: _encode_value(value) for key, value in fields.items()}
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreError("Failed to prepare record storage directory.") from exc
        try:
            with path.open("w", encoding="utf-8") as handle:
                json.dump(payload, handle, ensure_ascii=False, indent=2)
        except OSError as exc:
            raise StoreError(f"Failed to persist record '{record_id}'.") from exc

    def _read(self, collection: str, record_id: str, path: Path) -> StoredRecord:
        if not path.is_file():
            raise RecordNotFoundError(collection, record_id)
        try:
            with path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, ValueError) as exc:
            raise StoreError(f"Failed to load record from '{path}'.") from exc
        if not isinstance(payload, dict):
            raise StoreError(f"Record in '{path}' must be a mapping.")
        return StoredRecord(identifier=record_id, fields=payload)

    def _read_all(self, collection: str) -> List[StoredRecord]:
        directory = self._root.joinpath(*collection.split("/"))
        if not directory.is_dir():
            return []
        return [
            self._read(collection, path.stem, path)
            for path in sorted(directory.glob("*.json"))
            if path.is_file()
        ]

    def _unlink(self, collection: str, record_id: str, path: Path) -> None:
        if not path.is_file():
            raise RecordNotFoundError(collection, record_id)
        try:
            path.unlink()
        except OSError as exc:
            raise StoreError(f"Failed to delete record '{record_id}'.") from exc


def _select(
    records: List[StoredRecord],
    *,
    order_by: str | None,
    descending: bool,
    where: Mapping[str, Any] | None,
) -> List[StoredRecord]:
    if where:
        records = [
            record
            for record in records
            if all(record.fields.get(field) == value for field, value in where.items())
        ]
    if order_by is not None:
        # Records missing the field sort first, then ties fall back to the id.
        records.sort(key=lambda record: record.identifier)
        records.sort(
            key=lambda record: (
                record.fields.get(order_by) is not None,
                _sort_value(record.fields.get(order_by)),
            ),
            reverse=descending,
        )
    return records


def _sort_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if value is None:
        return ""
    return value


def _encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _validate_collection(collection: str) -> str:
    if not isinstance(collection, str):
        raise TypeError("collection must be a string")
    segments = collection.strip().strip("/").split("/")
    for segment in segments:
        _validate_segment(segment)
    return "/".join(segments)


def _validate_segment(segment: str) -> str:
    if not isinstance(segment, str) or not _SEGMENT_PATTERN.fullmatch(segment):
        raise ValueError(
            "Collection paths and record ids may only contain letters, numbers, "
            "hyphens and underscores."
        )
    return segment


__all__ = [
    "DocumentStore",
    "FileDocumentStore",
    "InMemoryDocumentStore",
    "POSTS_COLLECTION",
    "RecordNotFoundError",
    "SERVER_TIMESTAMP",
    "StoreError",
    "StoredRecord",
    "replies_collection",
]
