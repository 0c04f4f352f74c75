"""Configuration helpers for the discussion engine and its HTTP adapter."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from .models import (
    DEFAULT_ANONYMOUS_NAME,
    DEFAULT_MAX_BODY_LENGTH,
    DEFAULT_MAX_TITLE_LENGTH,
)
from .ordering import SortPolicy

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def _normalise_path(value: str | None) -> Path | None:
    if value is None:
        return None

    trimmed = value.strip()
    if not trimmed:
        return None

    return Path(trimmed).expanduser()


def _normalise_string(value: str | None, *, default: str) -> str:
    if value is None:
        return default

    trimmed = value.strip()
    return trimmed or default


def _parse_positive_int(value: str | None, *, name: str, default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be a positive integer.") from exc
    if parsed < 1:
        raise ValueError(f"{name} must be greater than zero.")
    return parsed


def _parse_bool(value: str | None, *, name: str, default: bool) -> bool:
    if value is None or not value.strip():
        return default
    lowered = value.strip().casefold()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean flag such as 'true' or 'false'.")


@dataclass(frozen=True)
class ForumSettings:
    """Deployment settings for the discussion engine.

    Values are read from ``STORYFORUM_*`` environment variables so the engine
    can be configured without code changes. Empty strings are treated as if
    the variable was unset; paths are expanded to support ``~`` prefixes.
    """

    store_root: Path | None = None
    max_title_length: int = DEFAULT_MAX_TITLE_LENGTH
    max_body_length: int = DEFAULT_MAX_BODY_LENGTH
    default_sort: SortPolicy = SortPolicy.NEWEST_FIRST
    cascade_post_deletes: bool = False
    anonymous_name: str = DEFAULT_ANONYMOUS_NAME
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ForumSettings":
        """Return settings populated from ``environ``.

        Args:
            environ: Optional mapping of environment variables. When omitted,
                :data:`os.environ` is used.
        """

        source = environ if environ is not None else os.environ

        sort_raw = source.get("STORYFORUM_DEFAULT_SORT")
        default_sort = SortPolicy.NEWEST_FIRST
        if sort_raw is not None and sort_raw.strip():
            try:
                default_sort = SortPolicy.parse(sort_raw)
            except ValueError as exc:
                raise ValueError(
                    "STORYFORUM_DEFAULT_SORT must be either 'newest' or 'oldest'."
                ) from exc

        log_level = _normalise_string(
            source.get("STORYFORUM_LOG_LEVEL"), default="INFO"
        ).upper()
        if not isinstance(logging.getLevelName(log_level), int):
            raise ValueError(f"STORYFORUM_LOG_LEVEL '{log_level}' is not a logging level.")

        return cls(
            store_root=_normalise_path(source.get("STORYFORUM_STORE_ROOT")),
            max_title_length=_parse_positive_int(
                source.get("STORYFORUM_MAX_TITLE_LENGTH"),
                name="STORYFORUM_MAX_TITLE_LENGTH",
                default=DEFAULT_MAX_TITLE_LENGTH,
            ),
            max_body_length=_parse_positive_int(
                source.get("STORYFORUM_MAX_BODY_LENGTH"),
                name="STORYFORUM_MAX_BODY_LENGTH",
                default=DEFAULT_MAX_BODY_LENGTH,
            ),
            default_sort=default_sort,
            cascade_post_deletes=_parse_bool(
                source.get("STORYFORUM_CASCADE_POST_DELETES"),
                name="STORYFORUM_CASCADE_POST_DELETES",
                default=False,
            ),
            anonymous_name=_normalise_string(
                source.get("STORYFORUM_ANONYMOUS_NAME"),
                default=DEFAULT_ANONYMOUS_NAME,
            ),
            log_level=log_level,
        )


__all__ = ["ForumSettings"]
