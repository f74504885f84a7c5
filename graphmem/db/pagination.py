"""Opaque pagination cursors.

A cursor is the store's last-evaluated key serialized with orjson and
encoded as URL-safe base64. Callers round-trip it unmodified.
"""

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

import orjson

from graphmem.errors import ValidationError

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def encode_cursor(last_key: dict[str, Any] | None) -> str | None:
    if not last_key:
        return None
    return base64.urlsafe_b64encode(orjson.dumps(last_key, option=orjson.OPT_SORT_KEYS)).decode("ascii")


def decode_cursor(cursor: str | None) -> dict[str, Any] | None:
    """Decode a cursor produced by encode_cursor.

    Raises:
        ValidationError: If the cursor is malformed
    """
    if not cursor:
        return None
    try:
        decoded = orjson.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
    except (binascii.Error, ValueError, UnicodeEncodeError) as e:
        raise ValidationError(f"invalid pagination cursor: {e}") from None
    if not isinstance(decoded, dict) or "PK" not in decoded or "SK" not in decoded:
        raise ValidationError("invalid pagination cursor")
    return decoded


def clamp_page_size(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_PAGE_SIZE
    if limit < 1:
        raise ValidationError(f"limit must be positive, got {limit}")
    return min(limit, MAX_PAGE_SIZE)


@dataclass
class Page(Generic[T]):
    """A page of domain objects plus the cursor for the next one."""

    items: list[T] = field(default_factory=list)
    next_cursor: str | None = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None

    def __iter__(self):
        return iter(self.items)

    def __len__(self):
        return len(self.items)
