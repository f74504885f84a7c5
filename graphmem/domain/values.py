"""Value objects for the GraphMem domain.

Immutable, self-validating primitives. Constructors raise ValidationError
on malformed input so an invalid value never reaches an aggregate.
"""

import re
import uuid
from dataclasses import dataclass
from typing import Iterable

from graphmem.domain.keywords import extract_keywords
from graphmem.errors import ValidationError

DEFAULT_MAX_TITLE_LENGTH = 200
DEFAULT_MAX_CONTENT_LENGTH = 10000
DEFAULT_MAX_TAGS = 10
MAX_TAG_LENGTH = 50
MAX_USER_ID_LENGTH = 128

# '#' is the key-scheme separator and must never appear inside an identifier
_USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_\-.@:|]+$")


def _parse_uuid(value: str, kind: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{kind} cannot be empty")
    try:
        return str(uuid.UUID(str(value).strip()))
    except ValueError:
        raise ValidationError(f"{kind} must be a valid UUID: {value!r}") from None


@dataclass(frozen=True)
class UserID:
    value: str

    def __post_init__(self):
        if not isinstance(self.value, str) or not self.value.strip():
            raise ValidationError("user ID cannot be empty")
        if len(self.value) > MAX_USER_ID_LENGTH:
            raise ValidationError(f"user ID exceeds maximum length of {MAX_USER_ID_LENGTH}")
        if not _USER_ID_PATTERN.match(self.value):
            raise ValidationError(f"user ID contains invalid characters: {self.value!r}")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class NodeID:
    value: str

    def __post_init__(self):
        object.__setattr__(self, "value", _parse_uuid(self.value, "node ID"))

    @classmethod
    def generate(cls) -> "NodeID":
        return cls(str(uuid.uuid4()))

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class CategoryID:
    value: str

    def __post_init__(self):
        object.__setattr__(self, "value", _parse_uuid(self.value, "category ID"))

    @classmethod
    def generate(cls) -> "CategoryID":
        return cls(str(uuid.uuid4()))

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Title:
    """Node title, trimmed, 1..max_length characters."""

    value: str
    max_length: int = DEFAULT_MAX_TITLE_LENGTH

    def __post_init__(self):
        if not isinstance(self.value, str):
            raise ValidationError("title must be a string")
        trimmed = self.value.strip()
        if not trimmed:
            raise ValidationError("title cannot be empty")
        if len(trimmed) > self.max_length:
            raise ValidationError(f"title exceeds maximum length of {self.max_length}")
        object.__setattr__(self, "value", trimmed)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Content:
    """Node body text, 1..max_length characters (whitespace preserved)."""

    value: str
    max_length: int = DEFAULT_MAX_CONTENT_LENGTH

    def __post_init__(self):
        if not isinstance(self.value, str):
            raise ValidationError("content must be a string")
        if not self.value.strip():
            raise ValidationError("content cannot be empty")
        if len(self.value) > self.max_length:
            raise ValidationError(f"content exceeds maximum length of {self.max_length}")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Keywords:
    """Set of keywords derived from text; never user supplied."""

    values: frozenset[str] = frozenset()

    @classmethod
    def from_text(cls, *texts: str) -> "Keywords":
        return cls(extract_keywords(" ".join(t for t in texts if t)))

    def overlap(self, other: "Keywords") -> float:
        """Jaccard ratio of shared keywords to the union (0 when either is empty)."""
        if not self.values or not other.values:
            return 0.0
        return len(self.values & other.values) / len(self.values | other.values)

    def shared_with(self, other: "Keywords") -> list[str]:
        return sorted(self.values & other.values)

    def __iter__(self):
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)

    def __contains__(self, item: object) -> bool:
        return item in self.values


@dataclass(frozen=True)
class Tags:
    """User supplied tags: lowercase, trimmed, deduplicated, bounded."""

    values: frozenset[str] = frozenset()
    max_tags: int = DEFAULT_MAX_TAGS

    def __post_init__(self):
        cleaned = set()
        for tag in self.values:
            if not isinstance(tag, str):
                raise ValidationError("tags must be strings")
            normalized = tag.strip().lower()
            if not normalized:
                raise ValidationError("tag cannot be empty")
            if len(normalized) > MAX_TAG_LENGTH:
                raise ValidationError(f"tag exceeds maximum length of {MAX_TAG_LENGTH}: {normalized[:20]}...")
            cleaned.add(normalized)
        if len(cleaned) > self.max_tags:
            raise ValidationError(f"maximum tags exceeded: {len(cleaned)} > {self.max_tags}")
        object.__setattr__(self, "values", frozenset(cleaned))

    @classmethod
    def of(cls, tags: Iterable[str] | None, max_tags: int = DEFAULT_MAX_TAGS) -> "Tags":
        return cls(frozenset(tags or ()), max_tags)

    def overlap(self, other: "Tags") -> float:
        if not self.values or not other.values:
            return 0.0
        return len(self.values & other.values) / len(self.values | other.values)

    def shared_with(self, other: "Tags") -> list[str]:
        return sorted(self.values & other.values)

    def as_list(self) -> list[str]:
        return sorted(self.values)

    def __iter__(self):
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)


@dataclass(frozen=True, order=True)
class Version:
    """Optimistic-lock version, starts at 1."""

    value: int = 1

    def __post_init__(self):
        if isinstance(self.value, bool) or not isinstance(self.value, int) or self.value < 1:
            raise ValidationError(f"version must be a positive integer, got {self.value!r}")

    def next(self) -> "Version":
        return Version(self.value + 1)

    def __int__(self) -> int:
        return self.value


@dataclass(frozen=True)
class Weight:
    """Edge weight in [0, 1]."""

    value: float

    def __post_init__(self):
        if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
            raise ValidationError("weight must be a number")
        if not 0.0 <= float(self.value) <= 1.0:
            raise ValidationError(f"weight must be between 0 and 1, got {self.value}")
        object.__setattr__(self, "value", float(self.value))

    def __float__(self) -> float:
        return self.value
