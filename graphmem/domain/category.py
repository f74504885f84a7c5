"""Category aggregate (secondary).

Categories group nodes; membership is stored as separate items so a node
can belong to several categories.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime

from graphmem.domain.events import CategoryCreated, CategoryUpdated, DomainEvent, utcnow
from graphmem.domain.values import CategoryID, UserID, Version
from graphmem.errors import UnauthorizedError, ValidationError

MAX_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500
_COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")


def _validate_name(name: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("category name cannot be empty")
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"category name exceeds maximum length of {MAX_NAME_LENGTH}")
    return name


def _validate_description(description: str | None) -> str:
    description = (description or "").strip()
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(f"category description exceeds maximum length of {MAX_DESCRIPTION_LENGTH}")
    return description


def _validate_color(color: str | None) -> str | None:
    if color is None or color == "":
        return None
    if not _COLOR_PATTERN.match(color):
        raise ValidationError(f"color must be #RRGGBB, got {color!r}")
    return color.upper()


@dataclass(eq=False)
class Category:
    id: CategoryID
    user_id: UserID
    name: str
    description: str
    color: str | None
    version: Version
    created_at: datetime
    updated_at: datetime
    expected_version: Version | None = None
    link_stamp: str | None = None
    _events: list[DomainEvent] = field(default_factory=list, repr=False)

    @classmethod
    def create(
        cls,
        user_id: UserID,
        name: str,
        description: str | None = None,
        color: str | None = None,
        now: datetime | None = None,
    ) -> "Category":
        now = now or utcnow()
        category = cls(
            id=CategoryID.generate(),
            user_id=user_id,
            name=_validate_name(name),
            description=_validate_description(description),
            color=_validate_color(color),
            version=Version(1),
            created_at=now,
            updated_at=now,
        )
        category._events.append(CategoryCreated(str(user_id), str(category.id), name=category.name))
        return category

    @classmethod
    def reconstitute(
        cls,
        category_id: CategoryID,
        user_id: UserID,
        name: str,
        description: str,
        color: str | None,
        version: Version,
        created_at: datetime,
        updated_at: datetime,
        link_stamp: str | None = None,
    ) -> "Category":
        return cls(
            id=category_id,
            user_id=user_id,
            name=name,
            description=description,
            color=color,
            version=version,
            created_at=created_at,
            updated_at=updated_at,
            expected_version=version,
            link_stamp=link_stamp,
        )

    @property
    def is_new(self) -> bool:
        return self.expected_version is None

    def ensure_owned_by(self, user_id: UserID) -> None:
        if self.user_id != user_id:
            raise UnauthorizedError(f"category {self.id} does not belong to user {user_id}")

    def update(
        self,
        name: str | None = None,
        description: str | None = None,
        color: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Apply the given fields; None leaves a field unchanged."""
        new_name = _validate_name(name) if name is not None else self.name
        new_description = _validate_description(description) if description is not None else self.description
        new_color = _validate_color(color) if color is not None else self.color

        if (new_name, new_description, new_color) == (self.name, self.description, self.color):
            return False

        self.name, self.description, self.color = new_name, new_description, new_color
        self.updated_at = now or utcnow()
        if not self.is_new and self.version == self.expected_version:
            self.version = self.version.next()
        self._events.append(CategoryUpdated(str(self.user_id), str(self.id), version=self.version.value))
        return True

    def mark_persisted(self) -> None:
        self.expected_version = self.version

    def pull_events(self) -> list[DomainEvent]:
        events, self._events = self._events, []
        return events
