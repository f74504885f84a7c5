"""Node aggregate.

A node is a short piece of user text. It owns its keyword set (always
re-derived from title + content), its tags, and its optimistic-lock version.

Versioning:
- ``expected_version`` is the version last read from (or written to) the
  store; writers condition on it.
- ``version`` is what will be stored. The first mutation inside a unit of
  work bumps it once; further mutations reuse the bumped value.
- ``link_stamp`` is the stored link stamp; deletes condition on it so an
  edge or membership written after the read is never orphaned.
"""

from dataclasses import dataclass, field
from datetime import datetime

from graphmem.domain.events import (
    DomainEvent,
    NodeArchived,
    NodeContentUpdated,
    NodeCreated,
    NodeTagsUpdated,
    utcnow,
)
from graphmem.domain.values import Content, Keywords, NodeID, Tags, Title, UserID, Version
from graphmem.errors import UnauthorizedError, ValidationError


@dataclass(eq=False)
class Node:
    id: NodeID
    user_id: UserID
    title: Title
    content: Content
    tags: Tags
    keywords: Keywords
    version: Version
    created_at: datetime
    updated_at: datetime
    archived: bool = False
    expected_version: Version | None = None
    link_stamp: str | None = None
    original_keywords: Keywords = field(default_factory=Keywords)
    _events: list[DomainEvent] = field(default_factory=list, repr=False)

    @classmethod
    def create(
        cls,
        user_id: UserID,
        title: Title,
        content: Content,
        tags: Tags | None = None,
        node_id: NodeID | None = None,
        now: datetime | None = None,
    ) -> "Node":
        """Create a brand-new node (version 1, never persisted)."""
        now = now or utcnow()
        tags = tags or Tags()
        node = cls(
            id=node_id or NodeID.generate(),
            user_id=user_id,
            title=title,
            content=content,
            tags=tags,
            keywords=Keywords.from_text(title.value, content.value),
            version=Version(1),
            created_at=now,
            updated_at=now,
        )
        node._events.append(NodeCreated(
            str(user_id),
            str(node.id),
            title=title.value,
            keywords=tuple(sorted(node.keywords)),
            tags=tuple(tags.as_list()),
        ))
        return node

    @classmethod
    def reconstitute(
        cls,
        node_id: NodeID,
        user_id: UserID,
        title: Title,
        content: Content,
        tags: Tags,
        version: Version,
        created_at: datetime,
        updated_at: datetime,
        archived: bool = False,
        link_stamp: str | None = None,
    ) -> "Node":
        """Rebuild a stored node; keywords are re-derived, never trusted."""
        keywords = Keywords.from_text(title.value, content.value)
        return cls(
            id=node_id,
            user_id=user_id,
            title=title,
            content=content,
            tags=tags,
            keywords=keywords,
            version=version,
            created_at=created_at,
            updated_at=updated_at,
            archived=archived,
            expected_version=version,
            original_keywords=keywords,
            link_stamp=link_stamp,
        )

    # =========================================================================
    # State
    # =========================================================================

    @property
    def is_new(self) -> bool:
        """True until the node has been written once."""
        return self.expected_version is None

    @property
    def is_dirty(self) -> bool:
        return self.is_new or self.version != self.expected_version

    def ensure_owned_by(self, user_id: UserID) -> None:
        if self.user_id != user_id:
            raise UnauthorizedError(f"node {self.id} does not belong to user {user_id}")

    def _ensure_mutable(self) -> None:
        if self.archived:
            raise ValidationError(f"cannot modify archived node {self.id}")

    def _touch(self, now: datetime | None = None) -> None:
        self.updated_at = now or utcnow()
        if not self.is_new and self.version == self.expected_version:
            self.version = self.version.next()

    # =========================================================================
    # Mutations
    # =========================================================================

    def update_content(
        self,
        title: Title | None = None,
        content: Content | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Replace title and/or content and re-derive keywords.

        Returns:
            True if anything changed
        """
        self._ensure_mutable()
        new_title = title or self.title
        new_content = content or self.content
        if new_title.value == self.title.value and new_content.value == self.content.value:
            return False

        self.title = new_title
        self.content = new_content
        self.keywords = Keywords.from_text(new_title.value, new_content.value)
        self._touch(now)
        self._events.append(NodeContentUpdated(
            str(self.user_id),
            str(self.id),
            version=self.version.value,
            keywords=tuple(sorted(self.keywords)),
        ))
        return True

    def replace_tags(self, tags: Tags, now: datetime | None = None) -> bool:
        self._ensure_mutable()
        if tags.values == self.tags.values:
            return False
        self.tags = tags
        self._touch(now)
        self._events.append(NodeTagsUpdated(
            str(self.user_id),
            str(self.id),
            version=self.version.value,
            tags=tuple(tags.as_list()),
        ))
        return True

    def archive(self, now: datetime | None = None) -> bool:
        if self.archived:
            return False
        self.archived = True
        self._touch(now)
        self._events.append(NodeArchived(str(self.user_id), str(self.id), version=self.version.value))
        return True

    @property
    def keywords_changed(self) -> bool:
        return self.keywords.values != self.original_keywords.values

    def mark_persisted(self) -> None:
        """Called after a successful commit."""
        self.expected_version = self.version
        self.original_keywords = self.keywords

    def pull_events(self) -> list[DomainEvent]:
        """Return and clear buffered events."""
        events, self._events = self._events, []
        return events
