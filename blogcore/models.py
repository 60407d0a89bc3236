from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from blogcore.database import Base

TOMBSTONE_TEXT = "[Comment deleted]"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContentKind(str, enum.Enum):
    ARTICLE = "article"
    POST = "post"


class ContentStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class CommentStatus(str, enum.Enum):
    NORMAL = "normal"
    DELETED = "deleted"


def _enum_column(enum_cls: type[enum.Enum], name: str) -> Enum:
    # Stored as VARCHAR; adding a state never needs an ALTER TYPE.
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        values_callable=lambda members: [m.value for m in members],
    )


# ---------------------------------------------------------------------------
# Association tables (pure membership relations)
# ---------------------------------------------------------------------------
content_tags = Table(
    "content_tags",
    Base.metadata,
    Column("content_id", Integer, ForeignKey("content_items.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)

# The composite primary keys double as the uniqueness guarantee that the
# toggle operations rely on.
content_likes = Table(
    "content_likes",
    Base.metadata,
    Column("content_id", Integer, ForeignKey("content_items.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("created_at", DateTime(timezone=True), default=_utcnow, nullable=False),
)

comment_likes = Table(
    "comment_likes",
    Base.metadata,
    Column("comment_id", Integer, ForeignKey("comments.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("created_at", DateTime(timezone=True), default=_utcnow, nullable=False),
)


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(150), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    bio: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Cached cardinalities of the follow graph; recomputed from ``follows``.
    followers_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    following_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=_utcnow, nullable=True
    )

    # Relationships: lazy="noload" enforces explicit eager loading in services
    content_items: Mapped[List["ContentItem"]] = relationship(
        "ContentItem", back_populates="author", lazy="noload"
    )


# ---------------------------------------------------------------------------
# Follow edge
# ---------------------------------------------------------------------------
class Follow(Base):
    """
    Directed follower → followee edge.

    A single row is both sides of the relation: the follower's "following"
    set and the followee's "followers" set are projections of this table,
    so writing the edge is one insert inside one transaction.
    """

    __tablename__ = "follows"

    __table_args__ = (
        UniqueConstraint("follower_id", "followee_id", name="uq_follows_follower_followee"),
        CheckConstraint("follower_id <> followee_id", name="ck_follows_not_self"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    follower_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    followee_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )


# ---------------------------------------------------------------------------
# Tag
# ---------------------------------------------------------------------------
class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)

    content_items: Mapped[List["ContentItem"]] = relationship(
        "ContentItem", secondary=content_tags, back_populates="tags", lazy="noload"
    )


# ---------------------------------------------------------------------------
# Content item (article or post)
# ---------------------------------------------------------------------------
class ContentItem(Base):
    __tablename__ = "content_items"

    __table_args__ = (
        # Author dashboard (list-mine) and ownership checks
        Index("ix_content_items_author_id_status", "author_id", "status"),
        # Public feed and featured strip
        Index("ix_content_items_status_published_at", "status", "published_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kind: Mapped[ContentKind] = mapped_column(
        _enum_column(ContentKind, "content_kind"), default=ContentKind.ARTICLE, nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(300), unique=True, nullable=False, index=True)
    # Structured ``{"blocks": [...]}`` document or a plain string.
    body: Mapped[Any] = mapped_column(JSON, nullable=False)
    excerpt: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    excerpt_is_auto: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    reading_time: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    cover_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    cover_media_id: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)

    status: Mapped[ContentStatus] = mapped_column(
        _enum_column(ContentStatus, "content_status"), default=ContentStatus.DRAFT, nullable=False
    )
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    meta_description: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)

    # Counters. Only view_count is authoritative; the others are recomputed
    # from their source relations by counter_service.
    view_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    likes_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    comments_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=_utcnow, nullable=True
    )

    author_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Relationships: all lazy="noload"; use selectinload/joinedload in services
    author: Mapped["User"] = relationship("User", back_populates="content_items", lazy="noload")
    tags: Mapped[List["Tag"]] = relationship(
        "Tag", secondary=content_tags, back_populates="content_items", lazy="noload"
    )


# ---------------------------------------------------------------------------
# Comment
# ---------------------------------------------------------------------------
class Comment(Base):
    __tablename__ = "comments"

    __table_args__ = (
        Index("ix_comments_content_id_created_at", "content_id", "created_at"),
        Index("ix_comments_content_id_status", "content_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[CommentStatus] = mapped_column(
        _enum_column(CommentStatus, "comment_status"), default=CommentStatus.NORMAL, nullable=False
    )
    likes_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=_utcnow, nullable=True
    )

    content_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("content_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    author_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Replies reference their parent; deleting a parent never cascades.
    parent_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("comments.id"), nullable=True, index=True
    )

    author: Mapped["User"] = relationship("User", lazy="noload")

    @property
    def is_deleted(self) -> bool:
        return self.status is CommentStatus.DELETED


# ---------------------------------------------------------------------------
# Bookmark
# ---------------------------------------------------------------------------
class Bookmark(Base):
    __tablename__ = "bookmarks"

    __table_args__ = (
        UniqueConstraint("user_id", "content_id", name="uq_bookmarks_user_content"),
        Index("ix_bookmarks_user_id_created_at", "user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    content_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("content_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    content_item: Mapped["ContentItem"] = relationship("ContentItem", lazy="noload")
