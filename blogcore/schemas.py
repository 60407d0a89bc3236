import math
from typing import Any

from pydantic import BaseModel, Field

from blogcore.models import ContentKind, ContentStatus


# --- User ---

class UserCreate(BaseModel):
    email: str = Field(max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    display_name: str = Field(min_length=1, max_length=150)
    password: str = Field(min_length=5, max_length=128)
    bio: str | None = Field(None, max_length=500)
    avatar_url: str | None = Field(None, max_length=500)


class UserUpdate(BaseModel):
    email: str | None = Field(None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    display_name: str | None = Field(None, max_length=150)
    bio: str | None = Field(None, max_length=500)
    # A ``data:image/...;base64,`` payload is uploaded, any other value is
    # kept as a hosted URL and an empty string removes the avatar.
    avatar: str | None = None


# --- Content ---

class ContentCreate(BaseModel):
    kind: ContentKind = ContentKind.ARTICLE
    title: str | None = Field(None, max_length=200)
    # Block document for articles; posts may also send plain text.
    body: dict[str, Any] | str | None = None
    # A ``data:image/...;base64,`` payload is uploaded; anything else is
    # stored as an already-hosted URL.
    cover_image: str | None = None
    excerpt: str | None = Field(None, max_length=500)
    tags: list[str] = []
    category: str | None = Field(None, max_length=100)
    meta_description: str | None = Field(None, max_length=160)
    status: ContentStatus = ContentStatus.DRAFT
    is_featured: bool = False


class ContentUpdate(BaseModel):
    title: str | None = Field(None, max_length=200)
    body: dict[str, Any] | str | None = None
    cover_image: str | None = None
    excerpt: str | None = Field(None, max_length=500)
    tags: list[str] | None = None
    category: str | None = Field(None, max_length=100)
    meta_description: str | None = Field(None, max_length=160)
    status: ContentStatus | None = None
    is_featured: bool | None = None


# --- Comment ---

class CommentCreate(BaseModel):
    text: str | None = Field(None, max_length=1000)
    parent_comment_id: int | None = None


class CommentUpdate(BaseModel):
    text: str | None = Field(None, max_length=1000)


# --- Uploads ---

class ImageUpload(BaseModel):
    image: str


# --- Envelopes ---

class Envelope(BaseModel):
    """``{success, data?, error?}`` wrapper returned by every route."""

    success: bool = True
    data: Any = None
    error: str | None = None


class PaginatedResponse(BaseModel):
    items: list
    total: int
    page: int
    page_size: int
    total_pages: int
    has_more: bool

    @classmethod
    def build(cls, items: list, total: int, page: int, page_size: int) -> "PaginatedResponse":
        total_pages = math.ceil(total / page_size) if total > 0 else 0
        return cls(
            items=items,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=total_pages,
            has_more=page < total_pages,
        )


class PaginatedEnvelope(BaseModel):
    success: bool = True
    data: list
    total: int
    page: int
    page_size: int
    total_pages: int
    has_more: bool

    @classmethod
    def wrap(cls, page: PaginatedResponse) -> "PaginatedEnvelope":
        return cls(
            data=page.items,
            total=page.total,
            page=page.page,
            page_size=page.page_size,
            total_pages=page.total_pages,
            has_more=page.has_more,
        )


# --- Metrics ---

class MetricsResponse(BaseModel):
    total_content: int
    published_content: int
    total_comments: int
    deleted_comments: int
    total_users: int
    total_bookmarks: int
    avg_comments_per_item: float
    cache_info: dict = {}
