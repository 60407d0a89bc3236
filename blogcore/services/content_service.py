"""
Content service: business logic for the ContentItem aggregate.

Design notes
------------
- Articles and posts are one entity distinguished by ``kind``; the only
  behavioural difference is which body shapes are accepted.
- Derived fields are computed once per triggering mutation: the slug when
  the item is created (never again), excerpt and reading time whenever the
  body is set, ``published_at`` the first time the status becomes
  ``published``.  An excerpt the author typed is never overwritten.
- Public list and featured reads go through the Redis cache-aside layer;
  every write that changes what they show calls
  ``cache.invalidate_content()``.
- ``get_content_by_slug`` schedules the view increment as a tracked
  background task with its own session, so the read never waits on it and
  a failing increment is only logged.
- Media cleanup (old covers, embedded images of deleted items) is queued
  on the session and runs only after the transaction commits; uploads made
  for a transaction that rolls back are removed.  Cleanup is advisory:
  each object is deleted independently and failures are logged.
- Service functions flush but do not commit; the transaction boundary is
  owned by the ``get_db`` dependency in the router layer.
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from blogcore import body as body_rules
from blogcore import database
from blogcore.cache import FEATURED_KEY, cache, list_cache_key
from blogcore.config import settings
from blogcore.errors import AuthorizationError, NotFoundError, ValidationError
from blogcore.models import (
    Bookmark,
    Comment,
    ContentItem,
    ContentKind,
    ContentStatus,
    Tag,
    User,
    comment_likes,
    content_likes,
)
from blogcore.schemas import ContentCreate, ContentUpdate, PaginatedResponse
from blogcore.serializers import content_detail_to_dict, content_to_dict
from blogcore.services import counter_service, engagement_service
from blogcore.storage import (
    defer_media_cleanup,
    extract_public_id,
    is_data_uri,
    media_storage,
    track_uploaded_media,
)

logger = logging.getLogger(__name__)

# Strong references to in-flight view increments; asyncio only keeps weak ones.
_background_tasks: set[asyncio.Task] = set()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _with_relations(q):
    return q.options(joinedload(ContentItem.author), selectinload(ContentItem.tags))


async def _load(db: AsyncSession, content_id: int) -> ContentItem:
    result = await db.execute(_with_relations(select(ContentItem).where(ContentItem.id == content_id)))
    item = result.unique().scalar_one_or_none()
    if item is None:
        raise NotFoundError("Content")
    return item


def _ensure_author(item: ContentItem, user: User, action: str) -> None:
    if item.author_id != user.id:
        raise AuthorizationError(f"Not authorized to {action} this content")


async def _resolve_tags(db: AsyncSession, tag_names: list[str]) -> list[Tag]:
    """
    Return Tag instances for each (normalised, de-duplicated) name,
    creating any that do not exist yet.
    """
    tags: list[Tag] = []
    seen: set[str] = set()
    for raw in tag_names:
        name = raw.strip().lower()
        if not name or name in seen:
            continue
        seen.add(name)
        result = await db.execute(select(Tag).where(Tag.name == name))
        tag = result.scalar_one_or_none()
        if not tag:
            tag = Tag(name=name)
            db.add(tag)
            await db.flush()
        tags.append(tag)
    return tags


async def _unique_slug(db: AsyncSession, title: str) -> str:
    """
    Slug plus creation timestamp.  Two items with the same title created in
    the same millisecond get the next free timestamp.
    """
    timestamp_ms = int(time.time() * 1000)
    while True:
        slug = body_rules.slug_with_timestamp(title, timestamp_ms)
        taken = await db.execute(select(ContentItem.id).where(ContentItem.slug == slug))
        if taken.scalar_one_or_none() is None:
            return slug
        timestamp_ms += 1


def _apply_body(item: ContentItem, new_body: Any) -> None:
    """Set the body and refresh the fields derived from it."""
    item.body = new_body
    item.reading_time = body_rules.reading_time(new_body)
    if item.excerpt_is_auto or not item.excerpt:
        item.excerpt = body_rules.extract_excerpt(new_body)
        item.excerpt_is_auto = True


def _apply_status(item: ContentItem, status: ContentStatus) -> None:
    item.status = status
    if status is ContentStatus.PUBLISHED and item.published_at is None:
        item.published_at = datetime.now(timezone.utc)


def _apply_excerpt(item: ContentItem, excerpt: str | None) -> None:
    if excerpt and excerpt.strip():
        item.excerpt = excerpt.strip()
        item.excerpt_is_auto = False
    else:
        # Cleared: fall back to the auto excerpt of the current body.
        item.excerpt = body_rules.extract_excerpt(item.body)
        item.excerpt_is_auto = True


async def _store_cover(db: AsyncSession, cover_image: str) -> tuple[str, str | None]:
    """Upload a data-URI cover or accept an already-hosted URL."""
    if is_data_uri(cover_image):
        stored = await media_storage.store(cover_image, settings.MEDIA_COVER_FOLDER)
        track_uploaded_media(db, stored.public_id)
        return stored.url, stored.public_id
    return cover_image, extract_public_id(cover_image) if media_storage.owns(cover_image) else None


def content_media_ids(item: ContentItem) -> list[str]:
    """Public ids of the stored media *item* references: cover and embedded images."""
    media_ids: list[str] = []
    if item.cover_media_id:
        media_ids.append(item.cover_media_id)
    for url in body_rules.embedded_media_urls(item.body):
        public_id = extract_public_id(url) if media_storage.owns(url) else None
        if public_id and public_id not in media_ids:
            media_ids.append(public_id)
    return media_ids


def _require_title(title: str | None) -> str:
    if title is None or not title.strip():
        raise ValidationError("title", "Title is required")
    return title.strip()


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def list_content(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 10,
    tag: str | None = None,
    category: str | None = None,
    kind: ContentKind | None = None,
    q: str | None = None,
) -> PaginatedResponse:
    """
    Published items, newest ``published_at`` first, optionally filtered by
    tag, category, kind and a case-insensitive title substring.
    """
    cache_key = list_cache_key(
        page=page,
        page_size=page_size,
        tag=tag,
        category=category,
        kind=kind.value if kind else None,
        q=q,
    )
    cached = await cache.get(cache_key)
    if cached:
        return PaginatedResponse(**cached)

    conditions = [ContentItem.status == ContentStatus.PUBLISHED]
    if tag:
        conditions.append(ContentItem.tags.any(Tag.name == tag.strip().lower()))
    if category:
        conditions.append(ContentItem.category == category)
    if kind:
        conditions.append(ContentItem.kind == kind)
    if q:
        conditions.append(func.lower(ContentItem.title).contains(q.lower(), autoescape=True))

    total: int = (
        await db.execute(select(func.count()).select_from(ContentItem).where(*conditions))
    ).scalar_one()

    items_q = _with_relations(
        select(ContentItem)
        .where(*conditions)
        .order_by(ContentItem.published_at.desc(), ContentItem.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    items = (await db.execute(items_q)).unique().scalars().all()

    response = PaginatedResponse.build([content_to_dict(i) for i in items], total, page, page_size)
    await cache.set(cache_key, response.model_dump(), ttl=settings.CACHE_TTL_LIST)
    return response


async def list_my_content(
    db: AsyncSession, user: User, page: int = 1, page_size: int = 10
) -> PaginatedResponse:
    """Every item the caller authored, whatever its status, newest first."""
    condition = ContentItem.author_id == user.id
    total: int = (
        await db.execute(select(func.count()).select_from(ContentItem).where(condition))
    ).scalar_one()
    items_q = _with_relations(
        select(ContentItem)
        .where(condition)
        .order_by(ContentItem.created_at.desc(), ContentItem.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    items = (await db.execute(items_q)).unique().scalars().all()
    return PaginatedResponse.build([content_to_dict(i) for i in items], total, page, page_size)


async def list_featured_content(db: AsyncSession) -> list[dict]:
    cached = await cache.get(FEATURED_KEY)
    if cached is not None:
        return cached

    q = _with_relations(
        select(ContentItem)
        .where(ContentItem.status == ContentStatus.PUBLISHED, ContentItem.is_featured.is_(True))
        .order_by(ContentItem.published_at.desc(), ContentItem.id.desc())
        .limit(settings.FEATURED_LIMIT)
    )
    items = [content_to_dict(i) for i in (await db.execute(q)).unique().scalars().all()]
    await cache.set(FEATURED_KEY, items, ttl=settings.CACHE_TTL_FEATURED)
    return items


async def _increment_views(content_id: int) -> None:
    try:
        async with database.async_session() as session:
            await session.execute(
                update(ContentItem)
                .where(ContentItem.id == content_id)
                .values(view_count=ContentItem.view_count + 1)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
    except Exception as exc:
        logger.warning("View increment for content %s failed: %s", content_id, exc)


def _schedule_view_increment(content_id: int) -> None:
    task = asyncio.create_task(_increment_views(content_id))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


async def wait_for_background_tasks() -> None:
    """Await every pending view increment (used at shutdown and in tests)."""
    while _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)


async def get_content_by_slug(db: AsyncSession, slug: str) -> dict:
    """
    Public detail read.  The returned ``view_count`` is the value before
    this read; the increment lands asynchronously.
    """
    result = await db.execute(_with_relations(select(ContentItem).where(ContentItem.slug == slug)))
    item = result.unique().scalar_one_or_none()
    if item is None:
        raise NotFoundError("Content")

    _schedule_view_increment(item.id)
    return content_detail_to_dict(item)


async def get_content_for_author(db: AsyncSession, content_id: int, user: User) -> dict:
    """Read-by-id for edit flows; only the author may use it."""
    item = await _load(db, content_id)
    _ensure_author(item, user, "access")
    return content_detail_to_dict(item)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

async def create_content(db: AsyncSession, user: User, data: ContentCreate) -> dict:
    title = _require_title(data.title)
    body_rules.validate_body(data.body, data.kind)

    item = ContentItem(
        kind=data.kind,
        title=title,
        slug=await _unique_slug(db, title),
        category=data.category,
        meta_description=data.meta_description,
        is_featured=data.is_featured,
        author=user,
        excerpt_is_auto=True,
    )
    _apply_body(item, data.body)
    if data.excerpt is not None:
        _apply_excerpt(item, data.excerpt)
    _apply_status(item, data.status)

    if data.tags:
        item.tags.extend(await _resolve_tags(db, data.tags))

    if data.cover_image:
        item.cover_url, item.cover_media_id = await _store_cover(db, data.cover_image)

    db.add(item)
    await db.flush()

    logger.info("User %s created %s %s (%s)", user.id, item.kind.value, item.id, item.slug)
    await cache.invalidate_content()
    return content_detail_to_dict(item)


async def update_content(
    db: AsyncSession, content_id: int, user: User, data: ContentUpdate
) -> dict:
    """
    Partially update an item the caller authored.

    Only fields present in the payload are touched.  The slug is never
    regenerated.  A new cover is uploaded before the swap; the previous
    stored object is deleted only after the swap has been committed.
    """
    item = await _load(db, content_id)
    _ensure_author(item, user, "update")

    update_data = data.model_dump(exclude_unset=True)

    if "title" in update_data:
        item.title = _require_title(update_data["title"])

    if "body" in update_data:
        body_rules.validate_body(update_data["body"], item.kind)
        _apply_body(item, update_data["body"])

    if "excerpt" in update_data:
        _apply_excerpt(item, update_data["excerpt"])

    for field in ("category", "meta_description"):
        if field in update_data:
            setattr(item, field, update_data[field])
    if update_data.get("is_featured") is not None:
        item.is_featured = update_data["is_featured"]

    if update_data.get("status") is not None:
        _apply_status(item, update_data["status"])

    if update_data.get("tags") is not None:
        item.tags.clear()
        item.tags.extend(await _resolve_tags(db, update_data["tags"]))

    replaced_media_id: str | None = None
    if "cover_image" in update_data and update_data["cover_image"] != item.cover_url:
        replaced_media_id = item.cover_media_id
        if update_data["cover_image"]:
            item.cover_url, item.cover_media_id = await _store_cover(db, update_data["cover_image"])
        else:
            item.cover_url, item.cover_media_id = None, None

    await db.flush()

    if replaced_media_id != item.cover_media_id:
        defer_media_cleanup(db, replaced_media_id, "replaced cover")

    await cache.invalidate_content()
    return content_detail_to_dict(item)


async def delete_content(db: AsyncSession, content_id: int, user: User) -> None:
    """
    Delete an item the caller authored together with its comments, likes,
    bookmarks and tag links.  Every stored media object it referenced is
    queued for deletion once the transaction commits.
    """
    item = await _load(db, content_id)
    _ensure_author(item, user, "delete")

    for public_id in content_media_ids(item):
        defer_media_cleanup(db, public_id, "content")

    comment_ids = select(Comment.id).where(Comment.content_id == content_id)
    await db.execute(delete(comment_likes).where(comment_likes.c.comment_id.in_(comment_ids)))
    # Replies first: they reference their parents.
    await db.execute(
        delete(Comment).where(Comment.content_id == content_id, Comment.parent_id.is_not(None))
    )
    await db.execute(delete(Comment).where(Comment.content_id == content_id))
    await db.execute(delete(content_likes).where(content_likes.c.content_id == content_id))
    await db.execute(delete(Bookmark).where(Bookmark.content_id == content_id))
    await db.delete(item)
    await db.flush()
    logger.info("User %s deleted content %s", user.id, content_id)
    await cache.invalidate_content()


async def toggle_content_like(db: AsyncSession, content_id: int, user: User) -> dict:
    await _load(db, content_id)
    is_liked = await engagement_service.toggle_membership(
        db, content_likes, content_id=content_id, user_id=user.id
    )
    likes_count = await counter_service.recount_content_likes(db, content_id)
    await cache.invalidate_content()
    return {"likes_count": likes_count, "is_liked": is_liked}
