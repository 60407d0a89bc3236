"""
Engagement service: membership relations scoped to ``(user, target)``.

Content likes, comment likes and bookmarks all share one toggle:

1. Look the relation up.
2. Present → delete it and report "removed".
3. Absent → insert it inside a SAVEPOINT.  The relation's unique key turns
   a concurrent duplicate insert into an ``IntegrityError``, which only
   means the row is already there; it is reported as "added", never as a
   server error.

Toggles never cascade.  Callers recount any cached counter afterwards.
"""
import logging

from sqlalchemy import Table, and_, delete, func, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from blogcore.errors import NotFoundError
from blogcore.models import Bookmark, ContentItem
from blogcore.schemas import PaginatedResponse
from blogcore.serializers import content_to_dict

logger = logging.getLogger(__name__)


async def toggle_membership(db: AsyncSession, table: Table, **keys) -> bool:
    """
    Flip the membership row identified by *keys* in *table*.

    Returns True when the relation exists after the call, False when it
    was removed.
    """
    match = and_(*(table.c[name] == value for name, value in keys.items()))
    existing = (await db.execute(select(func.count()).select_from(table).where(match))).scalar_one()

    if existing:
        await db.execute(delete(table).where(match))
        return False

    try:
        async with db.begin_nested():
            await db.execute(insert(table).values(**keys))
    except IntegrityError:
        logger.info("Concurrent duplicate on %s %r; already present", table.name, keys)
    return True


async def has_membership(db: AsyncSession, table: Table, **keys) -> bool:
    match = and_(*(table.c[name] == value for name, value in keys.items()))
    return (await db.execute(select(func.count()).select_from(table).where(match))).scalar_one() > 0


# ---------------------------------------------------------------------------
# Bookmarks
# ---------------------------------------------------------------------------

async def _ensure_content_exists(db: AsyncSession, content_id: int) -> None:
    found = await db.execute(select(ContentItem.id).where(ContentItem.id == content_id))
    if found.scalar_one_or_none() is None:
        raise NotFoundError("Content")


async def toggle_bookmark(db: AsyncSession, user_id: int, content_id: int) -> dict:
    await _ensure_content_exists(db, content_id)
    bookmarked = await toggle_membership(
        db, Bookmark.__table__, user_id=user_id, content_id=content_id
    )
    return {
        "is_bookmarked": bookmarked,
        "message": "Bookmark added" if bookmarked else "Bookmark removed",
    }


async def is_bookmarked(db: AsyncSession, user_id: int, content_id: int) -> dict:
    return {
        "is_bookmarked": await has_membership(
            db, Bookmark.__table__, user_id=user_id, content_id=content_id
        )
    }


async def list_bookmarks(
    db: AsyncSession, user_id: int, page: int = 1, page_size: int = 10
) -> PaginatedResponse:
    """The caller's bookmarked content items, most recently bookmarked first."""
    total: int = (
        await db.execute(
            select(func.count()).select_from(Bookmark).where(Bookmark.user_id == user_id)
        )
    ).scalar_one()

    q = (
        select(Bookmark)
        .where(Bookmark.user_id == user_id)
        .options(
            joinedload(Bookmark.content_item).joinedload(ContentItem.author),
            joinedload(Bookmark.content_item).selectinload(ContentItem.tags),
        )
        .order_by(Bookmark.created_at.desc(), Bookmark.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    bookmarks = (await db.execute(q)).unique().scalars().all()

    items = []
    for bookmark in bookmarks:
        data = content_to_dict(bookmark.content_item)
        data["bookmark_id"] = bookmark.id
        data["bookmarked_at"] = bookmark.created_at.isoformat() if bookmark.created_at else None
        items.append(data)

    return PaginatedResponse.build(items, total, page, page_size)


async def remove_bookmark(db: AsyncSession, user_id: int, bookmark_id: int) -> None:
    """Delete one of the caller's bookmarks by id."""
    result = await db.execute(
        select(Bookmark).where(Bookmark.id == bookmark_id, Bookmark.user_id == user_id)
    )
    bookmark = result.scalar_one_or_none()
    if bookmark is None:
        raise NotFoundError("Bookmark")
    await db.delete(bookmark)
    await db.flush()
