"""
Comment service: threaded comments on content items.

Threads are one level deep in the read model: a comment is either
top-level (``parent_id`` is None) or a reply to a top-level comment.  A
reply to a reply is attached to its top-level ancestor.

Deletion is soft: the comment's ``status`` becomes ``deleted`` and its
text is replaced by ``TOMBSTONE_TEXT``, but the row keeps its id and its
place in the thread.  Replies of a deleted comment stay visible under its
tombstone.

Counter sync: every create and every delete transition recounts the
item's non-deleted comments (``counter_service.recount_comments``) before
the operation returns, inside the same transaction.
"""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from blogcore.cache import cache
from blogcore.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from blogcore.models import (
    TOMBSTONE_TEXT,
    Comment,
    CommentStatus,
    ContentItem,
    User,
    comment_likes,
)
from blogcore.schemas import CommentCreate, CommentUpdate
from blogcore.serializers import comment_to_dict
from blogcore.services import counter_service, engagement_service

logger = logging.getLogger(__name__)


async def _get_content(db: AsyncSession, content_id: int) -> ContentItem:
    result = await db.execute(select(ContentItem).where(ContentItem.id == content_id))
    item = result.scalar_one_or_none()
    if item is None:
        raise NotFoundError("Content")
    return item


async def _get_comment(db: AsyncSession, comment_id: int) -> Comment:
    result = await db.execute(
        select(Comment).where(Comment.id == comment_id).options(joinedload(Comment.author))
    )
    comment = result.scalar_one_or_none()
    if comment is None:
        raise NotFoundError("Comment")
    return comment


async def _sync_comment_count(db: AsyncSession, content_id: int) -> int:
    count = await counter_service.recount_comments(db, content_id)
    await cache.invalidate_content()
    return count


def _require_text(text: str | None) -> str:
    if text is None or not text.strip():
        raise ValidationError("text", "Comment text is required")
    return text.strip()


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def list_comments(db: AsyncSession, content_id: int) -> list[dict]:
    """
    Return the thread of *content_id*: top-level comments newest first,
    each carrying ``replies`` oldest first.

    Deleted top-level comments are left out unless they still have
    replies, in which case they appear as tombstones so the replies keep
    their place.  Deleted replies stay in their parent's list as
    tombstones.
    """
    await _get_content(db, content_id)

    q = (
        select(Comment)
        .where(Comment.content_id == content_id)
        .options(joinedload(Comment.author))
        .order_by(Comment.created_at.asc(), Comment.id.asc())
    )
    comments = (await db.execute(q)).scalars().all()

    top_level = [c for c in comments if c.parent_id is None]
    replies_by_parent: dict[int, list[dict]] = {c.id: [] for c in top_level}
    for comment in comments:
        if comment.parent_id in replies_by_parent:
            replies_by_parent[comment.parent_id].append(comment_to_dict(comment))

    thread = []
    for comment in reversed(top_level):
        replies = replies_by_parent[comment.id]
        if comment.is_deleted and not replies:
            continue
        data = comment_to_dict(comment)
        data["replies"] = replies
        data["replies_count"] = len(replies)
        thread.append(data)
    return thread


async def get_comment(db: AsyncSession, comment_id: int) -> dict:
    return comment_to_dict(await _get_comment(db, comment_id))


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

async def create_comment(
    db: AsyncSession, content_id: int, user: User, data: CommentCreate
) -> dict:
    text = _require_text(data.text)
    await _get_content(db, content_id)

    parent_id = None
    if data.parent_comment_id is not None:
        parent = await db.get(Comment, data.parent_comment_id)
        if parent is None or parent.content_id != content_id:
            raise NotFoundError("Parent comment")
        parent_id = parent.parent_id if parent.parent_id is not None else parent.id

    comment = Comment(
        text=text,
        content_id=content_id,
        author=user,
        parent_id=parent_id,
        status=CommentStatus.NORMAL,
    )
    db.add(comment)
    await db.flush()

    await _sync_comment_count(db, content_id)
    logger.info("User %s commented %s on content %s", user.id, comment.id, content_id)
    return comment_to_dict(comment)


async def update_comment(
    db: AsyncSession, comment_id: int, user: User, data: CommentUpdate
) -> dict:
    comment = await _get_comment(db, comment_id)
    if comment.author_id != user.id:
        raise AuthorizationError("Not authorized to update this comment")
    if comment.is_deleted:
        raise ConflictError("A deleted comment cannot be edited")

    comment.text = _require_text(data.text)
    await db.flush()
    return comment_to_dict(comment)


async def delete_comment(db: AsyncSession, comment_id: int, user: User) -> dict:
    """
    Soft-delete a comment.  Allowed for the comment's author and for the
    author of the content item it belongs to.  Deleting an already
    deleted comment changes nothing.
    """
    comment = await _get_comment(db, comment_id)
    item = await _get_content(db, comment.content_id)
    if user.id not in (comment.author_id, item.author_id):
        raise AuthorizationError("Not authorized to delete this comment")

    if not comment.is_deleted:
        comment.status = CommentStatus.DELETED
        comment.text = TOMBSTONE_TEXT
        await db.flush()
        logger.info("User %s deleted comment %s", user.id, comment.id)

    comments_count = await _sync_comment_count(db, comment.content_id)
    return {"comment": comment_to_dict(comment), "comments_count": comments_count}


async def toggle_comment_like(db: AsyncSession, comment_id: int, user: User) -> dict:
    comment = await _get_comment(db, comment_id)
    if comment.is_deleted:
        raise ConflictError("A deleted comment cannot be liked")

    is_liked = await engagement_service.toggle_membership(
        db, comment_likes, comment_id=comment.id, user_id=user.id
    )
    likes_count = await counter_service.recount_comment_likes(db, comment.id)
    return {"likes_count": likes_count, "is_liked": is_liked}
