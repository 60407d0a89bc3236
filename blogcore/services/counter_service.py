"""
Counter service: cached counters as materialized views.

Every cached counter (likes, comments, follower/following counts) is
recomputed from its source relation with a fresh COUNT and written back;
nothing is ever incremented or decremented in place.  A recount that lost
a race against a concurrent write is corrected by the next recount or by
``reconcile_all``.

Functions flush but never commit.
"""
import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from blogcore.models import (
    Comment,
    CommentStatus,
    ContentItem,
    Follow,
    User,
    comment_likes,
    content_likes,
)

logger = logging.getLogger(__name__)


async def _write_back(db: AsyncSession, model, pk: int, **values) -> None:
    # Through the identity map so in-session instances see the new value.
    instance = await db.get(model, pk)
    if instance is None:
        return
    for name, value in values.items():
        setattr(instance, name, value)
    await db.flush()


async def recount_comments(db: AsyncSession, content_id: int) -> int:
    """Write the number of non-deleted comments into ``comments_count``."""
    count_q = (
        select(func.count())
        .select_from(Comment)
        .where(Comment.content_id == content_id, Comment.status == CommentStatus.NORMAL)
    )
    count: int = (await db.execute(count_q)).scalar_one()
    await _write_back(db, ContentItem, content_id, comments_count=count)
    return count


async def recount_content_likes(db: AsyncSession, content_id: int) -> int:
    count_q = (
        select(func.count())
        .select_from(content_likes)
        .where(content_likes.c.content_id == content_id)
    )
    count: int = (await db.execute(count_q)).scalar_one()
    await _write_back(db, ContentItem, content_id, likes_count=count)
    return count


async def recount_comment_likes(db: AsyncSession, comment_id: int) -> int:
    count_q = (
        select(func.count())
        .select_from(comment_likes)
        .where(comment_likes.c.comment_id == comment_id)
    )
    count: int = (await db.execute(count_q)).scalar_one()
    await _write_back(db, Comment, comment_id, likes_count=count)
    return count


async def recount_follow_counts(db: AsyncSession, user_id: int) -> tuple[int, int]:
    """Return ``(followers_count, following_count)`` after writing both."""
    followers_q = select(func.count()).select_from(Follow).where(Follow.followee_id == user_id)
    following_q = select(func.count()).select_from(Follow).where(Follow.follower_id == user_id)
    followers: int = (await db.execute(followers_q)).scalar_one()
    following: int = (await db.execute(following_q)).scalar_one()
    await _write_back(db, User, user_id, followers_count=followers, following_count=following)
    return followers, following


async def reconcile_all(db: AsyncSession) -> dict[str, int]:
    """
    Recompute every cached counter from source truth.

    Returns how many rows of each kind had a drifted value, which is what
    the reconciliation job logs.
    """
    drift = {"content_items": 0, "comments": 0, "users": 0}

    items = (
        await db.execute(select(ContentItem.id, ContentItem.comments_count, ContentItem.likes_count))
    ).all()
    for content_id, cached_comments, cached_likes in items:
        comments = await recount_comments(db, content_id)
        likes = await recount_content_likes(db, content_id)
        if comments != cached_comments or likes != cached_likes:
            drift["content_items"] += 1

    comments_rows = (await db.execute(select(Comment.id, Comment.likes_count))).all()
    for comment_id, cached_likes in comments_rows:
        if await recount_comment_likes(db, comment_id) != cached_likes:
            drift["comments"] += 1

    users = (
        await db.execute(select(User.id, User.followers_count, User.following_count))
    ).all()
    for user_id, cached_followers, cached_following in users:
        if await recount_follow_counts(db, user_id) != (cached_followers, cached_following):
            drift["users"] += 1

    logger.info(
        "Counter reconciliation: %d item(s), %d comment(s), %d user(s) corrected",
        drift["content_items"],
        drift["comments"],
        drift["users"],
    )
    return drift
