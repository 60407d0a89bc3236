"""
User service: the identity directory, account lifecycle and the follow graph.

A follow edge is one ``follows`` row: the follower's "following" set and
the followee's "followers" set are both projections of it, so following
or unfollowing is a single write inside the request transaction and the
graph cannot end up half-written.  The cached counts on both users are
recomputed from the table afterwards.
"""
import logging

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from blogcore.cache import cache
from blogcore.config import settings
from blogcore.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from blogcore.models import (
    Bookmark,
    Comment,
    ContentItem,
    ContentStatus,
    Follow,
    User,
    comment_likes,
    content_likes,
)
from blogcore.schemas import PaginatedResponse, UserCreate, UserUpdate
from blogcore.security import hash_password
from blogcore.serializers import author_to_dict, user_to_dict
from blogcore.services import content_service, counter_service
from blogcore.storage import (
    defer_media_cleanup,
    extract_public_id,
    is_data_uri,
    media_storage,
    track_uploaded_media,
)

logger = logging.getLogger(__name__)


async def _get_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User")
    return user


async def _find_edge(db: AsyncSession, follower_id: int, followee_id: int) -> Follow | None:
    result = await db.execute(
        select(Follow).where(Follow.follower_id == follower_id, Follow.followee_id == followee_id)
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------

async def create_user(db: AsyncSession, data: UserCreate) -> dict:
    """
    Register a user.  Email uniqueness is enforced by the database; a
    duplicate becomes a ConflictError.
    """
    email = data.email.strip().lower()
    existing = await db.execute(select(User.id).where(User.email == email))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("A user with this email already exists")

    user = User(
        email=email,
        display_name=data.display_name.strip(),
        password_hash=hash_password(data.password),
        bio=data.bio,
        avatar_url=data.avatar_url,
    )
    try:
        async with db.begin_nested():
            db.add(user)
            await db.flush()
    except IntegrityError as exc:
        raise ConflictError("A user with this email already exists") from exc

    logger.info("Registered user %s", user.id)
    return user_to_dict(user)


async def get_user(db: AsyncSession, user_id: int) -> dict:
    """Public profile, including the number of published items."""
    user = await _get_user(db, user_id)
    articles_count: int = (
        await db.execute(
            select(func.count())
            .select_from(ContentItem)
            .where(ContentItem.author_id == user_id, ContentItem.status == ContentStatus.PUBLISHED)
        )
    ).scalar_one()
    data = user_to_dict(user)
    data["articles_count"] = articles_count
    return data


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------

def _ensure_self(actor: User, user_id: int, action: str) -> None:
    if actor.id != user_id:
        raise AuthorizationError(f"Not authorized to {action} this account")


def _owned_media_id(url: str | None) -> str | None:
    return extract_public_id(url) if media_storage.owns(url) else None


async def update_user(db: AsyncSession, actor: User, user_id: int, data: UserUpdate) -> dict:
    """
    Partially update the caller's own profile.  A replaced avatar that
    lives in the media store is deleted once the change has committed.
    """
    _ensure_self(actor, user_id, "update")
    user = await _get_user(db, user_id)
    update_data = data.model_dump(exclude_unset=True)

    if update_data.get("display_name") is not None:
        display_name = update_data["display_name"].strip()
        if not display_name:
            raise ValidationError("display_name", "Display name is required")
        user.display_name = display_name

    if update_data.get("email") is not None:
        email = update_data["email"].strip().lower()
        if email != user.email:
            taken = await db.execute(select(User.id).where(User.email == email))
            if taken.scalar_one_or_none() is not None:
                raise ConflictError("A user with this email already exists")
            user.email = email

    if "bio" in update_data:
        user.bio = update_data["bio"]

    avatar = update_data.get("avatar")
    if "avatar" in update_data and avatar != user.avatar_url:
        replaced_media_id = _owned_media_id(user.avatar_url)
        if avatar and is_data_uri(avatar):
            stored = await media_storage.store(avatar, settings.MEDIA_AVATAR_FOLDER)
            track_uploaded_media(db, stored.public_id)
            user.avatar_url = stored.url
        elif avatar and len(avatar) > 500:
            raise ValidationError("avatar", "Avatar URL is too long")
        else:
            user.avatar_url = avatar or None
        defer_media_cleanup(db, replaced_media_id, "replaced avatar")

    try:
        async with db.begin_nested():
            await db.flush()
    except IntegrityError as exc:
        raise ConflictError("A user with this email already exists") from exc

    logger.info("User %s updated their profile", user.id)
    return user_to_dict(user)


async def delete_user(db: AsyncSession, actor: User, user_id: int) -> None:
    """
    Delete the caller's own account with everything it authored.

    Content items go through ``content_service.delete_content``.  Comments
    the user left on other people's items are removed together with the
    replies under them; likes, bookmarks and follow edges are dropped and
    every counter they fed is recounted.  The avatar and the media of the
    deleted items are queued for deletion once the transaction commits.
    """
    _ensure_self(actor, user_id, "delete")
    user = await _get_user(db, user_id)
    defer_media_cleanup(db, _owned_media_id(user.avatar_url), "avatar")

    item_ids = (
        await db.execute(select(ContentItem.id).where(ContentItem.author_id == user_id))
    ).scalars().all()
    for content_id in item_ids:
        await content_service.delete_content(db, content_id, user)

    touched_content: set[int] = set()
    own_comment_ids = (
        await db.execute(select(Comment.id).where(Comment.author_id == user_id))
    ).scalars().all()
    if own_comment_ids:
        rows = (
            await db.execute(
                select(Comment.id, Comment.content_id).where(
                    or_(Comment.id.in_(own_comment_ids), Comment.parent_id.in_(own_comment_ids))
                )
            )
        ).all()
        doomed = [comment_id for comment_id, _ in rows]
        touched_content.update(content_id for _, content_id in rows)
        await db.execute(delete(comment_likes).where(comment_likes.c.comment_id.in_(doomed)))
        # Replies first: they reference their parents.
        await db.execute(delete(Comment).where(Comment.id.in_(doomed), Comment.parent_id.is_not(None)))
        await db.execute(delete(Comment).where(Comment.id.in_(doomed)))

    liked_content = (
        await db.execute(select(content_likes.c.content_id).where(content_likes.c.user_id == user_id))
    ).scalars().all()
    liked_comments = (
        await db.execute(select(comment_likes.c.comment_id).where(comment_likes.c.user_id == user_id))
    ).scalars().all()
    await db.execute(delete(content_likes).where(content_likes.c.user_id == user_id))
    await db.execute(delete(comment_likes).where(comment_likes.c.user_id == user_id))
    await db.execute(delete(Bookmark).where(Bookmark.user_id == user_id))

    edges = (
        await db.execute(
            select(Follow.follower_id, Follow.followee_id).where(
                or_(Follow.follower_id == user_id, Follow.followee_id == user_id)
            )
        )
    ).all()
    await db.execute(
        delete(Follow).where(or_(Follow.follower_id == user_id, Follow.followee_id == user_id))
    )

    await db.delete(user)
    await db.flush()

    for content_id in touched_content:
        await counter_service.recount_comments(db, content_id)
    for content_id in liked_content:
        await counter_service.recount_content_likes(db, content_id)
    for comment_id in liked_comments:
        await counter_service.recount_comment_likes(db, comment_id)
    for other_id in {a if a != user_id else b for a, b in edges}:
        await counter_service.recount_follow_counts(db, other_id)

    logger.info("Deleted account %s with %d content item(s)", user_id, len(item_ids))
    await cache.invalidate_content()


# ---------------------------------------------------------------------------
# Follow graph
# ---------------------------------------------------------------------------

async def follow_user(db: AsyncSession, follower: User, followee_id: int) -> dict:
    if follower.id == followee_id:
        raise ValidationError("user_id", "You cannot follow yourself")
    await _get_user(db, followee_id)

    if await _find_edge(db, follower.id, followee_id) is not None:
        raise ConflictError("You are already following this user")

    try:
        async with db.begin_nested():
            db.add(Follow(follower_id=follower.id, followee_id=followee_id))
            await db.flush()
    except IntegrityError as exc:
        # Lost a race against an identical follow request.
        raise ConflictError("You are already following this user") from exc

    return await _follow_summary(db, follower.id, followee_id)


async def unfollow_user(db: AsyncSession, follower: User, followee_id: int) -> dict:
    await _get_user(db, followee_id)
    edge = await _find_edge(db, follower.id, followee_id)
    if edge is None:
        raise ConflictError("You are not following this user")

    await db.delete(edge)
    await db.flush()
    return await _follow_summary(db, follower.id, followee_id)


async def _follow_summary(db: AsyncSession, follower_id: int, followee_id: int) -> dict:
    _, following_count = await counter_service.recount_follow_counts(db, follower_id)
    followers_count, _ = await counter_service.recount_follow_counts(db, followee_id)
    return {"following_count": following_count, "followers_count": followers_count}


async def is_following(db: AsyncSession, follower: User, followee_id: int) -> dict:
    return {"is_following": await _find_edge(db, follower.id, followee_id) is not None}


async def _list_edges(
    db: AsyncSession, user_id: int, page: int, page_size: int, *, followers: bool
) -> PaginatedResponse:
    await _get_user(db, user_id)
    if followers:
        match, other = Follow.followee_id == user_id, Follow.follower_id
    else:
        match, other = Follow.follower_id == user_id, Follow.followee_id

    total: int = (
        await db.execute(select(func.count()).select_from(Follow).where(match))
    ).scalar_one()
    q = (
        select(User)
        .join(Follow, other == User.id)
        .where(match)
        .order_by(Follow.created_at.desc(), Follow.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    users = (await db.execute(q)).scalars().all()
    items = [dict(author_to_dict(u), bio=u.bio) for u in users]
    return PaginatedResponse.build(items, total, page, page_size)


async def list_followers(
    db: AsyncSession, user_id: int, page: int = 1, page_size: int = 10
) -> PaginatedResponse:
    return await _list_edges(db, user_id, page, page_size, followers=True)


async def list_following(
    db: AsyncSession, user_id: int, page: int = 1, page_size: int = 10
) -> PaginatedResponse:
    return await _list_edges(db, user_id, page, page_size, followers=False)
