"""
Direct service-layer tests: business rules without HTTP in the way.

Covers what the endpoint tests cannot observe directly: the background
view increment, slug collision handling, counter reconciliation, and the
counter invariants over longer sequences of operations.
"""
import time

import pytest
from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from blogcore.errors import ConflictError, NotFoundError, ValidationError
from blogcore.models import ContentItem, ContentStatus, Follow, User, content_likes
from blogcore.schemas import CommentCreate, ContentCreate, ContentUpdate, UserCreate
from blogcore.security import create_access_token, decode_access_token, hash_password, pwd_context
from blogcore.services import (
    comment_service,
    content_service,
    counter_service,
    engagement_service,
    user_service,
)

from conftest import block_body


async def _publish(db: AsyncSession, user: User, title: str = "Service Item") -> dict:
    data = ContentCreate(title=title, body=block_body("Body text"), status=ContentStatus.PUBLISHED)
    item = await content_service.create_content(db, user, data)
    await db.commit()
    return item


# ---------------------------------------------------------------------------
# content_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_content_empty(db_session: AsyncSession):
    page = await content_service.list_content(db_session)
    assert page.total == 0
    assert page.items == []
    assert page.total_pages == 0
    assert page.has_more is False


@pytest.mark.asyncio
async def test_view_increment_lands_after_read(db_session: AsyncSession, make_user):
    user = await make_user()
    created = await _publish(db_session, user)

    first = await content_service.get_content_by_slug(db_session, created["slug"])
    assert first["view_count"] == 0

    await content_service.wait_for_background_tasks()
    stored = await db_session.execute(
        select(ContentItem.view_count).where(ContentItem.id == created["id"])
    )
    assert stored.scalar_one() == 1


@pytest.mark.asyncio
async def test_missing_slug_schedules_no_increment(db_session: AsyncSession):
    with pytest.raises(NotFoundError):
        await content_service.get_content_by_slug(db_session, "nope")
    assert not content_service._background_tasks


@pytest.mark.asyncio
async def test_same_title_same_millisecond_gets_distinct_slugs(
    db_session: AsyncSession, make_user, monkeypatch
):
    user = await make_user()
    monkeypatch.setattr(time, "time", lambda: 1718000000.0)

    a = await _publish(db_session, user, "Same Title")
    b = await _publish(db_session, user, "Same Title")
    assert a["slug"] == "same-title-1718000000000"
    assert b["slug"] == "same-title-1718000000001"


@pytest.mark.asyncio
async def test_slug_is_never_regenerated(db_session: AsyncSession, make_user):
    user = await make_user()
    created = await _publish(db_session, user, "Original")
    updated = await content_service.update_content(
        db_session, created["id"], user, ContentUpdate(title="Completely different")
    )
    assert updated["slug"] == created["slug"]


@pytest.mark.asyncio
async def test_clearing_excerpt_restores_auto_excerpt(db_session: AsyncSession, make_user):
    user = await make_user()
    created = await content_service.create_content(
        db_session, user,
        ContentCreate(title="T", body=block_body("Auto text"), excerpt="Manual"),
    )
    assert created["excerpt"] == "Manual"

    cleared = await content_service.update_content(db_session, created["id"], user, ContentUpdate(excerpt=""))
    assert cleared["excerpt"] == "Auto text"

    rebodied = await content_service.update_content(
        db_session, created["id"], user, ContentUpdate(body=block_body("Newer text"))
    )
    assert rebodied["excerpt"] == "Newer text"


@pytest.mark.asyncio
async def test_update_body_validated_against_kind(db_session: AsyncSession, make_user):
    user = await make_user()
    created = await _publish(db_session, user)
    with pytest.raises(ValidationError):
        await content_service.update_content(db_session, created["id"], user, ContentUpdate(body="plain"))


# ---------------------------------------------------------------------------
# Counter invariants
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_comments_count_tracks_non_deleted_comments(db_session: AsyncSession, make_user):
    author = await make_user("author")
    reader = await make_user("reader")
    created = await _publish(db_session, author)
    cid = created["id"]

    ids = []
    for i in range(4):
        comment = await comment_service.create_comment(db_session, cid, reader, CommentCreate(text=f"c{i}"))
        ids.append(comment["id"])
    await comment_service.delete_comment(db_session, ids[1], reader)
    await comment_service.delete_comment(db_session, ids[1], author)
    result = await comment_service.delete_comment(db_session, ids[3], author)
    await comment_service.create_comment(db_session, cid, author, CommentCreate(text="late", parent_comment_id=ids[0]))

    item = await db_session.get(ContentItem, cid)
    assert result["comments_count"] == 2
    assert item.comments_count == 3


@pytest.mark.asyncio
async def test_like_toggles_are_involutions(db_session: AsyncSession, make_user):
    author = await make_user("author")
    fan = await make_user("fan")
    created = await _publish(db_session, author)

    for expected_liked, expected_count in [(True, 1), (False, 0), (True, 1), (False, 0)]:
        result = await content_service.toggle_content_like(db_session, created["id"], fan)
        assert result == {"likes_count": expected_count, "is_liked": expected_liked}

    for expected in (True, False):
        result = await engagement_service.toggle_bookmark(db_session, fan.id, created["id"])
        assert result["is_bookmarked"] is expected


@pytest.mark.asyncio
async def test_reconcile_all_repairs_drift(db_session: AsyncSession, make_user):
    author = await make_user("author")
    fan = await make_user("fan")
    created = await _publish(db_session, author)
    await content_service.toggle_content_like(db_session, created["id"], fan)
    await user_service.follow_user(db_session, fan, author.id)
    await db_session.commit()

    await db_session.execute(
        update(ContentItem.__table__).values(likes_count=7, comments_count=3)
    )
    await db_session.execute(update(User.__table__).values(followers_count=9))
    await db_session.commit()
    db_session.expunge_all()

    drift = await counter_service.reconcile_all(db_session)
    await db_session.commit()
    assert drift == {"content_items": 1, "comments": 0, "users": 2}

    db_session.expunge_all()
    item = await db_session.get(ContentItem, created["id"])
    assert (item.likes_count, item.comments_count) == (1, 0)
    refreshed_author = await db_session.get(User, author.id)
    assert refreshed_author.followers_count == 1

    assert await counter_service.reconcile_all(db_session) == {"content_items": 0, "comments": 0, "users": 0}


# ---------------------------------------------------------------------------
# comment_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_comment_not_found(db_session: AsyncSession):
    with pytest.raises(NotFoundError):
        await comment_service.get_comment(db_session, 12345)


# ---------------------------------------------------------------------------
# user_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_user_hashes_password(db_session: AsyncSession):
    created = await user_service.create_user(
        db_session, UserCreate(email="svc@example.com", display_name=" Svc ", password="hunter22")
    )
    assert created["display_name"] == "Svc"
    user = await db_session.get(User, created["id"])
    assert user.password_hash != "hunter22"
    assert pwd_context.verify("hunter22", user.password_hash)

    with pytest.raises(ConflictError):
        await user_service.create_user(
            db_session, UserCreate(email="SVC@example.com", display_name="Other", password="hunter22")
        )


@pytest.mark.asyncio
async def test_follow_is_single_edge(db_session: AsyncSession, make_user):
    ana = await make_user("ana")
    ben = await make_user("ben")

    await user_service.follow_user(db_session, ana, ben.id)
    assert (await user_service.is_following(db_session, ana, ben.id))["is_following"] is True
    assert (await user_service.is_following(db_session, ben, ana.id))["is_following"] is False

    followers = await user_service.list_followers(db_session, ben.id)
    following = await user_service.list_following(db_session, ana.id)
    assert [u["id"] for u in followers.items] == [ana.id]
    assert [u["id"] for u in following.items] == [ben.id]

    with pytest.raises(ValidationError):
        await user_service.follow_user(db_session, ana, ana.id)
    with pytest.raises(NotFoundError):
        await user_service.list_followers(db_session, 999)


# ---------------------------------------------------------------------------
# security
# ---------------------------------------------------------------------------

def test_access_token_round_trip():
    assert decode_access_token(create_access_token(42)) == 42


def test_invalid_or_expired_tokens_decode_to_none():
    from datetime import timedelta

    assert decode_access_token("garbage") is None
    assert decode_access_token(create_access_token(1, expires_delta=timedelta(seconds=-5))) is None


def test_password_hash_verifies():
    hashed = hash_password("s3cret!")
    assert pwd_context.verify("s3cret!", hashed)
    assert not pwd_context.verify("wrong", hashed)


# ---------------------------------------------------------------------------
# Concurrent duplicates
# ---------------------------------------------------------------------------

class _NothingFound:
    def scalar_one(self):
        return 0

    def scalar_one_or_none(self):
        return None


def _miss_next_lookup(monkeypatch, db: AsyncSession) -> None:
    """
    Make the next ``execute`` on *db* report that nothing exists, the way a
    request racing an identical one sees the table before the other insert.
    """
    real_execute = db.execute
    state = {"missed": False}

    async def execute(statement, *args, **kwargs):
        if not state["missed"]:
            state["missed"] = True
            return _NothingFound()
        return await real_execute(statement, *args, **kwargs)

    monkeypatch.setattr(db, "execute", execute)


@pytest.mark.asyncio
async def test_duplicate_insert_in_toggle_reports_present(
    db_session: AsyncSession, make_user, monkeypatch
):
    author = await make_user("author")
    fan = await make_user("fan")
    created = await _publish(db_session, author)
    await db_session.execute(insert(content_likes).values(content_id=created["id"], user_id=fan.id))
    await db_session.commit()

    _miss_next_lookup(monkeypatch, db_session)
    present = await engagement_service.toggle_membership(
        db_session, content_likes, content_id=created["id"], user_id=fan.id
    )
    await db_session.commit()

    assert present is True
    rows = await db_session.execute(
        select(func.count()).select_from(content_likes).where(content_likes.c.content_id == created["id"])
    )
    assert rows.scalar_one() == 1


@pytest.mark.asyncio
async def test_duplicate_follow_insert_is_conflict(db_session: AsyncSession, make_user, monkeypatch):
    ana = await make_user("ana")
    ben = await make_user("ben")
    await user_service.follow_user(db_session, ana, ben.id)
    await db_session.commit()

    _miss_next_lookup(monkeypatch, db_session)
    with pytest.raises(ConflictError):
        await user_service.follow_user(db_session, ana, ben.id)

    edges = await db_session.execute(
        select(func.count()).select_from(Follow).where(Follow.follower_id == ana.id)
    )
    assert edges.scalar_one() == 1
