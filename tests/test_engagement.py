"""
Engagement tests: content likes and bookmarks.  Every toggle is an
involution: applying it twice restores the original membership and count.
"""
import pytest
from httpx import AsyncClient

from conftest import block_body


async def _publish(client: AsyncClient, headers: dict, title: str = "Likeable") -> dict:
    resp = await client.post(
        "/api/v1/content",
        json={"title": title, "body": block_body("Body"), "status": "published"},
        headers=headers,
    )
    return resp.json()["data"]


# ---------------------------------------------------------------------------
# Content likes
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_content_like_toggle_is_involution(async_client: AsyncClient, api_user):
    _, author = await api_user("author")
    _, fan = await api_user("fan")
    content = await _publish(async_client, author)
    url = f"/api/v1/content/{content['id']}/like"

    liked = (await async_client.put(url, headers=fan)).json()["data"]
    assert liked == {"likes_count": 1, "is_liked": True}

    unliked = (await async_client.put(url, headers=fan)).json()["data"]
    assert unliked == {"likes_count": 0, "is_liked": False}


@pytest.mark.asyncio
async def test_likes_from_several_users_are_counted(async_client: AsyncClient, api_user):
    _, author = await api_user("author")
    content = await _publish(async_client, author)
    url = f"/api/v1/content/{content['id']}/like"

    for name in ("a", "b", "c"):
        _, headers = await api_user(name)
        await async_client.put(url, headers=headers)

    listed = (await async_client.get("/api/v1/content")).json()["data"][0]
    assert listed["likes_count"] == 3


@pytest.mark.asyncio
async def test_like_unknown_content_is_404(async_client: AsyncClient, api_user):
    _, headers = await api_user()
    resp = await async_client.put("/api/v1/content/404/like", headers=headers)
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Bookmarks
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_bookmark_toggle_and_status(async_client: AsyncClient, api_user):
    _, headers = await api_user()
    content = await _publish(async_client, headers)
    cid = content["id"]

    added = (await async_client.put(f"/api/v1/content/{cid}/bookmark", headers=headers)).json()["data"]
    assert added == {"is_bookmarked": True, "message": "Bookmark added"}
    status = (await async_client.get(f"/api/v1/content/{cid}/is-bookmarked", headers=headers)).json()
    assert status["data"] == {"is_bookmarked": True}

    removed = (await async_client.put(f"/api/v1/content/{cid}/bookmark", headers=headers)).json()["data"]
    assert removed == {"is_bookmarked": False, "message": "Bookmark removed"}
    status = (await async_client.get(f"/api/v1/content/{cid}/is-bookmarked", headers=headers)).json()
    assert status["data"] == {"is_bookmarked": False}


@pytest.mark.asyncio
async def test_bookmark_list_is_per_user_and_newest_first(async_client: AsyncClient, api_user):
    _, ana = await api_user("ana")
    _, ben = await api_user("ben")
    first = await _publish(async_client, ana, "First")
    second = await _publish(async_client, ana, "Second")

    await async_client.put(f"/api/v1/content/{first['id']}/bookmark", headers=ana)
    await async_client.put(f"/api/v1/content/{second['id']}/bookmark", headers=ana)
    await async_client.put(f"/api/v1/content/{first['id']}/bookmark", headers=ben)

    body = (await async_client.get("/api/v1/bookmarks", headers=ana)).json()
    assert body["total"] == 2
    assert [b["title"] for b in body["data"]] == ["Second", "First"]
    assert body["data"][0]["bookmark_id"] is not None
    assert body["data"][0]["author"]["display_name"] == "Ana"

    ben_body = (await async_client.get("/api/v1/bookmarks", headers=ben)).json()
    assert [b["title"] for b in ben_body["data"]] == ["First"]


@pytest.mark.asyncio
async def test_remove_bookmark_by_id(async_client: AsyncClient, api_user):
    _, ana = await api_user("ana")
    _, ben = await api_user("ben")
    content = await _publish(async_client, ana)
    await async_client.put(f"/api/v1/content/{content['id']}/bookmark", headers=ana)
    bookmark_id = (await async_client.get("/api/v1/bookmarks", headers=ana)).json()["data"][0]["bookmark_id"]

    resp = await async_client.delete(f"/api/v1/bookmarks/{bookmark_id}", headers=ben)
    assert resp.status_code == 404

    resp = await async_client.delete(f"/api/v1/bookmarks/{bookmark_id}", headers=ana)
    assert resp.status_code == 200
    assert (await async_client.get("/api/v1/bookmarks", headers=ana)).json()["total"] == 0


@pytest.mark.asyncio
async def test_bookmark_requires_auth_and_existing_content(async_client: AsyncClient, api_user):
    _, headers = await api_user()
    assert (await async_client.get("/api/v1/bookmarks")).status_code == 401
    assert (await async_client.put("/api/v1/content/77/bookmark", headers=headers)).status_code == 404


@pytest.mark.asyncio
async def test_deleting_content_removes_its_engagement(async_client: AsyncClient, api_user):
    _, author = await api_user("author")
    _, fan = await api_user("fan")
    content = await _publish(async_client, author)
    cid = content["id"]
    await async_client.put(f"/api/v1/content/{cid}/like", headers=fan)
    await async_client.put(f"/api/v1/content/{cid}/bookmark", headers=fan)

    resp = await async_client.delete(f"/api/v1/content/{cid}", headers=author)
    assert resp.status_code == 200
    assert (await async_client.get("/api/v1/bookmarks", headers=fan)).json()["total"] == 0
