from fastapi import APIRouter

from blogcore.dependencies import CurrentUser, Pagination, SessionDep
from blogcore.models import ContentKind
from blogcore.schemas import (
    CommentCreate,
    ContentCreate,
    ContentUpdate,
    Envelope,
    PaginatedEnvelope,
)
from blogcore.services import comment_service, content_service, engagement_service
from blogcore.storage import settle_media

router = APIRouter(prefix="/api/v1/content", tags=["content"])


@router.get("", response_model=PaginatedEnvelope)
async def list_content(
    pagination: Pagination,
    db: SessionDep,
    tag: str | None = None,
    category: str | None = None,
    kind: ContentKind | None = None,
    q: str | None = None,
):
    page = await content_service.list_content(
        db, pagination.page, pagination.page_size, tag=tag, category=category, kind=kind, q=q
    )
    return PaginatedEnvelope.wrap(page)


@router.get("/featured", response_model=Envelope)
async def list_featured(db: SessionDep):
    return Envelope(data=await content_service.list_featured_content(db))


@router.get("/me", response_model=PaginatedEnvelope)
async def list_mine(user: CurrentUser, pagination: Pagination, db: SessionDep):
    page = await content_service.list_my_content(db, user, pagination.page, pagination.page_size)
    return PaginatedEnvelope.wrap(page)


@router.get("/id/{content_id}", response_model=Envelope)
async def get_for_edit(content_id: int, user: CurrentUser, db: SessionDep):
    return Envelope(data=await content_service.get_content_for_author(db, content_id, user))


@router.get("/slug/{slug}", response_model=Envelope)
async def get_by_slug(slug: str, db: SessionDep):
    return Envelope(data=await content_service.get_content_by_slug(db, slug))


@router.post("", status_code=201, response_model=Envelope)
async def create_content(data: ContentCreate, user: CurrentUser, db: SessionDep):
    return Envelope(data=await content_service.create_content(db, user, data))


@router.put("/{content_id}", response_model=Envelope)
async def update_content(content_id: int, data: ContentUpdate, user: CurrentUser, db: SessionDep):
    return Envelope(data=await content_service.update_content(db, content_id, user, data))


@router.delete("/{content_id}", response_model=Envelope)
async def delete_content(content_id: int, user: CurrentUser, db: SessionDep):
    await content_service.delete_content(db, content_id, user)
    # Commit here so the response can report the media cleanup that follows it.
    await db.commit()
    return Envelope(data=await settle_media(db, committed=True))


@router.put("/{content_id}/like", response_model=Envelope)
async def toggle_like(content_id: int, user: CurrentUser, db: SessionDep):
    return Envelope(data=await content_service.toggle_content_like(db, content_id, user))


# --- Bookmarks scoped to one item ---

@router.put("/{content_id}/bookmark", response_model=Envelope)
async def toggle_bookmark(content_id: int, user: CurrentUser, db: SessionDep):
    return Envelope(data=await engagement_service.toggle_bookmark(db, user.id, content_id))


@router.get("/{content_id}/is-bookmarked", response_model=Envelope)
async def is_bookmarked(content_id: int, user: CurrentUser, db: SessionDep):
    return Envelope(data=await engagement_service.is_bookmarked(db, user.id, content_id))


# --- Comment thread of one item ---

@router.get("/{content_id}/comments", response_model=Envelope)
async def list_comments(content_id: int, db: SessionDep):
    return Envelope(data=await comment_service.list_comments(db, content_id))


@router.post("/{content_id}/comments", status_code=201, response_model=Envelope)
async def create_comment(content_id: int, data: CommentCreate, user: CurrentUser, db: SessionDep):
    return Envelope(data=await comment_service.create_comment(db, content_id, user, data))
