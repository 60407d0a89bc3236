from fastapi import APIRouter

from blogcore.dependencies import CurrentUser, Pagination, SessionDep
from blogcore.schemas import Envelope, PaginatedEnvelope
from blogcore.services import engagement_service

router = APIRouter(prefix="/api/v1/bookmarks", tags=["bookmarks"])


@router.get("", response_model=PaginatedEnvelope)
async def list_bookmarks(user: CurrentUser, pagination: Pagination, db: SessionDep):
    page = await engagement_service.list_bookmarks(
        db, user.id, pagination.page, pagination.page_size
    )
    return PaginatedEnvelope.wrap(page)


@router.delete("/{bookmark_id}", response_model=Envelope)
async def remove_bookmark(bookmark_id: int, user: CurrentUser, db: SessionDep):
    await engagement_service.remove_bookmark(db, user.id, bookmark_id)
    return Envelope(data={"message": "Bookmark removed"})
