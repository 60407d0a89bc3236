from fastapi import APIRouter

from blogcore.dependencies import CurrentUser, Pagination, SessionDep
from blogcore.schemas import Envelope, PaginatedEnvelope, UserCreate, UserUpdate
from blogcore.services import user_service
from blogcore.storage import settle_media

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.post("", status_code=201, response_model=Envelope)
async def create_user(data: UserCreate, db: SessionDep):
    return Envelope(data=await user_service.create_user(db, data))


@router.get("/{user_id}", response_model=Envelope)
async def get_user(user_id: int, db: SessionDep):
    return Envelope(data=await user_service.get_user(db, user_id))


@router.put("/{user_id}", response_model=Envelope)
async def update_user(user_id: int, data: UserUpdate, user: CurrentUser, db: SessionDep):
    return Envelope(data=await user_service.update_user(db, user, user_id, data))


@router.delete("/{user_id}", response_model=Envelope)
async def delete_user(user_id: int, user: CurrentUser, db: SessionDep):
    await user_service.delete_user(db, user, user_id)
    # Commit here so the response can report the media cleanup that follows it.
    await db.commit()
    return Envelope(data=await settle_media(db, committed=True))


@router.get("/{user_id}/followers", response_model=PaginatedEnvelope)
async def list_followers(user_id: int, pagination: Pagination, db: SessionDep):
    page = await user_service.list_followers(db, user_id, pagination.page, pagination.page_size)
    return PaginatedEnvelope.wrap(page)


@router.get("/{user_id}/following", response_model=PaginatedEnvelope)
async def list_following(user_id: int, pagination: Pagination, db: SessionDep):
    page = await user_service.list_following(db, user_id, pagination.page, pagination.page_size)
    return PaginatedEnvelope.wrap(page)


# --- Follow graph (acting as the caller) ---

@router.post("/{user_id}/follow", response_model=Envelope)
async def follow(user_id: int, user: CurrentUser, db: SessionDep):
    return Envelope(data=await user_service.follow_user(db, user, user_id))


@router.delete("/{user_id}/follow", response_model=Envelope)
async def unfollow(user_id: int, user: CurrentUser, db: SessionDep):
    return Envelope(data=await user_service.unfollow_user(db, user, user_id))


@router.get("/{user_id}/is-following", response_model=Envelope)
async def is_following(user_id: int, user: CurrentUser, db: SessionDep):
    return Envelope(data=await user_service.is_following(db, user, user_id))
