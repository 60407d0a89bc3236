from fastapi import APIRouter

from blogcore.dependencies import CurrentUser, SessionDep
from blogcore.schemas import CommentUpdate, Envelope
from blogcore.services import comment_service

router = APIRouter(prefix="/api/v1/comments", tags=["comments"])


@router.get("/{comment_id}", response_model=Envelope)
async def get_comment(comment_id: int, db: SessionDep):
    return Envelope(data=await comment_service.get_comment(db, comment_id))


@router.put("/{comment_id}", response_model=Envelope)
async def update_comment(comment_id: int, data: CommentUpdate, user: CurrentUser, db: SessionDep):
    return Envelope(data=await comment_service.update_comment(db, comment_id, user, data))


@router.delete("/{comment_id}", response_model=Envelope)
async def delete_comment(comment_id: int, user: CurrentUser, db: SessionDep):
    return Envelope(data=await comment_service.delete_comment(db, comment_id, user))


@router.put("/{comment_id}/like", response_model=Envelope)
async def toggle_like(comment_id: int, user: CurrentUser, db: SessionDep):
    return Envelope(data=await comment_service.toggle_comment_like(db, comment_id, user))
