from fastapi import APIRouter
from sqlalchemy import func, select

from blogcore.cache import cache
from blogcore.dependencies import SessionDep
from blogcore.models import Bookmark, Comment, CommentStatus, ContentItem, ContentStatus, User
from blogcore.schemas import MetricsResponse

router = APIRouter(prefix="/api/v1/metrics", tags=["metrics"])


async def _count(db, model, *where) -> int:
    q = select(func.count()).select_from(model)
    if where:
        q = q.where(*where)
    return (await db.execute(q)).scalar_one()


@router.get("", response_model=MetricsResponse)
async def get_metrics(db: SessionDep):
    total_content = await _count(db, ContentItem)
    total_comments = await _count(db, Comment)
    avg_comments = total_comments / total_content if total_content > 0 else 0

    return MetricsResponse(
        total_content=total_content,
        published_content=await _count(db, ContentItem, ContentItem.status == ContentStatus.PUBLISHED),
        total_comments=total_comments,
        deleted_comments=await _count(db, Comment, Comment.status == CommentStatus.DELETED),
        total_users=await _count(db, User),
        total_bookmarks=await _count(db, Bookmark),
        avg_comments_per_item=round(avg_comments, 2),
        cache_info=cache.stats,
    )
