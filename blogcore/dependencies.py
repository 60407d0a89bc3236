from typing import Annotated

from fastapi import Depends, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from blogcore.config import settings
from blogcore.database import get_db
from blogcore.errors import AuthenticationError
from blogcore.models import User
from blogcore.security import decode_access_token

# auto_error=False so a missing header goes through AuthenticationError and
# gets the same 401 envelope as a bad token.
bearer_scheme = HTTPBearer(auto_error=False)

SessionDep = Annotated[AsyncSession, Depends(get_db)]


class PaginationParams:
    """
    Reusable dependency that parses ``page`` / ``page_size`` query
    parameters.

    Attributes
    ----------
    page:
        1-based page number (minimum 1).
    page_size:
        Items per page, clamped to ``settings.MAX_PAGE_SIZE`` regardless of
        the value supplied by the caller.
    offset:
        SQL OFFSET derived from *page* and *page_size*.
    """

    def __init__(
        self,
        page: int = Query(1, ge=1, description="Page number (1-based)."),
        page_size: int = Query(
            settings.DEFAULT_PAGE_SIZE,
            ge=1,
            le=100,
            description="Number of items returned per page (max 100).",
        ),
    ) -> None:
        self.page = page
        self.page_size = min(page_size, settings.MAX_PAGE_SIZE)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    db: SessionDep,
) -> User:
    """Resolve the bearer token to a persisted user or fail with 401."""
    if credentials is None:
        raise AuthenticationError("Not authorized to access this route. Please log in.")

    user_id = decode_access_token(credentials.credentials)
    if user_id is None:
        raise AuthenticationError("Not authorized. Invalid token.")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise AuthenticationError("User not found. Please log in again.")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]
Pagination = Annotated[PaginationParams, Depends(PaginationParams)]
