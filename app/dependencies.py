from fastapi import Depends, Header, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.models import User
from app.services import user_service
from app.services.article_queries import ArticleFilters

TOKEN_SCHEME = "Token"


class PaginationParams:
    """
    Reusable FastAPI dependency for ``offset`` / ``limit``.

    Values are only required to be non-negative.  An offset past the last
    article yields an empty page, not an error.
    """

    def __init__(
        self,
        offset: int = Query(0, ge=0, description="Number of articles to skip."),
        limit: int = Query(
            settings.DEFAULT_LIMIT,
            ge=0,
            description="Maximum number of articles to return.",
        ),
    ) -> None:
        self.offset = offset
        self.limit = limit


class ArticleListParams(PaginationParams):
    """
    Pagination plus the list filters.  Each filter may be repeated
    (``?tag=a&tag=b``); values within one filter are alternatives.
    """

    def __init__(
        self,
        offset: int = Query(0, ge=0),
        limit: int = Query(settings.DEFAULT_LIMIT, ge=0),
        tag: list[str] | None = Query(None, description="Tag names."),
        author: list[str] | None = Query(None, description="Author usernames."),
        favorited: list[str] | None = Query(None, description="Usernames who favorited."),
    ) -> None:
        super().__init__(offset, limit)
        self.filters = ArticleFilters(
            tag=tuple(tag or ()),
            author=tuple(author or ()),
            favorited=tuple(favorited or ()),
        )


async def get_viewer(
    authorization: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
) -> User | None:
    """
    Resolve the caller from ``Authorization: Token <user id>``.

    The token is issued and verified by the authentication service in
    front of this API; here it is only mapped to a user row.  A missing or
    unknown token means an anonymous viewer.
    """
    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme != TOKEN_SCHEME or not credentials.strip():
        return None
    return await user_service.get_user(db, credentials.strip())


async def require_user(viewer: User | None = Depends(get_viewer)) -> User:
    if viewer is None:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": TOKEN_SCHEME},
        )
    return viewer
