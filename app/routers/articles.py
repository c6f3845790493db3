from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import ArticleListParams, PaginationParams, get_viewer, require_user
from app.models import User
from app.schemas import (
    ArticleCreateRequest,
    ArticleEnvelope,
    ArticleListResponse,
    ArticleUpdateRequest,
)
from app.services import article_service
from app.services.article_rows import ArticlePage, ArticleRecord, to_public

router = APIRouter(prefix="/api/articles", tags=["articles"])


def _page(page: ArticlePage) -> ArticleListResponse:
    return ArticleListResponse(
        articles=[to_public(a) for a in page.articles],
        articles_count=page.articles_count,
    )


def _one(record: ArticleRecord) -> ArticleEnvelope:
    return ArticleEnvelope(article=to_public(record))


@router.get("", response_model=ArticleListResponse)
async def list_articles(
    params: ArticleListParams = Depends(),
    viewer: User | None = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
):
    page = await article_service.list_articles(
        db, params.filters, params.offset, params.limit, viewer.id if viewer else None
    )
    return _page(page)


@router.get("/feed", response_model=ArticleListResponse)
async def feed(
    pagination: PaginationParams = Depends(),
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    page = await article_service.feed_articles(db, user.id, pagination.offset, pagination.limit)
    return _page(page)


@router.get("/{slug}", response_model=ArticleEnvelope)
async def get_article(
    slug: str,
    viewer: User | None = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
):
    return _one(await article_service.get_article(db, slug, viewer.id if viewer else None))


@router.post("", status_code=201, response_model=ArticleEnvelope)
async def create_article(
    data: ArticleCreateRequest,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    return _one(await article_service.create_article(db, user, data.article))


@router.put("/{slug}", response_model=ArticleEnvelope)
async def update_article(
    slug: str,
    data: ArticleUpdateRequest,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    return _one(await article_service.update_article(db, slug, user, data.article))


@router.delete("/{slug}")
async def delete_article(
    slug: str,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    await article_service.delete_article(db, slug, user)
    return {}


@router.post("/{slug}/favorite", response_model=ArticleEnvelope)
async def favorite_article(
    slug: str,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    return _one(await article_service.favorite_article(db, slug, user))


@router.delete("/{slug}/favorite", response_model=ArticleEnvelope)
async def unfavorite_article(
    slug: str,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    return _one(await article_service.unfavorite_article(db, slug, user))
