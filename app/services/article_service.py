"""
Article service: reads through the query builder and materializer, and
the multi-statement write paths for the Article aggregate.

Design notes
------------
- Service functions never commit.  The request transaction is owned by
  ``get_db``; statements that may legitimately fail on a unique key run
  inside a SAVEPOINT (``begin_nested``) so the failure can be inspected
  and the transaction continues.
- Slug collisions are retried exactly once with a random suffix.  A
  second collision raises ``ConflictError``.  Every other store error
  propagates unchanged.
- The favorite row and ``favorites_count`` always change in the same
  SAVEPOINT, and the decrement is the number of rows actually deleted, so
  the counter tracks the favorites table even under racing requests.
- Mutations return the article re-read through the query builder, from
  the caller's point of view.
"""
import logging
import re
import unicodedata
import uuid
from collections.abc import Callable

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.errors import ConflictError, NotFoundError, ValidationFailure, is_unique_violation
from app.models import Article, ArticleTag, Favorite, User, new_id, utcnow
from app.schemas import ArticleFields, ArticleSchema
from app.services.article_queries import (
    ArticleFilters,
    ArticleQuery,
    build_feed_query,
    build_list_query,
    build_single_query,
)
from app.services.article_rows import ArticlePage, ArticleRecord, coerce_count, materialize_articles
from app.services.tag_service import replace_article_tags

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Slugs
# ---------------------------------------------------------------------------

_SLUG_STRIP_RE = re.compile(r"[^\w\s-]")
_SLUG_SPACE_RE = re.compile(r"[\s_]+")
_SLUG_DASH_RE = re.compile(r"-+")

# Slugs that would be shadowed by a fixed route under /api/articles.
RESERVED_SLUGS = frozenset({"feed"})


def slugify(text: str) -> str:
    """Return a URL-safe, lowercase ASCII slug derived from *text*."""
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    text = _SLUG_STRIP_RE.sub("", text.lower().strip())
    text = _SLUG_SPACE_RE.sub("-", text)
    return _SLUG_DASH_RE.sub("-", text).strip("-")


def slug_suffix() -> str:
    return uuid.uuid4().hex[-settings.SLUG_SUFFIX_LENGTH:]


def base_slug(title: str) -> str:
    """
    First slug to try for *title*.  Titles with nothing to transliterate
    fall back to a bare random suffix, and reserved words get one appended.
    """
    slug = slugify(title)
    if not slug:
        return slug_suffix()
    if slug in RESERVED_SLUGS:
        return f"{slug}-{slug_suffix()}"
    return slug


async def _write_with_slug_retry(
    db: AsyncSession, build_statement: Callable[[str], object], slug: str
) -> str:
    """
    Execute the statement for *slug*; on a unique violation retry once
    with a suffixed slug.  Returns the slug that was written.
    """
    try:
        async with db.begin_nested():
            await db.execute(build_statement(slug))
        return slug
    except IntegrityError as exc:
        if not is_unique_violation(exc):
            raise

    retry_slug = f"{slug}-{slug_suffix()}"
    logger.info("Slug %r already taken, retrying as %r", slug, retry_slug)
    try:
        async with db.begin_nested():
            await db.execute(build_statement(retry_slug))
    except IntegrityError as exc:
        if is_unique_violation(exc):
            raise ConflictError("slug", retry_slug) from exc
        raise
    return retry_slug


def _validate(data: dict) -> ArticleSchema:
    try:
        return ArticleSchema.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationFailure.from_pydantic(exc) from exc


def _assert_owner(article: ArticleRecord, user: User) -> None:
    if article.author.id != user.id:
        raise ValidationFailure({"article": ["not owned by user"]})


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def _run_page(db: AsyncSession, query: ArticleQuery) -> ArticlePage:
    count = (await db.execute(query.count)).scalar_one()
    rows = (await db.execute(query.rows)).mappings().all()
    return ArticlePage(articles=materialize_articles(rows), articles_count=coerce_count(count))


async def list_articles(
    db: AsyncSession,
    filters: ArticleFilters = ArticleFilters(),
    offset: int = 0,
    limit: int | None = 20,
    viewer_id: str | None = None,
) -> ArticlePage:
    return await _run_page(db, build_list_query(filters, offset, limit, viewer_id))


async def feed_articles(
    db: AsyncSession, viewer_id: str, offset: int = 0, limit: int | None = 20
) -> ArticlePage:
    return await _run_page(db, build_feed_query(viewer_id, offset, limit))


async def get_article(db: AsyncSession, slug: str, viewer_id: str | None = None) -> ArticleRecord:
    """Return the article for *slug* as seen by *viewer_id*, or raise NotFoundError."""
    rows = (await db.execute(build_single_query(slug, viewer_id).rows)).mappings().all()
    articles = materialize_articles(rows)
    if not articles:
        raise NotFoundError("article")
    return articles[0]


async def _reload(db: AsyncSession, article_id: str, viewer_id: str) -> ArticleRecord:
    slug = await db.scalar(select(Article.slug).where(Article.id == article_id))
    return await get_article(db, slug, viewer_id)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

async def create_article(db: AsyncSession, author: User, data: ArticleFields) -> ArticleRecord:
    """
    Insert a new article authored by *author* and associate its tags.

    The returned article is unfavorited with a zero counter.
    """
    article = _validate(
        {**data.model_dump(exclude_none=True), "id": new_id(), "author_id": author.id}
    )
    now = utcnow()
    values = {
        "id": article.id,
        "author_id": article.author_id,
        "title": article.title,
        "description": article.description,
        "body": article.body,
        "favorites_count": 0,
        "created_at": now,
        "updated_at": now,
    }

    await _write_with_slug_retry(
        db, lambda slug: insert(Article).values(**values, slug=slug), base_slug(article.title)
    )
    if article.tag_list:
        await replace_article_tags(db, article.id, article.tag_list)

    logger.info("Article %s created by %s", article.id, author.username)
    return await _reload(db, article.id, author.id)


async def update_article(
    db: AsyncSession, slug: str, user: User, data: ArticleFields
) -> ArticleRecord:
    """
    Apply the supplied fields to the article at *slug*.

    Omitted fields keep their stored values.  ``tag_list`` is only
    touched when supplied and different from the stored set; an empty
    list removes every tag.
    """
    current = await get_article(db, slug, user.id)
    _assert_owner(current, user)

    fields = data.model_dump(exclude_unset=True)
    requested_tags = fields.pop("tag_list", None)
    fields = {name: value for name, value in fields.items() if value is not None}

    merged = _validate(
        {
            "id": current.id,
            "author_id": current.author.id,
            "title": current.title,
            "description": current.description,
            "body": current.body,
            "tag_list": current.tag_list if requested_tags is None else requested_tags,
            **fields,
        }
    )

    new_slug = base_slug(merged.title) if merged.title != current.title else current.slug
    values = {
        "title": merged.title,
        "description": merged.description,
        "body": merged.body,
        "updated_at": utcnow(),
    }
    await _write_with_slug_retry(
        db,
        lambda slug: update(Article).where(Article.id == current.id).values(**values, slug=slug),
        new_slug,
    )

    if requested_tags is not None and set(merged.tag_list) ^ set(current.tag_list):
        await replace_article_tags(db, current.id, merged.tag_list)

    return await _reload(db, current.id, user.id)


async def delete_article(db: AsyncSession, slug: str, user: User) -> None:
    """Remove the article together with its favorites and tag associations."""
    current = await get_article(db, slug, user.id)
    _assert_owner(current, user)

    await db.execute(delete(Favorite).where(Favorite.article_id == current.id))
    await db.execute(delete(ArticleTag).where(ArticleTag.article_id == current.id))
    await db.execute(delete(Article).where(Article.id == current.id))
    logger.info("Article %s deleted by %s", current.id, user.username)


async def favorite_article(db: AsyncSession, slug: str, user: User) -> ArticleRecord:
    current = await get_article(db, slug, user.id)
    if current.favorited:
        return current

    try:
        async with db.begin_nested():
            await db.execute(
                insert(Favorite).values(id=new_id(), user_id=user.id, article_id=current.id)
            )
            await db.execute(
                update(Article)
                .where(Article.id == current.id)
                .values(favorites_count=Article.favorites_count + 1)
            )
    except IntegrityError as exc:
        if not is_unique_violation(exc):
            raise
        # A concurrent request recorded the same favorite first.
        logger.info("Favorite of %s by %s already recorded", current.id, user.username)

    return await get_article(db, current.slug, user.id)


async def unfavorite_article(db: AsyncSession, slug: str, user: User) -> ArticleRecord:
    current = await get_article(db, slug, user.id)
    if not current.favorited:
        return current

    async with db.begin_nested():
        result = await db.execute(
            delete(Favorite).where(
                Favorite.user_id == user.id, Favorite.article_id == current.id
            )
        )
        if result.rowcount:
            await db.execute(
                update(Article)
                .where(Article.id == current.id)
                .values(favorites_count=Article.favorites_count - result.rowcount)
            )

    return await get_article(db, current.slug, user.id)
