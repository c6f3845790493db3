"""
Tag service: lazy tag creation and the cached tag list.

Tags are shared and never deleted, so an INSERT that fails on the unique
name constraint simply means another article (or a concurrent request)
created the tag first.  That failure is absorbed, not retried.
"""
import logging

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.cache import TAGS_KEY, cache
from app.config import settings
from app.errors import is_unique_violation
from app.models import ArticleTag, Tag, new_id

logger = logging.getLogger(__name__)


async def ensure_tags(db: AsyncSession, names: list[str]) -> list[str]:
    """
    Make sure a Tag row exists for every name and return their ids.

    Each INSERT runs in its own SAVEPOINT so a duplicate-name failure does
    not abort the surrounding transaction.  Ids are re-read by name
    afterwards because the set of successful inserts is unknown up front.
    """
    created = 0
    for name in names:
        try:
            async with db.begin_nested():
                await db.execute(insert(Tag).values(id=new_id(), name=name))
            created += 1
        except IntegrityError as exc:
            if not is_unique_violation(exc):
                raise
            logger.debug("Tag %r already exists", name)

    if created:
        cache.invalidate_tags_on_commit(db)

    result = await db.execute(select(Tag.id).where(Tag.name.in_(names)))
    return list(result.scalars().all())


async def replace_article_tags(db: AsyncSession, article_id: str, names: list[str]) -> None:
    """
    Replace the article's tag associations with exactly *names*.

    Existing ``articles_tags`` rows are deleted and the new set inserted;
    an empty *names* just clears the article's tags.
    """
    names = list(dict.fromkeys(names))
    tag_ids = await ensure_tags(db, names) if names else []

    await db.execute(delete(ArticleTag).where(ArticleTag.article_id == article_id))
    if tag_ids:
        await db.execute(
            insert(ArticleTag),
            [{"id": new_id(), "article_id": article_id, "tag_id": tag_id} for tag_id in tag_ids],
        )


async def get_tags(db: AsyncSession) -> list[str]:
    """Return every tag name, alphabetically, through the Redis cache."""

    async def load() -> list[str]:
        result = await db.execute(select(Tag.name).order_by(Tag.name))
        return list(result.scalars().all())

    return await cache.get_or_load(TAGS_KEY, load, ttl=settings.CACHE_TTL_TAGS)
