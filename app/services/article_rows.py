"""
Fold the flat rows produced by ``article_queries`` into article records.

One article joined to N tags arrives as N rows (at least one, with NULL tag
columns, when it has none).  Rows are grouped by ``article_id`` in the
order they arrive, which preserves the query's newest-first ordering.

``ArticleRecord`` / ``AuthorRecord`` are the internal projection: they keep
the author's id because ``following`` and ownership checks need it.  The
public ``ArticleResponse`` built by ``to_public`` has no such field.
"""
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from app.schemas import ArticleResponse, ProfileResponse


@dataclass
class AuthorRecord:
    id: str
    username: str
    bio: str | None
    image: str | None
    following: bool = False


@dataclass
class ArticleRecord:
    id: str
    slug: str
    title: str
    description: str
    body: str
    created_at: datetime
    updated_at: datetime
    favorites_count: int
    author: AuthorRecord
    tag_list: list[str] = field(default_factory=list)
    favorited: bool = False


@dataclass
class ArticlePage:
    articles: list[ArticleRecord]
    articles_count: int


def coerce_count(value: Any) -> int:
    """
    Normalise a COUNT(*) result.  Some drivers hand back strings or
    Decimals; an absent value counts as zero.
    """
    if value is None:
        return 0
    if isinstance(value, (int, Decimal)):
        return int(value)
    return int(str(value).strip() or 0)


def _new_record(row: Mapping[str, Any]) -> ArticleRecord:
    return ArticleRecord(
        id=row["article_id"],
        slug=row["article_slug"],
        title=row["article_title"],
        description=row["article_description"],
        body=row["article_body"],
        created_at=row["article_created_at"],
        updated_at=row["article_updated_at"],
        favorites_count=coerce_count(row["article_favorites_count"]),
        author=AuthorRecord(
            id=row["author_id"],
            username=row["author_username"],
            bio=row["author_bio"],
            image=row["author_image"],
        ),
    )


def materialize_articles(rows: Iterable[Mapping[str, Any]]) -> list[ArticleRecord]:
    """Return one ``ArticleRecord`` per distinct article id in *rows*."""
    records: dict[str, ArticleRecord] = {}
    for row in rows:
        record = records.get(row["article_id"])
        if record is None:
            record = records[row["article_id"]] = _new_record(row)

        tag_name = row.get("tag_name")
        if tag_name is not None and tag_name not in record.tag_list:
            record.tag_list.append(tag_name)
        if row.get("article_favorited") is not None:
            record.favorited = True
        if row.get("author_following") is not None:
            record.author.following = True
    return list(records.values())


def to_public(record: ArticleRecord) -> ArticleResponse:
    """Build the client-facing article; the author id is left behind."""
    author = record.author
    return ArticleResponse(
        id=record.id,
        slug=record.slug,
        title=record.title,
        description=record.description,
        body=record.body,
        tag_list=list(record.tag_list),
        created_at=record.created_at,
        updated_at=record.updated_at,
        favorited=record.favorited,
        favorites_count=record.favorites_count,
        author=ProfileResponse(
            username=author.username,
            bio=author.bio,
            image=author.image,
            following=author.following,
        ),
    )
