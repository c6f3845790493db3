"""
Query construction for article reads.

Every view (list, feed, single) is built the same way:

1. A *page* sub-query selects matching article ids, ordered newest first
   and cut with OFFSET/LIMIT, so pagination counts articles rather than
   the rows the tag join multiplies them into.
2. The page is expanded with the author, its tags, and two per-viewer
   markers.  The markers come from LEFT OUTER JOINs whose ON clause is
   itself restricted to the viewer id.  Moving that restriction into WHERE
   would discard every article the viewer has no relationship with.
3. The count statement repeats the narrowing predicates of step 1 and
   nothing else.

Statements are returned unexecuted; ``article_service`` runs them and
``article_rows`` folds the result.
"""
from dataclasses import dataclass

from sqlalchemy import ColumnElement, Select, false, func, select

from app.models import Article, ArticleTag, Favorite, Follower, Tag, User


@dataclass(frozen=True)
class ArticleFilters:
    """Narrowing criteria; an empty tuple means the filter is absent."""

    tag: tuple[str, ...] = ()
    author: tuple[str, ...] = ()
    favorited: tuple[str, ...] = ()


@dataclass(frozen=True)
class ArticleQuery:
    rows: Select
    count: Select | None


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------

def _user_ids(usernames: tuple[str, ...]) -> Select:
    return select(User.id).where(User.username.in_(usernames))


def _narrowing_predicates(filters: ArticleFilters) -> list[ColumnElement[bool]]:
    predicates: list[ColumnElement[bool]] = []
    if filters.author:
        predicates.append(Article.author_id.in_(_user_ids(filters.author)))
    if filters.favorited:
        favorited_by = select(Favorite.article_id).where(
            Favorite.user_id.in_(_user_ids(filters.favorited))
        )
        predicates.append(Article.id.in_(favorited_by))
    if filters.tag:
        tagged = select(ArticleTag.article_id).where(
            ArticleTag.tag_id.in_(select(Tag.id).where(Tag.name.in_(filters.tag)))
        )
        predicates.append(Article.id.in_(tagged))
    return predicates


def _feed_predicate(viewer_id: str) -> ColumnElement[bool]:
    followed = select(Follower.followed_id).where(Follower.follower_id == viewer_id)
    return Article.author_id.in_(followed)


def _viewer_is(column, viewer_id: str | None) -> ColumnElement[bool]:
    # Anonymous viewers match nothing, so both markers stay NULL.
    if viewer_id is None:
        return false()
    return column == viewer_id


# ---------------------------------------------------------------------------
# Statement assembly
# ---------------------------------------------------------------------------

def _newest_first():
    return (Article.created_at.desc(), Article.id.desc())


# Largest OFFSET/LIMIT a 64-bit store integer can carry.  Larger values
# already mean "everything" or "past the end", so they are clamped.
MAX_ROWS = 2**63 - 1


def _page(predicates, offset: int | None, limit: int | None):
    page = select(Article.id).where(*predicates).order_by(*_newest_first())
    if offset is not None:
        page = page.offset(min(offset, MAX_ROWS))
    if limit is not None:
        page = page.limit(min(limit, MAX_ROWS))
    return page.subquery("page")


def _expand(page, viewer_id: str | None) -> Select:
    """Join a page of article ids with everything the materializer needs."""
    return (
        select(
            Article.id.label("article_id"),
            Article.slug.label("article_slug"),
            Article.title.label("article_title"),
            Article.description.label("article_description"),
            Article.body.label("article_body"),
            Article.created_at.label("article_created_at"),
            Article.updated_at.label("article_updated_at"),
            Article.favorites_count.label("article_favorites_count"),
            User.id.label("author_id"),
            User.username.label("author_username"),
            User.bio.label("author_bio"),
            User.image.label("author_image"),
            Tag.id.label("tag_id"),
            Tag.name.label("tag_name"),
            Favorite.id.label("article_favorited"),
            Follower.id.label("author_following"),
        )
        .select_from(page)
        .join(Article, Article.id == page.c.id)
        .join(User, User.id == Article.author_id)
        .outerjoin(ArticleTag, ArticleTag.article_id == Article.id)
        .outerjoin(Tag, Tag.id == ArticleTag.tag_id)
        .outerjoin(
            Favorite,
            (Favorite.article_id == Article.id) & _viewer_is(Favorite.user_id, viewer_id),
        )
        .outerjoin(
            Follower,
            (Follower.followed_id == Article.author_id)
            & _viewer_is(Follower.follower_id, viewer_id),
        )
        .order_by(*_newest_first())
    )


def _count(predicates) -> Select:
    return select(func.count()).select_from(Article).where(*predicates)


# ---------------------------------------------------------------------------
# Public builders
# ---------------------------------------------------------------------------

def build_list_query(
    filters: ArticleFilters,
    offset: int | None = 0,
    limit: int | None = 20,
    viewer_id: str | None = None,
) -> ArticleQuery:
    """Global article list narrowed by tag / author / favorited-by."""
    predicates = _narrowing_predicates(filters)
    return ArticleQuery(
        rows=_expand(_page(predicates, offset, limit), viewer_id),
        count=_count(predicates),
    )


def build_feed_query(
    viewer_id: str,
    offset: int | None = 0,
    limit: int | None = 20,
) -> ArticleQuery:
    """Articles written by the users *viewer_id* follows."""
    predicates = [_feed_predicate(viewer_id)]
    return ArticleQuery(
        rows=_expand(_page(predicates, offset, limit), viewer_id),
        count=_count(predicates),
    )


def build_single_query(slug: str, viewer_id: str | None = None) -> ArticleQuery:
    page = select(Article.id).where(Article.slug == slug).subquery("page")
    return ArticleQuery(rows=_expand(page, viewer_id), count=None)
