"""
Query builder tests.

The first group inspects the compiled SQL for the structural guarantees
the materializer depends on; the second runs the statements against
SQLite to check that counts and pages agree for every filter shape.
"""
import pytest
from sqlalchemy.dialects import sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.schemas import ArticleFields
from app.services import article_service, user_service
from app.services.article_queries import (
    ArticleFilters,
    build_feed_query,
    build_list_query,
    build_single_query,
)
from conftest import make_user


def _sql(statement) -> str:
    return str(statement.compile(dialect=sqlite.dialect()))


def _join_clause(sql: str, table: str) -> str:
    """Return the text of the LEFT OUTER JOIN on *table* up to the next join."""
    start = sql.index(f"LEFT OUTER JOIN {table} ON")
    rest = sql[start + 1:]
    end = rest.find("LEFT OUTER JOIN")
    return rest if end == -1 else rest[:end]


# ---------------------------------------------------------------------------
# Statement shape
# ---------------------------------------------------------------------------

def test_viewer_restriction_lives_in_the_join_condition():
    sql = _sql(build_list_query(ArticleFilters(), viewer_id="viewer-1").rows)

    assert "favorites.user_id" in _join_clause(sql, "favorites")
    assert "followers.follower_id" in _join_clause(sql, "followers")
    # No WHERE at the outer level: nothing can turn the outer joins into inner joins.
    assert "WHERE" not in sql


def test_tags_are_outer_joined():
    sql = _sql(build_list_query(ArticleFilters()).rows)
    assert "LEFT OUTER JOIN articles_tags ON" in sql
    assert "LEFT OUTER JOIN tags ON" in sql


def test_rows_are_ordered_newest_first():
    sql = _sql(build_list_query(ArticleFilters()).rows)
    assert "ORDER BY articles.created_at DESC" in sql


def test_count_query_omits_joins_ordering_and_pagination():
    filters = ArticleFilters(tag=("lorem",), author=("alice",), favorited=("bob",))
    sql = _sql(build_list_query(filters, offset=10, limit=5, viewer_id="v").count)

    assert "count(*)" in sql.lower()
    assert "JOIN" not in sql
    assert "ORDER BY" not in sql
    assert "LIMIT" not in sql


def test_filters_are_sub_queries_in_both_statements():
    filters = ArticleFilters(tag=("lorem",), author=("alice",), favorited=("bob",))
    query = build_list_query(filters)

    for sql in (_sql(query.rows), _sql(query.count)):
        assert "articles.author_id IN (SELECT users.id" in sql
        assert "articles.id IN (SELECT favorites.article_id" in sql
        assert "articles.id IN (SELECT articles_tags.article_id" in sql


def test_feed_filters_on_followed_authors():
    query = build_feed_query("viewer-1")
    for sql in (_sql(query.rows), _sql(query.count)):
        assert "IN (SELECT followers.followed_id" in sql


def test_single_query_has_no_count():
    query = build_single_query("hello-world")
    assert query.count is None
    assert "articles.slug" in _sql(query.rows)


# ---------------------------------------------------------------------------
# Behaviour against the database
# ---------------------------------------------------------------------------

async def _article(db, author, title, tags=()):
    return await article_service.create_article(
        db, author, ArticleFields(title=title, description="d", body="b", tag_list=list(tags))
    )


@pytest.mark.asyncio
async def test_limit_counts_articles_not_joined_rows(db_session: AsyncSession):
    alice = await make_user(db_session, "alice")
    for i in range(3):
        await _article(db_session, alice, f"Tagged {i}", tags=("a", "b", "c"))

    page = await article_service.list_articles(db_session, limit=2)
    assert len(page.articles) == 2
    assert all(sorted(a.tag_list) == ["a", "b", "c"] for a in page.articles)
    assert page.articles_count == 3


@pytest.mark.asyncio
async def test_offset_past_the_end_returns_empty_page(db_session: AsyncSession):
    alice = await make_user(db_session, "alice")
    await _article(db_session, alice, "Only one")

    page = await article_service.list_articles(db_session, offset=50, limit=10)
    assert page.articles == []
    assert page.articles_count == 1


@pytest.mark.asyncio
async def test_empty_store_gives_empty_page_and_zero_count(db_session: AsyncSession):
    page = await article_service.list_articles(db_session)
    assert page.articles == []
    assert page.articles_count == 0


@pytest.mark.asyncio
async def test_unknown_filter_values_give_empty_results(db_session: AsyncSession):
    alice = await make_user(db_session, "alice")
    await _article(db_session, alice, "Something", tags=("lorem",))

    page = await article_service.list_articles(
        db_session, ArticleFilters(author=("nobody",))
    )
    assert page.articles == []
    assert page.articles_count == 0


@pytest.mark.asyncio
async def test_count_matches_unbounded_rows_for_every_filter_combination(db_session: AsyncSession):
    alice = await make_user(db_session, "alice")
    bob = await make_user(db_session, "bob")
    carol = await make_user(db_session, "carol")

    a1 = await _article(db_session, alice, "Alice one", tags=("lorem", "dolor"))
    await _article(db_session, alice, "Alice two", tags=("dolor",))
    b1 = await _article(db_session, bob, "Bob one", tags=("lorem",))
    await _article(db_session, bob, "Bob two")

    await article_service.favorite_article(db_session, a1.slug, carol)
    await article_service.favorite_article(db_session, b1.slug, carol)

    combinations = [
        ArticleFilters(),
        ArticleFilters(tag=("lorem",)),
        ArticleFilters(tag=("lorem", "dolor")),
        ArticleFilters(author=("alice",)),
        ArticleFilters(author=("alice", "bob")),
        ArticleFilters(favorited=("carol",)),
        ArticleFilters(tag=("lorem",), author=("bob",)),
        ArticleFilters(tag=("dolor",), favorited=("carol",)),
        ArticleFilters(tag=("lorem",), author=("alice",), favorited=("carol",)),
    ]
    for filters in combinations:
        page = await article_service.list_articles(db_session, filters, 0, None)
        assert page.articles_count == len(page.articles), filters


@pytest.mark.asyncio
async def test_filters_narrow_independently(db_session: AsyncSession):
    alice = await make_user(db_session, "alice")
    bob = await make_user(db_session, "bob")
    await _article(db_session, alice, "Alice lorem", tags=("lorem",))
    await _article(db_session, alice, "Alice plain")
    await _article(db_session, bob, "Bob lorem", tags=("lorem",))

    page = await article_service.list_articles(
        db_session, ArticleFilters(tag=("lorem",), author=("alice",))
    )
    assert [a.title for a in page.articles] == ["Alice lorem"]


@pytest.mark.asyncio
async def test_feed_only_contains_followed_authors(db_session: AsyncSession):
    alice = await make_user(db_session, "alice")
    bob = await make_user(db_session, "bob")
    viewer = await make_user(db_session, "viewer")
    await _article(db_session, alice, "From Alice")
    await _article(db_session, bob, "From Bob")
    await user_service.follow(db_session, "alice", viewer)

    page = await article_service.feed_articles(db_session, viewer.id)
    assert [a.title for a in page.articles] == ["From Alice"]
    assert page.articles_count == 1
    assert page.articles[0].author.following is True


@pytest.mark.asyncio
async def test_list_order_covers_all_articles(db_session: AsyncSession):
    """
    Articles come back newest first; articles sharing a timestamp have no
    defined relative order, so only membership is asserted here.
    """
    alice = await make_user(db_session, "alice")
    for i in range(4):
        await _article(db_session, alice, f"Post {i}")

    page = await article_service.list_articles(db_session)
    assert {a.title for a in page.articles} == {f"Post {i}" for i in range(4)}
    stamps = [a.created_at for a in page.articles]
    assert stamps == sorted(stamps, reverse=True)
