"""Seed the article store with demo users, tags, articles, follows and favorites.

Articles and favorites go through the service layer so slugs, tag rows
and favorite counters are produced exactly as the API would produce them.
"""
import asyncio
import argparse
import random
import time

from sqlalchemy import insert

from app.database import engine, async_session, Base
from app.models import Tag, new_id
from app.schemas import ArticleFields, UserFields
from app.services import article_service, user_service

SEED_TAGS = ["lorem"]
TOPICS = ["lorem", "dolor", "ipsum", "python", "sql", "async", "testing", "design"]


async def seed(small: bool = False):
    num_users = 5 if small else 25
    num_articles = 20 if small else 500

    print(f"Seeding: {num_users} users, {num_articles} articles")
    start = time.perf_counter()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        await session.execute(insert(Tag), [{"id": new_id(), "name": name} for name in SEED_TAGS])

        users = []
        for i in range(num_users):
            user = await user_service.create_user(
                session,
                UserFields(
                    username=f"user_{i:03d}",
                    email=f"user_{i:03d}@example.com",
                    bio=f"I am demo user number {i}.",
                ),
            )
            users.append(user)
        print(f"  Created {len(users)} users")

        for user in users:
            for other in random.sample(users, k=min(3, len(users))):
                if other.id != user.id:
                    await user_service.follow(session, other.username, user)

        slugs = []
        for i in range(num_articles):
            author = random.choice(users)
            # Titles repeat on purpose so some slugs need the collision suffix.
            record = await article_service.create_article(
                session,
                author,
                ArticleFields(
                    title=f"Notes on {random.choice(TOPICS)} #{i % 50}",
                    description="A demo article.",
                    body=f"This is the body of demo article {i}. " * 10,
                    tag_list=random.sample(TOPICS, k=random.randint(0, 3)),
                ),
            )
            slugs.append(record.slug)
        print(f"  Created {len(slugs)} articles")

        favorites = 0
        for user in users:
            for slug in random.sample(slugs, k=min(5, len(slugs))):
                await article_service.favorite_article(session, slug, user)
                favorites += 1

        await session.commit()

    elapsed = time.perf_counter() - start
    print(f"\nSeeding complete in {elapsed:.1f}s")
    print(f"  Users: {num_users}")
    print(f"  Articles: {num_articles}")
    print(f"  Favorites: {favorites}")


def main():
    parser = argparse.ArgumentParser(description="Seed the article database")
    parser.add_argument("--small", action="store_true", help="Use a small dataset")
    args = parser.parse_args()
    asyncio.run(seed(small=args.small))


if __name__ == "__main__":
    main()
