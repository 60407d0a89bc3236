"""Seed the database with demo users, content, comments and engagement."""
import argparse
import asyncio
import random
import time
from datetime import datetime, timedelta, timezone

from blogcore.body import extract_excerpt, reading_time, slug_with_timestamp
from blogcore.database import Base, async_session, engine
from blogcore.models import (
    Bookmark,
    Comment,
    ContentItem,
    ContentKind,
    ContentStatus,
    Follow,
    Tag,
    User,
    content_likes,
)
from blogcore.security import hash_password
from blogcore.services import counter_service

TAGS = ["python", "fastapi", "postgresql", "redis", "docker", "testing",
        "performance", "security", "writing", "travel", "design", "career"]
CATEGORIES = ["engineering", "lifestyle", "tutorials", None]


def _body(i: int, topic: str) -> dict:
    return {
        "blocks": [
            {"type": "header", "data": {"text": f"Notes on {topic}", "level": 2}},
            {"type": "paragraph", "data": {"text": f"Entry {i} walks through <b>{topic}</b> in practice. " * 8}},
            {"type": "list", "data": {"items": ["What worked", "What did not", "What is next"]}},
        ]
    }


async def seed(small: bool = False):
    num_users = 10 if small else 50
    num_items = 100 if small else 5000
    max_comments = 2 if small else 5

    print(f"Seeding: {num_users} users, {num_items} content items")
    start = time.perf_counter()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    password_hash = hash_password("password123")
    async with async_session() as session:
        tags = [Tag(name=name) for name in TAGS]
        session.add_all(tags)

        users = [
            User(
                email=f"user_{i:04d}@example.com",
                display_name=f"User {i}",
                password_hash=password_hash,
                bio=f"Writer number {i}.",
            )
            for i in range(num_users)
        ]
        session.add_all(users)
        await session.flush()

        for user in users:
            for other in random.sample(users, k=min(5, num_users)):
                if other.id != user.id:
                    session.add(Follow(follower_id=user.id, followee_id=other.id))
        await session.flush()
        print(f"  Created {len(users)} users and their follow edges")

        base_ts = int(time.time() * 1000)
        for i in range(num_items):
            topic = random.choice(TAGS)
            body = _body(i, topic)
            published = random.random() > 0.1
            created = datetime.now(timezone.utc) - timedelta(days=random.randint(0, 365))
            item = ContentItem(
                kind=ContentKind.ARTICLE if i % 4 else ContentKind.POST,
                title=f"Entry {i}: working with {topic}",
                slug=slug_with_timestamp(f"Entry {i} {topic}", base_ts + i),
                body=body,
                excerpt=extract_excerpt(body),
                reading_time=reading_time(body),
                status=ContentStatus.PUBLISHED if published else ContentStatus.DRAFT,
                published_at=created if published else None,
                is_featured=published and random.random() < 0.05,
                category=random.choice(CATEGORIES),
                view_count=random.randint(0, 5000),
                created_at=created,
                author_id=random.choice(users).id,
            )
            item.tags.extend(random.sample(tags, k=random.randint(1, 3)))
            session.add(item)
            await session.flush()

            for _ in range(random.randint(0, max_comments)):
                session.add(Comment(
                    text=f"Thanks for writing about {topic}.",
                    content_id=item.id,
                    author_id=random.choice(users).id,
                ))
            for liker in random.sample(users, k=random.randint(0, 3)):
                await session.execute(
                    content_likes.insert().values(content_id=item.id, user_id=liker.id)
                )
            if random.random() < 0.2:
                session.add(Bookmark(user_id=random.choice(users).id, content_id=item.id))

            if (i + 1) % 500 == 0:
                await session.flush()
                print(f"  {i + 1} items created")

        await session.flush()
        drift = await counter_service.reconcile_all(session)
        await session.commit()

    elapsed = time.perf_counter() - start
    print(f"\nSeeding complete in {elapsed:.1f}s")
    print(f"  Users: {num_users}")
    print(f"  Content items: {num_items}")
    print(f"  Counters set: {drift}")


def main():
    parser = argparse.ArgumentParser(description="Seed the blog database")
    parser.add_argument("--small", action="store_true", help="Use small dataset (100 items)")
    args = parser.parse_args()
    asyncio.run(seed(small=args.small))


if __name__ == "__main__":
    main()
