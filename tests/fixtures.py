"""Database fixtures for vqlkit tests (shared)."""

import pytest

from vqlkit.database import Database
from tests.models import PostStatus


async def create_sample_tags(db: Database):
    """Insert the three sample tags; on a fresh database they get ids 1, 2 and 3."""
    result = await db.insert('Tag', [{'name': 'python'}, {'name': 'sql'}, {'name': 'async'}])
    return result.items


@pytest.fixture(scope="function")
async def sample_tags(db: Database):
    return await create_sample_tags(db)


async def create_sample_users(db: Database):
    result = await db.insert('User', [
        {'name': 'Alice Johnson', 'email': 'alice@example.com', 'isAdmin': True},
        {'name': 'Bob Smith', 'email': 'bob@example.com'},
        {'name': 'Charlie Brown', 'email': 'charlie@example.com'},
    ])
    return result.items


@pytest.fixture(scope="function")
async def sample_users(db: Database):
    return await create_sample_users(db)


async def create_sample_posts(db: Database, users, tags):
    alice, bob, _ = users
    python, sql, aio = tags
    posts = []
    for value in (
        {
            'title': 'First Post',
            'status': PostStatus.PUBLISHED,
            'views': 10,
            'published': True,
            'meta': {'tags': ['intro', 'hello'], 'views': 10},
            'author': alice['id'],
            'tags': [python['id'], sql['id']],
            'keywords': ['intro', 'hello'],
        },
        {
            'title': 'SQL Tips',
            'status': PostStatus.PUBLISHED,
            'views': 3,
            'author': alice['id'],
            'tags': [sql['id']],
        },
        {
            'title': 'Async Python',
            'status': PostStatus.DRAFT,
            'author': bob['id'],
            'tags': [python['id'], aio['id']],
            'keywords': ['asyncio'],
        },
    ):
        result = await db.insert('Post', value)
        posts.append(result.items[0])
    for body, post in (('Nice!', posts[0]), ('Thanks', posts[0]), ('Meh', posts[2])):
        await db.insert('Comment', {'body': body, 'post': post['id']})
    return posts


@pytest.fixture(scope="function")
async def sample_posts(db: Database, sample_users, sample_tags):
    return await create_sample_posts(db, sample_users, sample_tags)


@pytest.fixture(scope="function")
async def populated_db(db: Database, sample_posts):
    """Database with sample users, tags, posts and comments."""
    return db
