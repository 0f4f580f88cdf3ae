"""End-to-end CRUD against a real database (SQLite by default)."""

import pytest

from vqlkit import JoinType, QueryOption, Vql, eq
from vqlkit.config import DatabaseConfig
from vqlkit.database import Database
from vqlkit.errors import (
    ConfigurationError,
    DatabaseError,
    ErrorCode,
    RelationNotFoundError,
    TransactionStateError,
)
from tests.models import PostStatus, build_schemas


async def table_rows(db, table, order='id'):
    a = db.adapter
    return await db.gateway.execute(f"SELECT * FROM {a.table_ident(table)} ORDER BY {a.quote(order)}")


class TestScenarios:
    @pytest.mark.asyncio
    async def test_insert_with_many_to_many_then_find(self, db, sample_tags):
        created = await db.insert('Post', {'title': 'Hello', 'tags': [1, 2]})
        post_id = created.items[0]['id']

        junction = await table_rows(db, 'PostHasTags')
        assert [(r['post'], r['tag']) for r in junction] == [(post_id, 1), (post_id, 2)]

        found = await db.find('Post', post_id, QueryOption(relations=['tags']))
        assert found.total == 1
        tags = found.items[0]['tags']
        assert [t['id'] for t in tags] == [1, 2]
        assert [t['name'] for t in tags] == ['python', 'sql']
        for tag in tags:
            assert '_owner_key' not in tag and '_related_key' not in tag

    @pytest.mark.asyncio
    async def test_update_replaces_many_to_many(self, populated_db):
        db = populated_db
        await db.update('Post', {'id': 1, 'tags': [3]})
        junction = await table_rows(db, 'PostHasTags')
        assert [(r['post'], r['tag']) for r in junction if r['post'] == 1] == [(1, 3)]

        found = await db.find('Post', 1, QueryOption(relations=['tags']))
        assert [t['id'] for t in found.items[0]['tags']] == [3]

    @pytest.mark.asyncio
    async def test_delete_removes_junction_rows_but_keeps_tags(self, populated_db):
        db = populated_db
        deleted = await db.remove('Post', 1)
        assert [r['id'] for r in deleted.items] == [1]

        assert (await db.find('Post', 1)).items == []
        junction = await table_rows(db, 'PostHasTags')
        assert all(r['post'] != 1 for r in junction)
        assert len(await table_rows(db, 'Tag')) == 3
        assert all(r['fk'] != 1 for r in await table_rows(db, 'PostKeywordsList'))

    @pytest.mark.asyncio
    async def test_insert_all_empty_issues_no_sql(self, db, sql_log):
        sql_log.clear()
        result = await db.insert('Tag', [])
        assert result.items == []
        assert sql_log == []

    @pytest.mark.asyncio
    async def test_remove_many_to_many_with_no_ids_is_always_false(self, populated_db, sql_log):
        db = populated_db
        before = await table_rows(db, 'PostHasTags')
        sql_log.clear()
        await db.writer.remove_many_to_many_relation('Post', 1, 'tags', [])
        deletes = [s for s in sql_log if s.lstrip().upper().startswith('DELETE')]
        assert len(deletes) == 1 and '1 = 0' in deletes[0]
        assert await table_rows(db, 'PostHasTags') == before


class TestReads:
    @pytest.mark.asyncio
    async def test_round_trip(self, db, sample_users):
        value = {
            'title': 'Round trip',
            'views': 7,
            'rating': 4.5,
            'published': True,
            'meta': {'flags': {'featured': True}, 'count': 3},
            'keywords': ['a', 'b'],
            'author': sample_users[0]['id'],
        }
        created = await db.insert('Post', value)
        row = (await db.find('Post', created.items[0]['id'])).items[0]
        assert row['title'] == 'Round trip'
        assert row['views'] == 7
        assert row['rating'] == pytest.approx(4.5)
        assert bool(row['published']) is True
        assert row['meta'] == {'flags': {'featured': True}, 'count': 3}
        assert row['keywords'] == ['a', 'b']
        assert row['author'] == sample_users[0]['id']

    @pytest.mark.asyncio
    async def test_embedded_one_to_many(self, populated_db):
        found = await populated_db.find('Post', 1, QueryOption(relations=['author']))
        author = found.items[0]['author']
        assert author['name'] == 'Alice Johnson'
        assert author['email'] == 'alice@example.com'

    @pytest.mark.asyncio
    async def test_embedded_relation_with_field_subset(self, populated_db):
        found = await populated_db.find('Comment', 1, QueryOption(relations=[{'name': 'post', 'fields': ['title']}]))
        assert found.items[0]['post'] == {'title': 'First Post'}

    @pytest.mark.asyncio
    async def test_reverse_one_to_many(self, populated_db):
        found = await populated_db.find('User', 1, QueryOption(relations=['posts']))
        assert sorted(p['title'] for p in found.items[0]['posts']) == ['First Post', 'SQL Tips']

        found = await populated_db.find('Post', 1, QueryOption(relations=['comments']))
        assert [c['body'] for c in found.items[0]['comments']] == ['Nice!', 'Thanks']

    @pytest.mark.asyncio
    async def test_reverse_many_to_many(self, populated_db):
        found = await populated_db.find('Tag', 1, QueryOption(relations=['posts']))
        assert sorted(p['title'] for p in found.items[0]['posts']) == ['Async Python', 'First Post']

    @pytest.mark.asyncio
    async def test_rows_without_matches_get_empty_lists(self, populated_db):
        found = await populated_db.find('User', 3, QueryOption(relations=['posts']))
        assert found.items[0]['posts'] == []

    @pytest.mark.asyncio
    async def test_find_by_values_with_order(self, populated_db):
        found = await populated_db.find('Post', {'author': 1}, QueryOption(order_by=['title:desc']))
        assert [p['title'] for p in found.items] == ['SQL Tips', 'First Post']

    @pytest.mark.asyncio
    async def test_find_with_page(self, populated_db):
        found = await populated_db.find('Post', None, QueryOption(limit=2, page=2))
        assert [p['title'] for p in found.items] == ['Async Python']

    @pytest.mark.asyncio
    async def test_find_by_vql_with_join(self, populated_db):
        vql = (
            Vql('Post').select('title')
            .join(Vql('User').select('name').where(eq('isAdmin', True)), 'author', JoinType.INNER)
            .sort_by('title')
        )
        found = await populated_db.find(vql)
        assert [(r['title'], r['Post_author_name']) for r in found.items] == [
            ('First Post', 'Alice Johnson'),
            ('SQL Tips', 'Alice Johnson'),
        ]

    @pytest.mark.asyncio
    async def test_sub_query_field(self, populated_db):
        vql = Vql('Post').select('title', Vql('User').select('name').where(eq('isAdmin', True))).where(eq('id', 1))
        found = await populated_db.find(vql)
        assert found.items[0]['user'] == {'name': 'Alice Johnson'}

    @pytest.mark.asyncio
    async def test_count(self, populated_db):
        assert (await populated_db.count('Post', {'status': PostStatus.PUBLISHED})).total == 2
        assert (await populated_db.count(Vql('Post').limit_to(1))).total == 3

    @pytest.mark.asyncio
    async def test_unknown_relation_is_a_hard_error(self, populated_db):
        with pytest.raises(RelationNotFoundError):
            await populated_db.find('Post', 1, QueryOption(relations=['nope']))


class TestWrites:
    @pytest.mark.asyncio
    async def test_insert_all_writes_foreign_keys_in_the_insert(self, db, sample_users, sql_log):
        sql_log.clear()
        result = await db.insert('Post', [
            {'title': 'a', 'author': sample_users[0]['id']},
            {'title': 'b', 'author': {'id': sample_users[1]['id']}},
        ])
        by_title = {r['title']: r for r in result.items}
        assert by_title['a']['author'] == sample_users[0]['id']
        assert by_title['b']['author'] == sample_users[1]['id']
        inserts = [s for s in sql_log if s.lstrip().upper().startswith('INSERT')]
        assert len(inserts) == 1 and 'author' in inserts[0]
        assert not [s for s in sql_log if s.lstrip().upper().startswith('UPDATE')]

    @pytest.mark.asyncio
    async def test_insert_all_keeps_dependent_writes_on_their_row(self, db, sample_users, sample_tags):
        result = await db.insert('Post', [
            {'title': 'a', 'author': sample_users[0]['id'], 'keywords': ['x']},
            {'title': 'b', 'author': sample_users[1]['id'], 'keywords': ['y', 'z'], 'tags': [3]},
            {'title': 'c', 'author': sample_users[2]['id']},
        ])
        assert len(result.items) == 3
        for title, author, keywords, tags in (
            ('a', sample_users[0]['id'], ['x'], []),
            ('b', sample_users[1]['id'], ['y', 'z'], [3]),
            ('c', sample_users[2]['id'], [], []),
        ):
            found = await db.find('Post', {'title': title}, QueryOption(relations=['tags']))
            row = found.items[0]
            assert row['author'] == author
            assert row['keywords'] == keywords
            assert [t['id'] for t in row['tags']] == tags

    @pytest.mark.asyncio
    async def test_update_all(self, populated_db):
        result = await populated_db.update('Post', {'published': True}, eq('status', PostStatus.DRAFT))
        assert [r['title'] for r in result.items] == ['Async Python']
        assert bool(result.items[0]['published']) is True

    @pytest.mark.asyncio
    async def test_update_foreign_key_and_list(self, populated_db):
        result = await populated_db.update('Post', {'id': 1, 'author': {'id': 2}, 'keywords': ['x']})
        row = result.items[0]
        assert row['author'] == 2
        assert row['keywords'] == ['x']

    @pytest.mark.asyncio
    async def test_update_without_id_is_invalid(self, populated_db):
        with pytest.raises(DatabaseError) as exc:
            await populated_db.update('Post', {'title': 'x'})
        assert exc.value.code is ErrorCode.WRONG_INPUT

    @pytest.mark.asyncio
    async def test_update_with_malformed_condition_is_invalid(self, populated_db):
        with pytest.raises(DatabaseError) as exc:
            await populated_db.update('Post', {'title': 'x'}, {'status': 1})
        assert exc.value.code is ErrorCode.WRONG_INPUT

    @pytest.mark.asyncio
    async def test_increase(self, populated_db):
        result = await populated_db.increase('Post', 1, 'views', 5)
        assert result.items[0]['views'] == 15
        with pytest.raises(DatabaseError) as exc:
            await populated_db.increase('Post', 1, 'title', 1)
        assert exc.value.code is ErrorCode.WRONG_INPUT

    @pytest.mark.asyncio
    @pytest.mark.parametrize("target", [1.5, True, ['1'], None])
    async def test_remove_with_invalid_target(self, populated_db, target):
        with pytest.raises(DatabaseError) as exc:
            await populated_db.remove('Post', target)
        assert exc.value.code is ErrorCode.WRONG_INPUT

    @pytest.mark.asyncio
    async def test_remove_by_condition_clears_reverse_foreign_keys(self, populated_db):
        db = populated_db
        deleted = await db.remove('Post', eq('author', 1))
        assert sorted(r['title'] for r in deleted.items) == ['First Post', 'SQL Tips']
        comments = await table_rows(db, 'Comment')
        assert [c['post'] for c in comments] == [None, None, 3]

    @pytest.mark.asyncio
    async def test_bulk_writes_refuse_conditions_on_unknown_fields(self, populated_db):
        db = populated_db
        with pytest.raises(DatabaseError) as exc:
            await db.remove('Post', eq('titel', 'nope'))
        assert exc.value.code is ErrorCode.WRONG_INPUT
        with pytest.raises(DatabaseError) as exc:
            await db.update('Post', {'views': 0}, eq('titel', 'nope'))
        assert exc.value.code is ErrorCode.WRONG_INPUT
        posts = await table_rows(db, 'Post')
        assert [p['views'] for p in posts] == [10, 3, 0]

    @pytest.mark.asyncio
    async def test_remove_by_id_as_string(self, populated_db):
        deleted = await populated_db.remove('Post', '2')
        assert [r['id'] for r in deleted.items] == [2]

    @pytest.mark.asyncio
    async def test_weak_one_to_one_is_created_and_cascaded(self, db):
        created = await db.insert('User', {'name': 'Dana', 'profile': {'bio': 'hi'}})
        user = created.items[0]
        assert user['profile'] is not None

        found = await db.find('User', user['id'], QueryOption(relations=['profile']))
        assert found.items[0]['profile']['bio'] == 'hi'

        await db.remove('User', user['id'])
        assert await table_rows(db, 'Profile') == []

    @pytest.mark.asyncio
    async def test_weak_many_to_many_is_created_and_cascaded(self, db):
        created = await db.insert('Post', {
            'title': 'With files',
            'attachments': [{'url': 'http://a'}, {'url': 'http://b'}],
        })
        post_id = created.items[0]['id']
        found = await db.find('Post', post_id, QueryOption(relations=['attachments']))
        assert [a['url'] for a in found.items[0]['attachments']] == ['http://a', 'http://b']

        await db.remove('Post', post_id)
        assert await table_rows(db, 'Attachment') == []
        assert await table_rows(db, 'PostHasAttachments') == []


class TestTransactions:
    @pytest.mark.asyncio
    async def test_failed_dependent_step_rolls_back_owned_transaction(self, db):
        with pytest.raises(DatabaseError) as exc:
            await db.insert('Post', {'title': 'Broken', 'attachments': [{'url': None}]})
        assert exc.value.code is ErrorCode.INSERT
        assert await table_rows(db, 'Post') == []

    @pytest.mark.asyncio
    async def test_caller_owned_transaction_is_not_committed(self, db):
        txn = db.transaction()
        await db.insert('Tag', {'name': 'draft'}, txn)
        await db.insert('Tag', [{'name': 'one'}, {'name': 'two'}], txn)
        assert txn.done is False
        await txn.rollback()
        assert await table_rows(db, 'Tag') == []

    @pytest.mark.asyncio
    async def test_caller_commits(self, db):
        async with db.transaction() as txn:
            await db.insert('Tag', {'name': 'kept'}, txn)
        assert [t['name'] for t in await table_rows(db, 'Tag')] == ['kept']
        with pytest.raises(TransactionStateError):
            await txn.commit()

    @pytest.mark.asyncio
    async def test_failure_inside_caller_transaction_leaves_it_open(self, db):
        txn = db.transaction()
        await db.insert('User', {'name': 'A', 'email': 'a@example.com'}, txn)
        with pytest.raises(DatabaseError):
            await db.insert('User', {'name': 'B', 'email': 'a@example.com'}, txn)
        assert txn.done is False
        await txn.rollback()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_connection_failure_is_wrapped(self, tmp_path):
        url = f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'dir' / 'x.db'}"
        database = Database(DatabaseConfig(url=url), build_schemas())
        with pytest.raises(DatabaseError) as exc:
            await database.connect()
        assert exc.value.code is ErrorCode.CONNECTION
        await database.close()

    @pytest.mark.asyncio
    async def test_operations_require_connect(self):
        database = Database(schemas=build_schemas())
        with pytest.raises(ConfigurationError):
            await database.find('Post', 1)
