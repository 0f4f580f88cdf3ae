"""Result normalization of JSON-bearing columns."""

import pytest

from vqlkit.adapters import MSSQLAdapter, SQLiteAdapter
from vqlkit.core.hydration import Hydrator
from tests.models import build_registry


@pytest.fixture
def hydrator():
    return Hydrator(build_registry(), SQLiteAdapter())


@pytest.fixture
def mssql_hydrator():
    return Hydrator(build_registry(), MSSQLAdapter())


def test_object_column_is_parsed(hydrator):
    row = hydrator.normalize_row('Post', {'id': 1, 'meta': '{"views": 10, "tags": ["a"]}'})
    assert row == {'id': 1, 'meta': {'views': 10, 'tags': ['a']}}


def test_embedded_relation_is_parsed(hydrator):
    row = hydrator.normalize_row('Post', {'id': 1, 'author': '{"id": 2, "name": "Bob"}'})
    assert row['author'] == {'id': 2, 'name': 'Bob'}


def test_plain_foreign_key_is_untouched(hydrator):
    assert hydrator.normalize_row('Post', {'author': 2})['author'] == 2


def test_mssql_snapshot_is_unescaped(mssql_hydrator):
    raw = "{<#quote#>id<#quote#>:<#quote#>2<#quote#>,<#quote#>name<#quote#>:<#quote#>O'Hara<#quote#>}"
    row = mssql_hydrator.normalize_row('Post', {'author': raw})
    assert row['author'] == {'id': '2', 'name': 'O’Hara'}


def test_embedded_sub_query_column_is_parsed(hydrator):
    row = hydrator.normalize_row('Post', {'title': 'x', 'user': '{"name": "Alice"}'})
    assert row == {'title': 'x', 'user': {'name': 'Alice'}}


def test_malformed_json_degrades_to_raw_string(hydrator):
    row = hydrator.normalize_row('Post', {'meta': '{not json'})
    assert row['meta'] == '{not json'


def test_nulls_are_kept(hydrator):
    assert hydrator.normalize('Post', [{'meta': None, 'author': None}]) == [{'meta': None, 'author': None}]


def test_non_json_text_columns_are_untouched(hydrator):
    row = hydrator.normalize_row('Post', {'title': '{curly title', 'summary': '[1, 2]'})
    assert row == {'title': '{curly title', 'summary': '[1, 2]'}
