"""Schema registry lookups and naming conventions."""

import pytest

from vqlkit import FieldType, RelationKind, Schema, field, relation
from vqlkit.core.naming import camel_case, junction_table, list_table, pascal_case
from vqlkit.errors import ConfigurationError, RelationNotFoundError
from vqlkit.registry import SchemaRegistry
from tests.models import build_registry


def test_field_order_is_declaration_order():
    registry = build_registry()
    assert registry.get_field_names('Tag') == ['id', 'name', 'posts']
    assert list(registry.get_fields('Comment')) == ['id', 'body', 'post']


def test_field_named_name_is_declarable():
    schema = Schema('Tag', name=field(FieldType.STRING, required=True))
    assert schema.name == 'Tag'
    assert schema.get_field('name').required is True
    registry = SchemaRegistry([schema])
    assert registry.get_field_names('Tag') == ['name']


def test_primary_key_defaults_to_id():
    registry = SchemaRegistry([
        Schema('Note', body=field(FieldType.TEXT)),
        Schema('Country', code=field(FieldType.STRING, primary=True, max_length=2)),
    ])
    assert registry.primary_key('Note') == 'id'
    assert registry.primary_key('Country') == 'code'


def test_get_field_returns_none_for_unknown():
    registry = build_registry()
    assert registry.get_field('Post', 'nope') is None
    assert registry.get_field('Nope', 'id') is None


def test_unknown_model_raises():
    with pytest.raises(ConfigurationError):
        build_registry().get_schema('Nope')


def test_relation_to_unregistered_model_is_rejected():
    with pytest.raises(ConfigurationError):
        SchemaRegistry([Schema('Post', author=relation('User'))])


def test_relation_field_requires_relation():
    registry = build_registry()
    with pytest.raises(RelationNotFoundError):
        registry.relation_field('Post', 'title')
    assert registry.relation_field('Post', 'tags').relation.kind is RelationKind.MANY_TO_MANY


def test_reverse_field_lookup():
    registry = build_registry()
    assert registry.reverse_field('User', 'posts').name == 'author'
    assert registry.reverse_field('Post', 'comments').name == 'post'
    assert registry.reverse_field('Tag', 'posts').name == 'tags'


def test_reverse_field_missing_is_logged(caplog):
    registry = SchemaRegistry([
        Schema('A', bs=relation('B', RelationKind.REVERSE)),
        Schema('B', name=field(FieldType.STRING)),
    ])
    with caplog.at_level('WARNING', logger='vqlkit.registry'):
        assert registry.reverse_field('A', 'bs') is None
    assert 'no reverse side' in caplog.text


def test_side_table_names():
    registry = build_registry()
    assert registry.junction('Post', 'tags') == ('PostHasTags', 'post', 'tag')
    assert registry.list_table('Post', 'keywords') == 'PostKeywordsList'
    assert junction_table('User', 'follows') == 'UserHasFollows'
    assert list_table('Poll', 'votes') == 'PollVotesList'


def test_case_helpers():
    assert camel_case('PostTag') == 'postTag'
    assert pascal_case('tags') == 'Tags'
    assert camel_case('') == ''
