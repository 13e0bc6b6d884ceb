import pytest
from sqlalchemy.dialects import sqlite

from nestql import ConfigurationError
from nestql.core.introspection import build_snapshot
from nestql.sql.builders import (
    StatementKind,
    build_delete,
    build_insert,
    build_null_out_update,
    build_point_select,
    build_update,
    returning_columns,
)
from tests.models import Base


@pytest.fixture(scope="module")
def snapshot():
    return build_snapshot(Base.metadata)


def _compiled(stmt, **kw):
    c = stmt.clause.compile(dialect=sqlite.dialect(), **kw)
    return str(c), c.params


def test_returning_unions_unique_columns(snapshot):
    parents = snapshot.table('parents')
    assert returning_columns(parents, ['name']) == ('name', 'id', 'email')
    assert returning_columns(parents) == ('id', 'name', 'email')
    with pytest.raises(ConfigurationError):
        returning_columns(parents, ['nope'])


def test_insert_binds_values_and_returns_keys(snapshot):
    children = snapshot.table('children')
    evil = "x'); DROP TABLE children; --"
    stmt = build_insert(children, {'label': evil, 'parent_id': 1}, ['label'])
    sql, params = _compiled(stmt)
    assert stmt.kind is StatementKind.INSERT
    assert sql.startswith('INSERT INTO children')
    assert 'RETURNING' in sql
    assert 'DROP TABLE' not in sql
    assert params == {'label': evil, 'parent_id': 1}
    assert stmt.returning == ('label', 'id')


def test_insert_omits_null_primary_key(snapshot):
    parents = snapshot.table('parents')
    stmt = build_insert(parents, {'id': None, 'name': 'A'})
    _, params = _compiled(stmt)
    assert 'id' not in params
    assert params['name'] == 'A'


def test_insert_without_values_uses_defaults(snapshot):
    parents = snapshot.table('parents')
    sql, _ = _compiled(build_insert(parents, {}), column_keys=[])
    assert 'DEFAULT VALUES' in sql


def test_insert_rejects_non_insertable(snapshot):
    logs = snapshot.table('audit_logs')
    with pytest.raises(ConfigurationError):
        build_insert(logs, {'message': 'm', 'created_at': None})


def test_update_requires_unique_key_and_values(snapshot):
    parents = snapshot.table('parents')
    stmt = build_update(parents, {'email': 'a@example.com'}, {'name': 'B'}, ['name'])
    sql, params = _compiled(stmt)
    assert sql.startswith('UPDATE parents SET name=')
    assert 'a@example.com' in params.values() and 'B' in params.values()

    with pytest.raises(ConfigurationError):
        build_update(parents, {'name': 'A'}, {'name': 'B'})
    with pytest.raises(ConfigurationError):
        build_update(parents, {'id': None}, {'name': 'B'})
    with pytest.raises(ConfigurationError):
        build_update(parents, {'id': 1}, {})


def test_point_select_by_key(snapshot):
    customers = snapshot.table('customers')
    stmt = build_point_select(customers, {'id': 7}, ['email'])
    sql, params = _compiled(stmt)
    assert stmt.kind is StatementKind.SELECT
    assert 'FROM customers' in sql and 'WHERE customers.id = ?' in sql
    assert list(params.values()) == [7]
    assert stmt.returning == ('email', 'id')


def test_null_out_update_with_guard(snapshot):
    children = snapshot.table('children')
    stmt = build_null_out_update(children, {'id': 3}, ['parent_id'], guard={'parent_id': 9})
    sql, params = _compiled(stmt)
    assert 'SET parent_id=?' in sql
    assert 'children.id = ?' in sql and 'children.parent_id = ?' in sql
    assert sorted(v for v in params.values() if v is not None) == [3, 9]

    guarded_null = build_point_select(children, {'id': 3}, guard={'parent_id': None})
    assert 'parent_id IS NULL' in _compiled(guarded_null)[0]

    orders = snapshot.table('orders')
    with pytest.raises(ConfigurationError):
        build_null_out_update(orders, {'id': 1}, ['customer_id'])


def test_delete_respects_deletable_flag(snapshot):
    children = snapshot.table('children')
    stmt = build_delete(children, {'id': 3}, guard={'parent_id': 9})
    sql, _ = _compiled(stmt)
    assert sql.startswith('DELETE FROM children')
    with pytest.raises(ConfigurationError):
        build_delete(snapshot.table('audit_logs'), {'id': 1})
