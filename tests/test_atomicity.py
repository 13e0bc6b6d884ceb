import logging

import pytest
from sqlalchemy import func, select

from nestql import StatementError
from nestql.errors import ErrorKind
from tests.models import Child, Customer, Order, OrderItem, Parent


async def _count(session, model):
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.mark.asyncio
async def test_failure_on_last_branch_leaves_nothing_behind(entry, db_session, caplog):
    payload = {
        'parent': {
            'name': 'Doomed',
            'childrenByParentId': [
                {'create': {'label': 'ok'}},
                {'create': {'label': None}},
            ],
        },
    }
    with caplog.at_level(logging.WARNING, logger='nestql.orchestrator'):
        result = await entry.execute(db_session, 'createParent', payload)
    assert not result.ok
    assert isinstance(result.error, StatementError)
    assert result.error.kind is ErrorKind.STATEMENT
    assert result.error.path == ('input', 'parent', 'childrenByParentId', 1, 'create')
    assert result.error.statement and 'INSERT INTO children' in result.error.statement
    assert result.data is None
    assert any('Rolled back create parents' in r.getMessage() for r in caplog.records)

    assert await _count(db_session, Parent) == 0
    assert await _count(db_session, Child) == 0


@pytest.mark.asyncio
async def test_deep_failure_rolls_back_forward_writes(entry, db_session, sample_customers):
    # the customer and order are inserted before the duplicate sku fails
    payload = {
        'customer': {
            'email': 'atomic@example.com',
            'ordersByCustomerId': [
                {'create': {'orderItemsByOrderId': [{'create': {'sku': 'dup'}}, {'create': {'sku': 'dup'}}]}},
            ],
        },
    }
    result = await entry.execute(db_session, 'createCustomer', payload)
    assert isinstance(result.error, StatementError)
    assert result.error.__cause__ is not None
    assert await _count(db_session, Customer) == 2
    assert await _count(db_session, Order) == 0
    assert await _count(db_session, OrderItem) == 0


@pytest.mark.asyncio
async def test_fk_violation_is_a_statement_error(entry, db_session):
    result = await entry.execute(db_session, 'createOrder', {'order': {'customerId': 12345}})
    assert isinstance(result.error, StatementError)
    assert await _count(db_session, Order) == 0


@pytest.mark.asyncio
async def test_session_stays_usable_after_rollback(entry, db_session):
    bad = await entry.execute(db_session, 'createParent', {'parent': {'name': None}})
    assert not bad.ok
    good = await entry.execute(db_session, 'createParent', {'parent': {'name': 'After'}})
    assert good.ok, good.error
    assert good.data['name'] == 'After'
    assert await _count(db_session, Parent) == 1
