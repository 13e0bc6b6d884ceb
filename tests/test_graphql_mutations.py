import pytest
from sqlalchemy import select

from nestql.mutations import get_db_session
from tests.models import Child
from tests.schema import schema

CREATE_PARENT = "mutation($input: JSON!) { createParent(input: $input) }"
UPDATE_PARENT = "mutation($input: JSON!, $sel: JSON) { updateParentByEmail(input: $input, selection: $sel) }"


@pytest.mark.asyncio
async def test_create_parent_with_children(db_session):
    res = await schema.execute(
        CREATE_PARENT,
        variable_values={'input': {'parent': {
            'name': 'Root',
            'childrenByParentId': [{'create': {'label': 'a'}}, {'create': {'label': 'b'}}],
        }}},
        context_value={'db_session': db_session},
    )
    assert res.errors is None, res.errors
    data = res.data['createParent']
    assert data['name'] == 'Root'
    assert [c['label'] for c in data['childrenByParentId']] == ['a', 'b']
    assert all(c['parentId'] == data['id'] for c in data['childrenByParentId'])
    assert isinstance(data['nodeId'], str)


@pytest.mark.asyncio
async def test_update_with_selection(db_session, populated_db):
    res = await schema.execute(
        UPDATE_PARENT,
        variable_values={
            'input': {
                'email': 'nine@example.com',
                'parentPatch': {'childrenByParentId': [{'connectByKeys': {'id': 8}}]},
            },
            'sel': ['name', {'childrenByParentId': ['id', 'parentId']}],
        },
        context_value={'db_session': db_session},
    )
    assert res.errors is None, res.errors
    assert res.data['updateParentByEmail'] == {
        'name': 'Nine',
        'childrenByParentId': [{'id': 8, 'parentId': 9}],
    }
    owner = (await db_session.execute(select(Child.parent_id).where(Child.id == 8))).scalar_one()
    assert owner == 9


@pytest.mark.asyncio
async def test_engine_errors_carry_kind_and_path(db_session, populated_db):
    res = await schema.execute(
        CREATE_PARENT,
        variable_values={'input': {'parent': {
            'name': 'X',
            'childrenByParentId': [{'connectByKeys': {'id': 404}}],
        }}},
        context_value={'db_session': db_session},
    )
    assert res.errors
    err = res.errors[0]
    assert err.extensions['kind'] == 'statement'
    assert err.extensions['path'] == ['input', 'parent', 'childrenByParentId', 0, 'connectByKeys']
    assert res.data == {'createParent': None}


@pytest.mark.asyncio
async def test_missing_session_is_an_error():
    res = await schema.execute(
        CREATE_PARENT,
        variable_values={'input': {'parent': {'name': 'X'}}},
        context_value={},
    )
    assert res.errors
    assert 'db_session' in res.errors[0].message


def test_get_db_session_lookup():
    class Ctx:
        session = 'attr-session'

    class Info:
        context = {'db': 'dict-session'}

    assert get_db_session(None) is None
    assert get_db_session({'async_session': 's'}) == 's'
    assert get_db_session(Info()) == 'dict-session'
    assert get_db_session(Ctx()) == 'attr-session'
    assert get_db_session({}) is None
