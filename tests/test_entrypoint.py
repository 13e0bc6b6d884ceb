import pytest

from nestql import ConfigurationError, MutationSettings, ValidationError
from nestql.core.inputs import RootKind
from nestql.entrypoint import RootMutationEntryPoint
from tests.models import Base


def test_routes_cover_create_and_every_unique_key(entry):
    routes = entry.routes()
    assert routes['createParent'].kind is RootKind.CREATE
    assert routes['createParent'].input_field == 'parent'
    assert routes['updateParent'].unique.is_primary
    assert routes['updateParentByEmail'].unique.attributes == ('email',)
    assert routes['updateParentByNodeId'].by_node_id
    assert routes['updateParentByNodeId'].input_field == 'parentPatch'
    assert 'updateOrderItemByOrderIdAndSku' in routes
    assert 'updateProfileByUserId' in routes


def test_snake_case_routes():
    entry = RootMutationEntryPoint.from_metadata(Base.metadata, MutationSettings(auto_camel_case=False))
    routes = entry.routes()
    assert 'create_parent' in routes
    assert routes['update_parent_by_node_id'].input_field == 'parent_patch'


def test_parse_rejects_malformed_inputs(entry):
    with pytest.raises(ValidationError):
        entry.parse('dropEverything', {})
    with pytest.raises(ValidationError):
        entry.parse('createParent', {'name': 'A'})
    with pytest.raises(ValidationError):
        entry.parse('createParent', {'parent': {'name': 'A'}, 'extra': 1})
    with pytest.raises(ValidationError):
        entry.parse('updateParentByEmail', {'id': 9, 'parentPatch': {'name': 'x'}})
    with pytest.raises(ValidationError):
        entry.parse('updateParent', {'id': 9})
    with pytest.raises(ValidationError) as exc:
        entry.parse('updateParent', ['not', 'an', 'object'])
    assert exc.value.path == ('input',)


@pytest.mark.asyncio
async def test_execute_reports_errors_as_results(entry, db_session):
    result = await entry.execute(db_session, 'createParent', {'parent': {'name': 'A', 'childrenByParentId': {'create': {'label': 'x'}}}})
    # a single object is accepted for a plural relation
    assert result.ok, result.error
    assert result.to_dict()['error'] is None
    assert result.data['childrenByParentId']['label'] == 'x'

    result = await entry.execute(db_session, 'updateParentByNodeId', {'nodeId': 'garbage', 'parentPatch': {'name': 'x'}})
    assert not result.ok
    body = result.to_dict()
    assert body['data'] is None
    assert body['error']['kind'] == 'decode'
    assert body['error']['path'] == ['input', 'nodeId']


@pytest.mark.asyncio
async def test_configuration_errors_propagate(entry, db_session, monkeypatch):
    async def _broken(session, operation):
        raise ConfigurationError("broken descriptor")

    monkeypatch.setattr(entry.orchestrator, 'resolve', _broken)
    with pytest.raises(ConfigurationError):
        await entry.execute(db_session, 'createParent', {'parent': {'name': 'A'}})
