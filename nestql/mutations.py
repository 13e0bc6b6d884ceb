"""Strawberry request surface for :class:`RootMutationEntryPoint`."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import strawberry
from graphql import GraphQLError
from strawberry.scalars import JSON
from strawberry.types import Info as StrawberryInfo

from .core.inputs import RootKind
from .entrypoint import MutationRoute, RootMutationEntryPoint
from .naming import camel_to_snake

logger = logging.getLogger(__name__)

__all__ = ['build_mutation_type', 'get_db_session']

_SESSION_KEYS = ('db_session', 'db', 'session', 'async_session')


def get_db_session(info_or_ctx: Any) -> Any | None:
    """Extract an AsyncSession-like object from a Strawberry ``Info`` or a context.

    Tries ``db_session``, ``db``, ``session`` and ``async_session`` as mapping
    keys first, then as attributes.
    """
    if info_or_ctx is None:
        return None
    ctx = getattr(info_or_ctx, 'context', info_or_ctx)
    if ctx is None:
        return None
    if isinstance(ctx, dict):
        for key in _SESSION_KEYS:
            if ctx.get(key) is not None:
                return ctx[key]
        return None
    for key in _SESSION_KEYS:
        value = getattr(ctx, key, None)
        if value is not None:
            return value
    return None


def _route_description(route: MutationRoute) -> str:
    if route.kind is RootKind.CREATE:
        return f"Create one {route.table} row with nested related rows. Input: {{{route.input_field}: {{...}}}}."
    if route.by_node_id:
        return f"Update one {route.table} row addressed by node id. Input: {{nodeId, {route.input_field}}}."
    attrs = ', '.join(route.unique.attributes)
    return f"Update one {route.table} row addressed by ({attrs}). Input: {{keys, {route.input_field}}}."


def _make_resolver(entry: RootMutationEntryPoint, route: MutationRoute):
    async def _resolver(self, info, input, selection=None):  # noqa: A002
        session = get_db_session(info)
        if session is None:
            raise GraphQLError("No db_session in context")
        result = await entry.execute(session, route.name, input, selection)
        if result.error is not None:
            err = result.error
            raise GraphQLError(err.message, extensions={'kind': err.kind.value, 'path': list(err.path)})
        return result.data

    _resolver.__name__ = camel_to_snake(route.name)
    _resolver.__annotations__ = {
        'info': StrawberryInfo,
        'input': JSON,
        'selection': Optional[JSON],
        'return': Optional[JSON],
    }
    return _resolver


def build_mutation_type(entry: RootMutationEntryPoint, *, name: str = 'Mutation') -> type:
    """Build a Strawberry Mutation type with one field per named root mutation.

    Each field takes ``input: JSON`` (and an optional ``selection: JSON``) and
    returns the resolved output tree as JSON. Engine errors surface as
    ``GraphQLError`` with ``extensions={'kind', 'path'}``.
    """
    MPlain = type(name, (), {'__doc__': 'Nested mutation root.'})
    setattr(MPlain, '__module__', __name__)
    anns: Dict[str, Any] = {}
    for route in entry.routes().values():
        attr = camel_to_snake(route.name)
        setattr(
            MPlain,
            attr,
            strawberry.field(
                resolver=_make_resolver(entry, route),
                name=route.name,
                description=_route_description(route),
            ),
        )
        anns[attr] = Optional[JSON]
    setattr(MPlain, '__annotations__', anns)
    logger.debug(f"Built {name} with {len(anns)} fields")
    return strawberry.type(MPlain)
