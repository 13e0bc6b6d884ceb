"""Request-facing entry point: named root mutations over one metadata snapshot."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import MetaData

from .core.descriptors import MetadataSnapshot, UniqueConstraintDescriptor
from .core.inputs import MutationInputParser, RootKind, RootOperation
from .core.introspection import build_snapshot
from .core.node_id import NodeIdCodec, NodeIdRegistry
from .errors import ConfigurationError, NestedMutationError, ValidationError
from .orchestrator import MutationOrchestrator
from .resolvers import ResolvedNode
from .settings import MutationSettings

logger = logging.getLogger(__name__)

__all__ = ['MutationRoute', 'MutationResult', 'RootMutationEntryPoint']


@dataclass(frozen=True)
class MutationRoute:
    """One named root mutation.

    ``input_field`` holds the row payload of a create and the patch of an
    update. Update routes address their row either by ``unique`` or by node id.
    """

    name: str
    kind: RootKind
    table: str
    input_field: str
    unique: Optional[UniqueConstraintDescriptor] = None
    by_node_id: bool = False


@dataclass
class MutationResult:
    name: str
    data: Optional[Dict[str, Any]] = None
    error: Optional[NestedMutationError] = None
    node: Optional[ResolvedNode] = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'data': self.data,
            'error': self.error.to_dict() if self.error is not None else None,
        }


class RootMutationEntryPoint:
    """Parses named root mutations and resolves each inside its own savepoint.

    Example::

        entry = RootMutationEntryPoint.from_metadata(Base.metadata)
        result = await entry.execute(session, 'createParent', {
            'parent': {'name': 'A', 'childrenByParentId': [{'create': {'label': 'x'}}]},
        })
    """

    def __init__(
        self,
        snapshot: MetadataSnapshot,
        settings: Optional[MutationSettings] = None,
        node_id_codec: Optional[NodeIdCodec] = None,
    ):
        self.snapshot = snapshot
        self.settings = settings or MutationSettings()
        self.inflector = self.settings.inflector()
        self.node_ids = NodeIdRegistry(snapshot, node_id_codec)
        self.parser = MutationInputParser(snapshot, self.settings, self.node_ids)
        self.orchestrator = MutationOrchestrator(snapshot, self.node_ids, self.settings)
        self._routes = self._build_routes()

    @classmethod
    def from_metadata(
        cls,
        metadata: MetaData | Iterable[Any],
        settings: Optional[MutationSettings] = None,
        node_id_codec: Optional[NodeIdCodec] = None,
    ) -> 'RootMutationEntryPoint':
        settings = settings or MutationSettings()
        return cls(build_snapshot(metadata, settings), settings, node_id_codec)

    # --- routes --------------------------------------------------------------
    def _build_routes(self) -> Dict[str, MutationRoute]:
        routes: Dict[str, MutationRoute] = {}

        def _add(route: MutationRoute):
            if route.name in routes:
                raise ConfigurationError(
                    f"Mutations for {routes[route.name].table} and {route.table} share the name {route.name}"
                )
            routes[route.name] = route

        for table in self.snapshot.tables.values():
            if table.insertable:
                _add(MutationRoute(
                    name=self.inflector.create_field(table.name),
                    kind=RootKind.CREATE,
                    table=table.name,
                    input_field=table.field_name,
                ))
            if not table.updatable:
                continue
            patch_field = self.inflector.patch_field(table.name, self.settings.patch_suffix)
            for unique in table.unique_constraints:
                name = self.inflector.update_field(table.name, () if unique.is_primary else unique.attributes)
                _add(MutationRoute(
                    name=name,
                    kind=RootKind.UPDATE,
                    table=table.name,
                    input_field=patch_field,
                    unique=unique,
                ))
            _add(MutationRoute(
                name=self.inflector.update_by_node_id_field(table.name, self.settings.node_id_field),
                kind=RootKind.UPDATE,
                table=table.name,
                input_field=patch_field,
                by_node_id=True,
            ))
        return routes

    def routes(self) -> Dict[str, MutationRoute]:
        return dict(self._routes)

    def route(self, name: str) -> MutationRoute:
        try:
            return self._routes[name]
        except KeyError:
            raise ValidationError(f"Unknown mutation {name}") from None

    # --- parsing -------------------------------------------------------------
    def parse(self, name: str, payload: Any, selection: Any = None) -> RootOperation:
        """Turn ``payload`` for the named mutation into a :class:`RootOperation`."""
        route = self.route(name)
        base = ('input',)
        if not isinstance(payload, Mapping):
            raise ValidationError(f"{name} expects an input object", path=base)
        if route.kind is RootKind.CREATE:
            extra = sorted(k for k in payload if k != route.input_field)
            if route.input_field not in payload or extra:
                raise ValidationError(f"{name} expects exactly {{{route.input_field}: ...}}", path=base)
            return self.parser.parse_create(
                route.table,
                payload[route.input_field],
                path=base + (route.input_field,),
                selection=selection,
                name=name,
            )

        patch = payload.get(route.input_field)
        if patch is None:
            raise ValidationError(f"{name} expects {route.input_field}", path=base + (route.input_field,))
        address = {k: v for k, v in payload.items() if k != route.input_field}
        table = self.snapshot.table(route.table)
        if route.by_node_id:
            expected = {self.settings.node_id_field}
        else:
            expected = {table.attribute(a).field_name for a in route.unique.attributes}
        if set(address) != expected:
            raise ValidationError(f"{name} expects {', '.join(sorted(expected))}", path=base)
        return self.parser.parse_update(
            route.table,
            address,
            patch,
            path=base,
            patch_path=base + (route.input_field,),
            selection=selection,
            name=name,
        )

    # --- execution -----------------------------------------------------------
    async def resolve_root_mutation(self, session: Any, operation: RootOperation) -> ResolvedNode:
        """Resolve an already parsed root mutation; errors propagate."""
        return await self.orchestrator.resolve(session, operation)

    async def _run(self, session: Any, name: str, payload: Any, selection: Any = None) -> MutationResult:
        try:
            operation = self.parse(name, payload, selection)
            node = await self.resolve_root_mutation(session, operation)
        except ConfigurationError:
            raise
        except NestedMutationError as exc:
            logger.info(f"{name} failed: {exc}")
            return MutationResult(name=name, error=exc)
        return MutationResult(name=name, data=node.to_dict(), node=node)

    async def execute(self, session: Any, name: str, payload: Any, selection: Any = None) -> MutationResult:
        """Run one named mutation and commit when it succeeded and ``settings.commit`` is set."""
        result = await self._run(session, name, payload, selection)
        if result.ok and self.settings.commit:
            await session.commit()
        return result

    async def execute_batch(
        self,
        session: Any,
        mutations: Sequence[Tuple[Any, ...]],
    ) -> List[MutationResult]:
        """Run ``[(name, payload[, selection]), ...]`` in order, each in its own savepoint.

        A failing mutation is rolled back to its savepoint and reported in its
        result; the others still apply. The transaction is committed once
        at the end when any mutation succeeded and ``settings.commit`` is set.
        """
        results: List[MutationResult] = []
        for item in mutations:
            name, payload, *rest = item
            results.append(await self._run(session, name, payload, rest[0] if rest else None))
        if self.settings.commit and any(r.ok for r in results):
            await session.commit()
        return results
