"""nestql public API and lightweight lazy exports.

Heavy submodules (SQLAlchemy statement building, Strawberry) are imported on
first attribute access so that model modules can import nestql settings
without pulling in the whole engine.

Exposes:
- MutationSettings and the error classes (eager)
- Lazy: RootMutationEntryPoint, MutationResult, MutationOrchestrator,
  StatementExecutor, build_snapshot, build_mutation_type, Base64JSONCodec
"""
from __future__ import annotations

from .errors import (
    ConfigurationError,
    DecodeError,
    ErrorKind,
    MissingRowError,
    NestedMutationError,
    StatementError,
    ValidationError,
)
from .settings import MutationSettings

_LAZY = {
    'RootMutationEntryPoint': '.entrypoint',
    'MutationResult': '.entrypoint',
    'MutationRoute': '.entrypoint',
    'MutationOrchestrator': '.orchestrator',
    'ResolvedNode': '.resolvers',
    'StatementExecutor': '.executor',
    'build_snapshot': '.core.introspection',
    'MetadataSnapshot': '.core.descriptors',
    'Base64JSONCodec': '.core.node_id',
    'NodeIdRegistry': '.core.node_id',
    'build_mutation_type': '.mutations',
    'get_db_session': '.mutations',
}


def __getattr__(name: str):  # PEP 562 lazy exports
    import importlib as _importlib
    module = _LAZY.get(name)
    if module is None:
        raise AttributeError(name)
    return getattr(_importlib.import_module(module, __name__), name)


__all__ = [
    'ConfigurationError', 'DecodeError', 'ErrorKind', 'MissingRowError',
    'NestedMutationError', 'StatementError', 'ValidationError',
    'MutationSettings',
    *_LAZY,
]
