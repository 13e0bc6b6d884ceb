"""Statement execution over an ``AsyncSession`` or ``AsyncConnection``."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Sequence

from sqlalchemy.exc import DBAPIError

from .errors import PathItem, StatementError
from .sql.builders import Statement

logger = logging.getLogger(__name__)

__all__ = ['StatementExecutor']


class StatementExecutor:
    """Runs statements one at a time on a single session/connection.

    Statements of one root mutation are awaited sequentially, in the order the
    orchestrator issues them. ``history`` keeps every statement issued, which
    tests and diagnostics use to check ordering.
    """

    def __init__(self, session: Any, *, log_statements: bool = False):
        self.session = session
        self.log_statements = log_statements
        self.history: List[Statement] = []

    def _dialect(self):
        dialect = getattr(self.session, 'dialect', None)
        if dialect is not None:
            return dialect
        bind = getattr(self.session, 'bind', None)
        return getattr(bind, 'dialect', None)

    async def fetch(self, statement: Statement, path: Sequence[PathItem] = ()) -> List[Dict[str, Any]]:
        self.history.append(statement)
        if self.log_statements and logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"{statement.kind.value} {statement.table}: {statement.compile(self._dialect())}")
        try:
            result = await self.session.execute(statement.clause)
        except DBAPIError as exc:
            raise StatementError(
                f"{statement.kind.value.upper()} on {statement.table} failed: {exc.orig}",
                path=path,
                statement=statement.compile(self._dialect()),
            ) from exc
        if not result.returns_rows:
            return []
        return [dict(r) for r in result.mappings().all()]

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[Any]:
        """Scoped savepoint: released on success, rolled back on any exit by exception."""
        nested = await self.session.begin_nested()
        try:
            yield nested
        except BaseException:
            if nested.is_active:
                await nested.rollback()
            raise
        else:
            if nested.is_active:
                await nested.commit()
