from __future__ import annotations

from contextlib import suppress
from typing import Any, Callable, Union
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from deadlock_retry._util import maybe_await


class AsyncSessionTransactions:
    """
    AsyncSession counterpart of SessionTransactions:
      - outermost frame: ``begin()``
      - nested frames: ``begin_nested()`` (SAVEPOINT)
      - a transaction opened by the caller beforehand counts as enclosing
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self._depth = 0

    def open_transactions(self) -> int:
        if self._depth:
            return self._depth
        return 1 if self.session.in_transaction() else 0

    async def begin_transaction(self, work: Callable[[], Any]) -> Any:
        sess = self.session
        tx = await (sess.begin_nested() if sess.in_transaction() else sess.begin())
        self._depth += 1
        try:
            result = await maybe_await(work())
            await tx.commit()
            return result
        except BaseException:
            with suppress(Exception):
                await tx.rollback()
            raise
        finally:
            self._depth -= 1


class AsyncSQLAlchemyEngineProbe:
    def __init__(self, bind: Union[AsyncEngine, AsyncSession]):
        self.engine: AsyncEngine = bind.bind if isinstance(bind, AsyncSession) else bind

    def adapter_name(self) -> str:
        return self.engine.dialect.name

    async def select_one(self, sql: str):
        async with self.engine.connect() as conn:
            result = await conn.execute(text(sql))
            row = result.mappings().first()
        return dict(row) if row is not None else None

    async def select_rows(self, sql: str) -> list[tuple]:
        async with self.engine.connect() as conn:
            result = await conn.execute(text(sql))
            return [tuple(r) for r in result.all()]
