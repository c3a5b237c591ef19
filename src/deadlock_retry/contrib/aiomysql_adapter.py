from __future__ import annotations
from contextlib import asynccontextmanager, suppress
from typing import Any, Callable, Optional
import inspect
import random
import string

from deadlock_retry._util import maybe_await


def _sp() -> str:
    return "txretry_" + "".join(random.choices(string.ascii_lowercase + string.digits, k=8))


@asynccontextmanager
async def _cursor_cm(conn):
    """
    Yield a usable cursor regardless of aiomysql version / wrapper shape:
    - conn.cursor() may be awaitable or not
    - the result may be an async CM or a plain object
    """
    cur = conn.cursor()
    if inspect.isawaitable(cur):
        cur = await cur

    if hasattr(cur, "__aenter__") and hasattr(cur, "__aexit__"):
        real = await cur.__aenter__()
        try:
            yield real
        finally:
            await cur.__aexit__(None, None, None)
        return

    try:
        yield cur
    finally:
        close = getattr(cur, "close", None)
        if close:
            await maybe_await(close())


class AioMySQLTransactions:
    """
    aiomysql transaction primitive:
      - outermost frame: BEGIN ... COMMIT, ROLLBACK on error
      - nested frames: SAVEPOINT ... RELEASE, ROLLBACK TO SAVEPOINT on error
    """

    def __init__(self, conn):
        self.conn = conn
        self._depth = 0

    def open_transactions(self) -> int:
        return self._depth

    async def _execute(self, sql: str) -> None:
        async with _cursor_cm(self.conn) as cur:
            await cur.execute(sql)

    async def begin_transaction(self, work: Callable[[], Any]) -> Any:
        sp: Optional[str] = None
        if self._depth == 0:
            await self._execute("BEGIN")
        else:
            sp = _sp()
            await self._execute(f"SAVEPOINT {sp}")

        self._depth += 1
        try:
            result = await maybe_await(work())
            await self._execute(f"RELEASE SAVEPOINT {sp}" if sp else "COMMIT")
            return result
        except BaseException:
            with suppress(Exception):
                await self._execute(f"ROLLBACK TO SAVEPOINT {sp}" if sp else "ROLLBACK")
            raise
        finally:
            self._depth -= 1


class AioMySQLEngineProbe:
    def __init__(self, conn, adapter_name: str = "MySQL"):
        self.conn = conn
        self._adapter_name = adapter_name

    def adapter_name(self) -> str:
        return self._adapter_name

    async def select_one(self, sql: str):
        async with _cursor_cm(self.conn) as cur:
            await cur.execute(sql)
            row = await maybe_await(cur.fetchone())
            if row is None or isinstance(row, dict):
                return row
            names = [d[0] for d in (getattr(cur, "description", None) or ())]
            if len(names) != len(row):
                return tuple(row)
            return dict(zip(names, row))

    async def select_rows(self, sql: str) -> list[tuple]:
        async with _cursor_cm(self.conn) as cur:
            await cur.execute(sql)
            rows = await maybe_await(cur.fetchall())
        return [tuple(r.values()) if isinstance(r, dict) else tuple(r) for r in rows or ()]


async def apply_lock_wait_timeout_async(conn, *, lock_wait_timeout_s: int | None) -> None:
    """Best-effort per-attempt InnoDB lock wait timeout."""
    if lock_wait_timeout_s is None:
        return
    async with _cursor_cm(conn) as cur:
        await cur.execute(f"SET SESSION innodb_lock_wait_timeout = {int(lock_wait_timeout_s)}")
