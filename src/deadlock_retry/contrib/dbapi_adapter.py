from __future__ import annotations
from collections.abc import Mapping
from contextlib import suppress
from typing import Any, Callable, Optional
import random
import string

from deadlock_retry._util import maybe_await

# This adapter assumes a PEP 249 connection with .cursor(), .commit(), .rollback()
# whose cursors are usable as context managers (PyMySQL, mysqlclient, psycopg).

_DRIVER_FAMILIES = {
    "pymysql": "MySQL",
    "MySQLdb": "MySQL",
    "mysql": "MySQL",
    "mariadb": "MariaDB",
    "psycopg": "PostgreSQL",
    "psycopg2": "PostgreSQL",
    "sqlite3": "SQLite",
}


def _sp_name(prefix: str = "txretry") -> str:
    return prefix + "_" + "".join(random.choices(string.ascii_lowercase + string.digits, k=8))


class DBAPITransactions:
    """
    Transaction primitive over a DB-API connection.

    The outermost frame issues BEGIN and COMMIT/ROLLBACK; frames opened while
    another one is active become SAVEPOINTs, so an inner failure only undoes
    its own work before the error travels up to the outermost executor.
    """

    def __init__(self, conn):
        self.conn = conn
        self._depth = 0

    def open_transactions(self) -> int:
        return self._depth

    def _execute(self, sql: str) -> None:
        with self.conn.cursor() as cur:
            cur.execute(sql)

    async def begin_transaction(self, work: Callable[[], Any]) -> Any:
        sp: Optional[str] = None
        if self._depth == 0:
            self._execute("BEGIN")
        else:
            sp = _sp_name()
            self._execute(f"SAVEPOINT {sp}")

        self._depth += 1
        try:
            result = await maybe_await(work())
            if sp:
                self._execute(f"RELEASE SAVEPOINT {sp}")
            else:
                self.conn.commit()
            return result
        except BaseException:
            if sp:
                with suppress(Exception):
                    self._execute(f"ROLLBACK TO SAVEPOINT {sp}")
            else:
                with suppress(Exception):
                    self.conn.rollback()
            raise
        finally:
            self._depth -= 1


def guess_adapter_name(conn) -> str:
    root = type(conn).__module__.split(".")[0]
    return _DRIVER_FAMILIES.get(root, root)


class DBAPIEngineProbe:
    """Engine introspection through a DB-API connection."""

    def __init__(self, conn, adapter_name: Optional[str] = None):
        self.conn = conn
        self._adapter_name = adapter_name

    def adapter_name(self) -> str:
        return self._adapter_name or guess_adapter_name(self.conn)

    def select_one(self, sql: str):
        with self.conn.cursor() as cur:
            cur.execute(sql)
            row = cur.fetchone()
            if row is None or isinstance(row, Mapping):
                return row
            names = [d[0] for d in (cur.description or ())]
            if len(names) != len(row):
                return tuple(row)
            return dict(zip(names, row))

    def select_rows(self, sql: str) -> list[tuple]:
        with self.conn.cursor() as cur:
            cur.execute(sql)
            rows = cur.fetchall() or ()
        return [tuple(r.values()) if isinstance(r, Mapping) else tuple(r) for r in rows]


def apply_lock_wait_timeout(
    conn, *, backend: Optional[str] = "mysql", lock_wait_timeout_s: Optional[int] = None
) -> None:
    """
    Best-effort per-attempt lock wait timeout (no-op where unsupported).

    Meant as a `pre_attempt` hook, so a blocked attempt fails fast with a
    retryable lock wait timeout instead of holding the connection.
    """
    if lock_wait_timeout_s is None:
        return
    backend = (backend or "").lower()
    with conn.cursor() as cur:
        if backend in ("mysql", "mariadb"):
            cur.execute(f"SET SESSION innodb_lock_wait_timeout = {int(lock_wait_timeout_s)}")
        elif backend == "postgresql":
            cur.execute(f"SET lock_timeout = '{int(lock_wait_timeout_s)}s'")
        elif backend == "sqlite":
            with suppress(Exception):
                cur.execute(f"PRAGMA busy_timeout = {int(lock_wait_timeout_s) * 1000}")
