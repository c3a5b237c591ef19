from __future__ import annotations
from contextlib import suppress
from typing import Any, Callable, Union
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from deadlock_retry._util import maybe_await


class SessionTransactions:
    """
    Transaction primitive over a SQLAlchemy Session.

    The first frame uses ``Session.begin()``, nested frames ``begin_nested()``
    (SAVEPOINT). A transaction the caller already had open on the session
    counts as an enclosing one, so failures inside it are never retried here.
    """

    def __init__(self, session: Session):
        self.session = session
        self._depth = 0

    def open_transactions(self) -> int:
        if self._depth:
            return self._depth
        return 1 if self.session.in_transaction() else 0

    async def begin_transaction(self, work: Callable[[], Any]) -> Any:
        sess = self.session
        tx = sess.begin_nested() if sess.in_transaction() else sess.begin()
        self._depth += 1
        try:
            result = await maybe_await(work())
            tx.commit()
            return result
        except BaseException:
            # a deadlock rolls back on the server and drops the savepoint
            with suppress(Exception):
                tx.rollback()
            raise
        finally:
            self._depth -= 1


class SQLAlchemyEngineProbe:
    """
    Engine introspection on a dedicated connection from the session's engine,
    so probing never starts a transaction on the session being retried.
    """

    def __init__(self, bind: Union[Engine, Session]):
        self.engine: Engine = bind.get_bind() if isinstance(bind, Session) else bind

    def adapter_name(self) -> str:
        return self.engine.dialect.name

    def select_one(self, sql: str):
        with self.engine.connect() as conn:
            row = conn.execute(text(sql)).mappings().first()
        return dict(row) if row is not None else None

    def select_rows(self, sql: str) -> list[tuple]:
        with self.engine.connect() as conn:
            return [tuple(r) for r in conn.execute(text(sql)).all()]
