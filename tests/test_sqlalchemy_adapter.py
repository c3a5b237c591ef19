from __future__ import annotations
import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session

from deadlock_retry import RetryingTransactionExecutor, StatementInvalid, no_pause
from deadlock_retry.contrib.sqlalchemy_adapter import SQLAlchemyEngineProbe, SessionTransactions

DEADLOCK = "(1213, 'Deadlock found when trying to get lock; try restarting transaction')"


@pytest.fixture
def engine():
    eng = create_engine("sqlite+pysqlite:///:memory:")
    with eng.begin() as conn:
        conn.execute(text("CREATE TABLE items(id INTEGER PRIMARY KEY, name TEXT)"))
    yield eng
    eng.dispose()


def count_items(sess) -> int:
    return sess.execute(text("SELECT COUNT(*) FROM items")).scalar_one()


@pytest.mark.asyncio
async def test_failed_attempt_rolled_back_then_retried(engine, capability):
    with Session(engine) as sess:
        calls = []

        def work():
            calls.append(1)
            sess.execute(text("INSERT INTO items(name) VALUES ('alpha')"))
            if len(calls) == 1:
                raise StatementInvalid(DEADLOCK)
            return "ok"

        executor = RetryingTransactionExecutor(
            SessionTransactions(sess),
            probe=SQLAlchemyEngineProbe(sess),
            capability=capability,
            pause=no_pause,
        )
        assert await executor.run(work) == "ok"
        assert len(calls) == 2
        assert count_items(sess) == 1


@pytest.mark.asyncio
async def test_non_transient_error_rolls_back_once(engine, capability):
    with Session(engine) as sess:
        calls = []

        def work():
            calls.append(1)
            sess.execute(text("INSERT INTO items(name) VALUES ('beta')"))
            raise StatementInvalid("no such column: nme")

        executor = RetryingTransactionExecutor(
            SessionTransactions(sess), capability=capability, pause=no_pause
        )
        with pytest.raises(StatementInvalid):
            await executor.run(work)
        assert len(calls) == 1
        assert count_items(sess) == 0


def test_caller_transaction_counts_as_enclosing(engine):
    with Session(engine) as sess:
        tx = SessionTransactions(sess)
        assert tx.open_transactions() == 0
        with sess.begin():
            assert tx.open_transactions() == 1
        assert tx.open_transactions() == 0


@pytest.mark.asyncio
async def test_sqlite_is_not_probed(engine, capability):
    probe = SQLAlchemyEngineProbe(engine)
    assert probe.adapter_name() == "sqlite"
    state = await capability.resolve(probe)
    assert not state.available


def test_probe_queries_use_own_connection(engine):
    with Session(engine) as sess:
        probe = SQLAlchemyEngineProbe(sess)
        assert probe.select_one("SELECT 'InnoDB' AS Type, 'hello' AS Status") == {
            "Type": "InnoDB",
            "Status": "hello",
        }
        assert probe.select_rows("SELECT 'version', '8.0.36'") == [("version", "8.0.36")]
        assert probe.select_one("SELECT name FROM items") is None
        assert not sess.in_transaction()


@pytest.mark.asyncio
async def test_nested_deadlock_after_server_rollback_retries_outermost(engine, capability):
    with Session(engine) as sess:
        outer_calls = []
        inner_calls = []
        executor = RetryingTransactionExecutor(
            SessionTransactions(sess), capability=capability, pause=no_pause
        )
        deadlock = StatementInvalid(DEADLOCK)

        def innermost():
            inner_calls.append(1)
            if len(inner_calls) == 1:
                # the server has already undone the transaction, savepoints included
                sess.execute(text("ROLLBACK"))
                raise deadlock
            sess.execute(text("INSERT INTO items(name) VALUES ('inner')"))
            return "inner"

        async def outer():
            outer_calls.append(1)
            sess.execute(text("INSERT INTO items(name) VALUES ('outer')"))
            return await executor.run(innermost)

        assert await executor.run(outer) == "inner"
        assert len(outer_calls) == 2
        assert len(inner_calls) == 2
        assert count_items(sess) == 2


@pytest.mark.asyncio
async def test_nested_failure_surfaces_body_error_when_savepoint_is_gone(engine, capability):
    with Session(engine) as sess:
        tx = SessionTransactions(sess)
        boom = StatementInvalid("no such column: nme")

        def innermost():
            sess.execute(text("ROLLBACK"))
            raise boom

        async def outer():
            return await tx.begin_transaction(innermost)

        with pytest.raises(StatementInvalid) as excinfo:
            await tx.begin_transaction(outer)
        assert excinfo.value is boom
        assert tx.open_transactions() == 0
        assert not sess.in_transaction()
