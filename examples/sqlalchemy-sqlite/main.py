from __future__ import annotations
import asyncio
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from deadlock_retry import RetryPolicy, RetryingTransactionExecutor, StatementInvalid
from deadlock_retry.contrib.sqlalchemy_adapter import SQLAlchemyEngineProbe, SessionTransactions

engine = create_engine("sqlite+pysqlite:///:memory:", echo=False)
Session = sessionmaker(bind=engine, autoflush=False)

attempts = {"n": 0}


def setup(sess):
    sess.execute(text("CREATE TABLE IF NOT EXISTS items(id INTEGER PRIMARY KEY, name TEXT)"))


def insert_one(sess, name: str):
    attempts["n"] += 1
    sess.execute(text("INSERT INTO items(name) VALUES (:n)"), {"n": name})
    if attempts["n"] == 1:
        # what MySQL would report for a deadlock victim
        raise StatementInvalid("Deadlock found when trying to get lock; try restarting transaction")


async def main():
    policy = RetryPolicy(max_retries=2, wait_times=(0, 0.05))

    with Session() as sess:
        with sess.begin():
            setup(sess)

        executor = RetryingTransactionExecutor(
            SessionTransactions(sess),
            probe=SQLAlchemyEngineProbe(sess),
            policy=policy,
        )
        await executor.run(insert_one, args=(sess, "gamma"))

        rows = sess.execute(text("SELECT id, name FROM items ORDER BY id")).all()
        print("Attempts:", attempts["n"], "Rows:", [tuple(r) for r in rows])


if __name__ == "__main__":
    asyncio.run(main())
