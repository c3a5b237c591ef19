from __future__ import annotations
import os
import time
import asyncio
import logging
from functools import partial
from dotenv import load_dotenv
import pymysql
from pymysql.err import OperationalError

from deadlock_retry import RetryPolicy, RetryingTransactionExecutor
from deadlock_retry.contrib.dbapi_adapter import (
    DBAPIEngineProbe,
    DBAPITransactions,
    apply_lock_wait_timeout,
)

load_dotenv()

MYSQL_HOST = os.getenv("MYSQL_HOST", "localhost")
MYSQL_PORT = int(os.getenv("MYSQL_PORT", "3306"))
MYSQL_USER = os.getenv("MYSQL_USER", "txretry")
MYSQL_PASSWORD = os.getenv("MYSQL_PASSWORD", "txretry")
MYSQL_DB = os.getenv("MYSQL_DB", "txretry")


def connect(retries: int = 60, delay: float = 0.5):
    """Wait for the server so the example doesn't race the container boot."""
    last_exc: Exception | None = None
    for _ in range(retries):
        try:
            return pymysql.connect(
                host=MYSQL_HOST,
                port=MYSQL_PORT,
                user=MYSQL_USER,
                password=MYSQL_PASSWORD,
                database=MYSQL_DB,
                autocommit=False,
                charset="utf8mb4",
                connect_timeout=3,
            )
        except (OperationalError, OSError) as e:
            last_exc = e
            time.sleep(delay)
    raise RuntimeError("Could not connect to MySQL") from last_exc


def create_schema(conn) -> None:
    with conn.cursor() as cur:
        cur.execute("""
            CREATE TABLE IF NOT EXISTS accounts (
                id      INT PRIMARY KEY,
                balance INT NOT NULL
            ) ENGINE=InnoDB
        """)
        cur.execute("INSERT IGNORE INTO accounts(id, balance) VALUES (1, 100), (2, 100)")
    conn.commit()


def move(conn, src: int, dst: int, amount: int) -> None:
    with conn.cursor() as cur:
        cur.execute("UPDATE accounts SET balance = balance - %s WHERE id = %s", (amount, src))
        cur.execute("UPDATE accounts SET balance = balance + %s WHERE id = %s", (amount, dst))


async def pre(conn) -> None:
    apply_lock_wait_timeout(conn, lock_wait_timeout_s=5)


async def main():
    logging.basicConfig(level=logging.INFO)
    conn = connect()
    try:
        create_schema(conn)
        executor = RetryingTransactionExecutor(
            DBAPITransactions(conn),
            probe=DBAPIEngineProbe(conn, adapter_name="MySQL"),
            policy=RetryPolicy.from_env(),
            pre_attempt=partial(pre, conn),
        )
        await executor.run(move, args=(conn, 1, 2, 10))

        with conn.cursor() as cur:
            cur.execute("SELECT id, balance FROM accounts ORDER BY id")
            print("Balances:", cur.fetchall())
        conn.commit()
    finally:
        try:
            conn.close()
        except Exception:
            pass


if __name__ == "__main__":
    asyncio.run(main())
