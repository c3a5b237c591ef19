from __future__ import annotations

import os
import asyncio
import logging
from functools import partial
from pathlib import Path
from dotenv import load_dotenv
import aiomysql

from deadlock_retry import RetryPolicy, RetryingTransactionExecutor
from deadlock_retry.contrib.aiomysql_adapter import (
    AioMySQLEngineProbe,
    AioMySQLTransactions,
    apply_lock_wait_timeout_async,
)

# Always load the examples/.env (next to the compose files)
ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(ENV_PATH, override=False)

MYSQL_HOST = os.getenv("MYSQL_HOST", "127.0.0.1")
MYSQL_PORT = int(os.getenv("MYSQL_PORT", "3306"))
MYSQL_USER = os.getenv("MYSQL_USER", "txretry")
MYSQL_PASSWORD = os.getenv("MYSQL_PASSWORD", "txretry")
MYSQL_DB = os.getenv("MYSQL_DB") or os.getenv("MYSQL_DATABASE") or "txretry"


async def create_schema(conn) -> None:
    cur = await conn.cursor()
    try:
        await cur.execute(
            """
            CREATE TABLE IF NOT EXISTS orders (
                id        INT PRIMARY KEY AUTO_INCREMENT,
                reference VARCHAR(64) UNIQUE
            ) ENGINE=InnoDB
            """
        )
        await conn.commit()
    finally:
        await cur.close()


async def place_order(conn, reference: str) -> None:
    cur = await conn.cursor()
    try:
        await cur.execute("INSERT IGNORE INTO orders(reference) VALUES (%s)", (reference,))
    finally:
        await cur.close()


async def pre(conn) -> None:
    await apply_lock_wait_timeout_async(conn, lock_wait_timeout_s=5)


async def main():
    logging.basicConfig(level=logging.INFO)
    conn = await aiomysql.connect(
        host=MYSQL_HOST,
        port=MYSQL_PORT,
        user=MYSQL_USER,
        password=MYSQL_PASSWORD,
        db=MYSQL_DB,
        autocommit=False,
        charset="utf8mb4",
    )
    try:
        await create_schema(conn)
        executor = RetryingTransactionExecutor(
            AioMySQLTransactions(conn),
            probe=AioMySQLEngineProbe(conn),
            policy=RetryPolicy(max_retries=5, wait_times=(0, 0.1, 0.2, 0.5)),
            pre_attempt=partial(pre, conn),
        )
        await executor.run(place_order, args=(conn, "order-0001"))
        print("Order stored")
    finally:
        conn.close()  # aiomysql connection close is sync


if __name__ == "__main__":
    asyncio.run(main())
