import asyncio
import os
import random

from deadlock_retry import RetryPolicy, RetryingTransactionExecutor, StatementInvalid
from deadlock_retry.otel_setup import init_tracer, init_metrics
from deadlock_retry.otel_runtime import run_traced_optional

os.environ.setdefault("DEADLOCK_RETRY_OTEL_ENABLED", "1")
os.environ.setdefault("DEADLOCK_RETRY_OTEL_METRICS_ENABLED", "1")
os.environ.setdefault("OTEL_EXPORTER_OTLP_ENDPOINT", "http://127.0.0.1:4318")


class InMemoryTransactions:
    """Stand-in primitive: no database, just the open transaction counter."""

    def __init__(self):
        self.depth = 0

    def open_transactions(self) -> int:
        return self.depth

    async def begin_transaction(self, work):
        self.depth += 1
        try:
            return await work()
        finally:
            self.depth -= 1


async def flaky_transfer(fail_prob: float) -> str:
    if random.random() < fail_prob:
        raise StatementInvalid("Deadlock found when trying to get lock; try restarting transaction")
    await asyncio.sleep(random.uniform(0.02, 0.15))
    return "ok"


async def main() -> None:
    exporter = os.getenv("DEADLOCK_RETRY_OTEL_EXPORTER", "http").lower()
    if exporter not in ("http", "grpc"):
        print(f"[deadlock-retry] Unknown exporter {exporter!r}, falling back to 'http'")
        exporter = "http"

    init_tracer(service_name="deadlock-retry-otel-smoke", exporter=exporter)
    init_metrics(service_name="deadlock-retry-otel-smoke", exporter=exporter)

    n_ops = int(os.getenv("DEADLOCK_RETRY_SMOKE_OPS", "50"))
    fail_prob = float(os.getenv("DEADLOCK_RETRY_SMOKE_FAIL_PROB", "0.5"))

    executor = RetryingTransactionExecutor(
        InMemoryTransactions(),
        policy=RetryPolicy(max_retries=2, wait_times=(0, 0.05)),
    )
    for i in range(n_ops):
        try:
            result = await run_traced_optional(
                executor,
                flaky_transfer,
                args=(fail_prob,),
                span_name="deadlock_retry.smoke",
                db_system="test",
                db_name="example",
                base_attrs={"deadlock_retry.demo_op_index": i},
            )
            print(f"[deadlock-retry] op #{i} -> {result}")
        except StatementInvalid as exc:
            print(f"[deadlock-retry] op #{i} failed after retries: {exc!r}")


if __name__ == "__main__":
    asyncio.run(main())
