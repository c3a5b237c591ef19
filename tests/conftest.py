from __future__ import annotations
import inspect

import pytest

from deadlock_retry.diagnostics import DiagnosticsCapability


class FakeTransactions:
    """Counts open transactions the way a real primitive does: +1 while the body runs."""

    def __init__(self):
        self.depth = 0
        self.begun = 0

    def open_transactions(self) -> int:
        return self.depth

    async def begin_transaction(self, work):
        self.depth += 1
        self.begun += 1
        try:
            res = work()
            if inspect.isawaitable(res):
                res = await res
            return res
        finally:
            self.depth -= 1


class FakeProbe:
    def __init__(self, adapter="MySQL", version="5.1.45", status="1607bf000 INNODB MONITOR OUTPUT"):
        self.adapter = adapter
        self.version = version
        self.status = status
        self.queries: list[str] = []
        self.fail_on: set[str] = set()

    def adapter_name(self) -> str:
        return self.adapter

    def select_rows(self, sql):
        self.queries.append(sql)
        if sql in self.fail_on:
            raise RuntimeError("Access denied; you need the PROCESS privilege")
        return [("version", self.version)]

    def select_one(self, sql):
        self.queries.append(sql)
        if sql in self.fail_on:
            raise RuntimeError("Access denied; you need the PROCESS privilege")
        return {"Type": "InnoDB", "Name": "", "Status": self.status}


@pytest.fixture
def transactions():
    return FakeTransactions()


@pytest.fixture
def probe():
    return FakeProbe()


@pytest.fixture
def capability():
    return DiagnosticsCapability()
