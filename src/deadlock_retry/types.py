from __future__ import annotations
from typing import Any, Awaitable, Callable, Protocol, Union


# Body of a transaction; may return a value or an awaitable
UnitOfWork = Callable[[], Any]


class TransactionPrimitive(Protocol):
    """Begins/commits/rolls back; rolls back before re-raising a failure."""

    def begin_transaction(self, work: UnitOfWork) -> Union[Any, Awaitable[Any]]: ...

    def open_transactions(self) -> int: ...


class EngineProbe(Protocol):
    def adapter_name(self) -> str: ...

    def select_one(self, sql: str) -> Any: ...

    def select_rows(self, sql: str) -> Any: ...


# Decide if an exception is transient (should retry)
TransientClassifier = Callable[[BaseException], bool]

# Sleep for the given 1-based retry attempt
PauseFn = Callable[[int], Awaitable[None]]

# Called before each attempt (e.g., set per-attempt lock timeouts)
PreAttemptFn = Callable[[], Awaitable[None]]
