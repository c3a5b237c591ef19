from __future__ import annotations
import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Tuple, Type

from ._util import maybe_await
from .classify import DEFAULT_SIGNATURES, message_classifier
from .diagnostics import DEFAULT_ADAPTERS, DiagnosticsCapability, DiagnosticsReporter
from .errors import FailureKind
from .types import (
    EngineProbe,
    PauseFn,
    PreAttemptFn,
    TransactionPrimitive,
    TransientClassifier,
)

DEFAULT_WAIT_TIMES: Tuple[float, ...] = (0, 1, 2, 4, 8, 16, 32)


def _env_list(raw: str, sep: str) -> list[str]:
    return [part.strip() for part in raw.split(sep) if part.strip()]


@dataclass(frozen=True)
class RetryPolicy:
    signatures: Tuple[str, ...] = DEFAULT_SIGNATURES
    max_retries: int = 5
    wait_times: Tuple[float, ...] = field(default=DEFAULT_WAIT_TIMES)

    def __post_init__(self):
        object.__setattr__(self, "signatures", tuple(self.signatures))
        object.__setattr__(self, "wait_times", tuple(self.wait_times))
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if not self.wait_times:
            raise ValueError("wait_times must not be empty")
        if any(w < 0 for w in self.wait_times):
            raise ValueError("wait_times must be non-negative")

    def delay_for(self, attempt: int) -> float:
        """Pause before retry number `attempt` (1-based); last entry is the cap."""
        if attempt < 1:
            raise ValueError("attempt is 1-based")
        if attempt <= len(self.wait_times):
            return self.wait_times[attempt - 1]
        return self.wait_times[-1]

    def backoff(self) -> Iterable[float]:
        for attempt in range(1, self.max_retries + 1):
            yield self.delay_for(attempt)

    @classmethod
    def from_env(cls, prefix: str = "DEADLOCK_RETRY_") -> "RetryPolicy":
        """
        Build a policy from environment variables:

        - ``<prefix>MAX_RETRIES``: integer
        - ``<prefix>WAIT_TIMES``: comma-separated seconds, e.g. ``0,1,2,4``
        - ``<prefix>SIGNATURES``: ``|``-separated message fragments
        """
        kwargs: dict[str, Any] = {}
        raw = os.getenv(prefix + "MAX_RETRIES")
        if raw is not None and raw.strip():
            kwargs["max_retries"] = int(raw)
        raw = os.getenv(prefix + "WAIT_TIMES")
        if raw is not None and raw.strip():
            kwargs["wait_times"] = tuple(float(w) for w in _env_list(raw, ","))
        raw = os.getenv(prefix + "SIGNATURES")
        if raw is not None and raw.strip():
            kwargs["signatures"] = tuple(_env_list(raw, "|"))
        return cls(**kwargs)


async def exponential_pause(attempt: int, policy: Optional[RetryPolicy] = None) -> None:
    delay = (policy or RetryPolicy()).delay_for(attempt)
    if delay:
        await asyncio.sleep(delay)


async def no_pause(attempt: int) -> None:
    return None


@dataclass(frozen=True)
class RetryEvent:
    attempt: int
    max_attempts: int
    open_transactions: int
    delay: float
    error: BaseException


RetryHook = Callable[[RetryEvent], Any]


class RetryingTransactionExecutor:
    """
    Runs a unit of work in a transaction and retries it on transient conflicts.

    Only the outermost invocation retries: a failure seen while the primitive
    still reports open transactions belongs to an enclosing unit of work and is
    re-raised untouched so the enclosing executor can re-run all of it.
    """

    def __init__(
        self,
        transactions: TransactionPrimitive,
        *,
        policy: Optional[RetryPolicy] = None,
        classifier: Optional[TransientClassifier] = None,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        probe: Optional[EngineProbe] = None,
        capability: Optional[DiagnosticsCapability] = None,
        adapters: Iterable[str] = DEFAULT_ADAPTERS,
        pause: Optional[PauseFn] = None,
        pre_attempt: Optional[PreAttemptFn] = None,
        on_retry: Optional[RetryHook] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.transactions = transactions
        self.policy = policy or RetryPolicy()
        self.classifier = classifier or message_classifier(self.policy.signatures)
        self.retry_on = retry_on
        self.log = logger or logging.getLogger(__name__)
        self.reporter = DiagnosticsReporter(
            probe, capability=capability, adapters=adapters, logger=self.log
        )
        self.pause = pause
        self.pre_attempt = pre_attempt
        self.on_retry = on_retry

    def classify_failure(self, exc: BaseException, attempt: int) -> FailureKind:
        if self.transactions.open_transactions() != 0:
            return FailureKind.NESTED_CONTEXT
        if not self.classifier(exc):
            return FailureKind.NON_TRANSIENT
        if attempt >= self.policy.max_retries:
            return FailureKind.BUDGET_EXHAUSTED
        return FailureKind.TRANSIENT_CONFLICT

    async def _pause(self, attempt: int) -> None:
        if self.pause is not None:
            await self.pause(attempt)
        else:
            await exponential_pause(attempt, self.policy)

    async def run(
        self,
        work: Callable[..., Any],
        *,
        args: tuple = (),
        kwargs: dict[str, Any] | None = None,
        on_retry: Optional[RetryHook] = None,
        overall_timeout_s: float | None = None,
    ) -> Any:
        coro = self._run(work, args, kwargs or {}, on_retry)
        if overall_timeout_s is None:
            return await coro
        return await asyncio.wait_for(coro, timeout=overall_timeout_s)

    __call__ = run

    async def _run(self, work, args, kwargs, on_retry) -> Any:
        await self.reporter.ensure_capability()
        hooks = [h for h in (self.on_retry, on_retry) if h is not None]

        def body():
            return work(*args, **kwargs)

        attempt = 0
        while True:
            try:
                if self.pre_attempt:
                    await self.pre_attempt()
                return await maybe_await(self.transactions.begin_transaction(body))
            except self.retry_on as exc:
                kind = self.classify_failure(exc, attempt)
                if kind is not FailureKind.TRANSIENT_CONFLICT:
                    self.log.debug(
                        "retry_tx.outcome=%s retry_tx.attempt=%d error=%s",
                        kind.value,
                        attempt,
                        type(exc).__name__,
                    )
                    raise
                attempt += 1
                open_tx = self.transactions.open_transactions()
                await self.reporter.report(attempt, self.policy.max_retries, open_tx)
                event = RetryEvent(
                    attempt=attempt,
                    max_attempts=self.policy.max_retries,
                    open_transactions=open_tx,
                    delay=self.policy.delay_for(attempt),
                    error=exc,
                )
                for hook in hooks:
                    await maybe_await(hook(event))
                await self._pause(attempt)


async def execute(
    work: Callable[..., Any],
    *,
    transactions: TransactionPrimitive,
    args: tuple = (),
    kwargs: dict[str, Any] | None = None,
    policy: Optional[RetryPolicy] = None,
    classifier: Optional[TransientClassifier] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    probe: Optional[EngineProbe] = None,
    capability: Optional[DiagnosticsCapability] = None,
    adapters: Iterable[str] = DEFAULT_ADAPTERS,
    pause: Optional[PauseFn] = None,
    pre_attempt: Optional[PreAttemptFn] = None,
    on_retry: Optional[RetryHook] = None,
    overall_timeout_s: float | None = None,
    logger: Optional[logging.Logger] = None,
) -> Any:
    """One-shot form of RetryingTransactionExecutor.run()."""
    executor = RetryingTransactionExecutor(
        transactions,
        policy=policy,
        classifier=classifier,
        retry_on=retry_on,
        probe=probe,
        capability=capability,
        adapters=adapters,
        pause=pause,
        pre_attempt=pre_attempt,
        logger=logger,
    )
    return await executor.run(
        work,
        args=args,
        kwargs=kwargs,
        on_retry=on_retry,
        overall_timeout_s=overall_timeout_s,
    )
