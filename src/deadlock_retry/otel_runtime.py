from __future__ import annotations

import os
import time
from typing import Any, Callable, Dict, Optional, Tuple

from .core import RetryEvent, RetryingTransactionExecutor


_TRUTHY = {"1", "true", "yes", "on"}


def _otel_enabled(explicit: Optional[bool]) -> bool:
    if explicit is not None:
        return explicit
    return os.getenv("DEADLOCK_RETRY_OTEL_ENABLED", "").lower() in _TRUTHY


def _metrics_enabled() -> bool:
    return os.getenv("DEADLOCK_RETRY_OTEL_METRICS_ENABLED", "").lower() in _TRUTHY


# --- Metrics plumbing (lazy / optional) --------------------------------------

try:
    from opentelemetry import metrics as _otel_metrics  # type: ignore[attr-defined]
except Exception:  # pragma: no cover - OTEL not installed
    _otel_metrics = None  # type: ignore[assignment]

_instruments: Dict[str, Any] = {}


def _ensure_metrics() -> bool:
    """Create metric instruments once; False when metrics are off or unavailable."""
    if _instruments:
        return True
    if not _metrics_enabled() or _otel_metrics is None:
        return False

    meter = _otel_metrics.get_meter(__name__)
    _instruments["transactions"] = meter.create_counter(
        "deadlock_retry_transactions_total",
        description="Outermost transactions run through the retry executor.",
    )
    _instruments["retries"] = meter.create_counter(
        "deadlock_retry_retries_total",
        description="Retries triggered by transient conflicts.",
    )
    _instruments["duration"] = meter.create_histogram(
        "deadlock_retry_transaction_duration_seconds",
        description="Latency of retried transactions, pauses included.",
        unit="s",
    )
    return True


# --- Traced execution ---------------------------------------------------------


async def run_traced_optional(
    executor: RetryingTransactionExecutor,
    work: Callable[..., Any],
    *,
    args: Tuple[Any, ...] = (),
    kwargs: Optional[Dict[str, Any]] = None,
    overall_timeout_s: Optional[float] = None,
    otel_enabled: Optional[bool] = None,  # None -> read env DEADLOCK_RETRY_OTEL_ENABLED
    span_name: str = "deadlock_retry.transaction",
    base_attrs: Optional[Dict[str, Any]] = None,
    db_system: Optional[str] = None,
    db_name: Optional[str] = None,
) -> Any:
    """
    Run `work` through `executor` inside a span *if* OpenTelemetry is installed
    and enabled; otherwise this is a plain ``executor.run()``.

    Every retry adds a ``deadlock_retry.retry`` event to the span. With
    DEADLOCK_RETRY_OTEL_METRICS_ENABLED=1 it also records:
      - deadlock_retry_transactions_total
      - deadlock_retry_retries_total
      - deadlock_retry_transaction_duration_seconds
    """
    run_kwargs = dict(args=args, kwargs=kwargs, overall_timeout_s=overall_timeout_s)

    if not _otel_enabled(otel_enabled):
        return await executor.run(work, **run_kwargs)

    # Lazy import so this module stays importable without otel deps
    try:
        from opentelemetry import trace
        from opentelemetry.trace import SpanKind, Status, StatusCode
    except Exception:
        return await executor.run(work, **run_kwargs)

    tracer = trace.get_tracer(__name__)
    metrics_active = _ensure_metrics()

    policy = executor.policy
    attrs = {
        "db.system": db_system,
        "db.name": db_name,
        "deadlock_retry.max_retries": policy.max_retries,
        "deadlock_retry.wait_ceiling_s": policy.wait_times[-1],
        "deadlock_retry.overall_timeout_s": overall_timeout_s,
    }
    if base_attrs:
        attrs.update(base_attrs)
    attrs = {k: v for k, v in attrs.items() if v is not None}
    metric_attrs = {"db.system": db_system or "unknown", "db.name": db_name or "unknown"}

    start = time.perf_counter()
    with tracer.start_as_current_span(span_name, kind=SpanKind.CLIENT) as span:
        for k, v in attrs.items():
            span.set_attribute(k, v)

        def on_retry(event: RetryEvent) -> None:
            span.add_event(
                "deadlock_retry.retry",
                {
                    "deadlock_retry.attempt": event.attempt,
                    "deadlock_retry.delay_s": event.delay,
                    "deadlock_retry.open_transactions": event.open_transactions,
                    "exception.type": type(event.error).__name__,
                },
            )
            if metrics_active:
                _instruments["retries"].add(1, attributes=metric_attrs)

        outcome = "success"
        try:
            return await executor.run(work, on_retry=on_retry, **run_kwargs)
        except BaseException as exc:
            outcome = "error"
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR))
            raise
        finally:
            span.set_attribute("deadlock_retry.outcome", outcome)
            if metrics_active:
                recorded = {**metric_attrs, "deadlock_retry.outcome": outcome}
                _instruments["transactions"].add(1, attributes=recorded)
                _instruments["duration"].record(time.perf_counter() - start, attributes=recorded)
