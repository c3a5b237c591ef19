from .classify import DEFAULT_SIGNATURES, error_message, message_classifier
from .core import (
    RetryEvent,
    RetryPolicy,
    RetryingTransactionExecutor,
    execute,
    exponential_pause,
    no_pause,
)
from .diagnostics import DiagnosticsCapability, DiagnosticsReporter, process_capability
from .errors import DiagnosticsUnavailable, FailureKind, StatementInvalid

__all__ = [
    "DEFAULT_SIGNATURES",
    "DiagnosticsCapability",
    "DiagnosticsReporter",
    "DiagnosticsUnavailable",
    "FailureKind",
    "RetryEvent",
    "RetryPolicy",
    "RetryingTransactionExecutor",
    "StatementInvalid",
    "error_message",
    "execute",
    "exponential_pause",
    "message_classifier",
    "no_pause",
    "process_capability",
]

# Optional: expose the OTEL-integrated helper if available.
try:
    from .otel_runtime import run_traced_optional  # noqa: F401

    __all__.append("run_traced_optional")
except Exception:  # pragma: no cover - OTEL deps missing/broken
    pass

__version__ = "1.0.0"
