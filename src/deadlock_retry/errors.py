from __future__ import annotations
import enum


class StatementInvalid(Exception):
    """Generic transactional failure carrying the driver's message."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class DiagnosticsUnavailable(Exception):
    """Engine status could not be captured. Never leaves the reporter."""


class FailureKind(enum.Enum):
    TRANSIENT_CONFLICT = "transient_conflict"
    NON_TRANSIENT = "non_transient"
    NESTED_CONTEXT = "nested_context"
    BUDGET_EXHAUSTED = "budget_exhausted"
