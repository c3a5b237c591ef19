from __future__ import annotations
from typing import Iterable

from .types import TransientClassifier

# MySQL reports both deadlocks (1213) and lock wait timeouts (1205) with
# "... Try restarting transaction". Retried transactions can also race each
# other into unique key violations.
DEFAULT_SIGNATURES = (
    "Try restarting transaction",
    "Duplicate entry",
)


def error_message(exc: BaseException) -> str:
    """
    Normalised message text of a transactional error.

    Drivers and ORMs wrap each other (SQLAlchemy's ``orig``, ``raise ... from``),
    so the wrapped error's text is appended when it isn't already included.
    """
    explicit = getattr(exc, "message", None)
    parts = [explicit if isinstance(explicit, str) and explicit else str(exc)]
    for inner in (getattr(exc, "orig", None), exc.__cause__):
        if isinstance(inner, BaseException):
            text = str(inner)
            if text and text not in parts[0]:
                parts.append(text)
    return " ".join(parts)


def matches_signature(message: str, signatures: Iterable[str]) -> bool:
    msg = message.lower()
    return any(sig.lower() in msg for sig in signatures if sig)


def message_classifier(signatures: Iterable[str] = DEFAULT_SIGNATURES) -> TransientClassifier:
    sigs = tuple(signatures)

    def classify(exc: BaseException) -> bool:
        return matches_signature(error_message(exc), sigs)

    return classify


default_classifier = message_classifier()
