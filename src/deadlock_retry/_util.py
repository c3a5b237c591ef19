from __future__ import annotations
import inspect
from typing import Any


async def maybe_await(value: Any) -> Any:
    """Await `value` if it is awaitable; sync drivers and bodies pass through."""
    return await value if inspect.isawaitable(value) else value
