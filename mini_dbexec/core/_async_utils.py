"""Internal async helpers shared by the executor and adapters."""

from __future__ import annotations

import inspect
from typing import Any


async def _maybe_await(value: Any) -> Any:
    """Await awaitables and return non-awaitable values unchanged."""
    if inspect.isawaitable(value):
        return await value
    return value


async def _maybe_close(resource: Any) -> None:
    """Call `aclose()`/`close()` on a resource if it has one, awaiting as needed."""
    if resource is None:
        return
    close = getattr(resource, "aclose", None)
    if not callable(close):
        close = getattr(resource, "close", None)
    if callable(close):
        await _maybe_await(close())
