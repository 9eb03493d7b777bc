"""Helpers for invoking caller-supplied sync or async callables."""

from __future__ import annotations

import inspect
from typing import Any, Callable


async def call_maybe_async(func: Callable[..., Any], *args: Any) -> Any:
    """Call ``func`` and await its result when it returns an awaitable."""
    result = func(*args)
    if inspect.isawaitable(result):
        return await result
    return result


def accepts_positional_arg(func: Callable[..., Any]) -> bool:
    """Return True when ``func`` can be called with one positional argument.

    Callables whose signature cannot be inspected (some builtins) are
    assumed to take no arguments.
    """
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        return False

    for param in signature.parameters.values():
        if param.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
            inspect.Parameter.VAR_POSITIONAL,
        ):
            return True
    return False
