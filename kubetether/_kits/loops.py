import asyncio
from collections.abc import Coroutine
from typing import Any, TypeVar

_T = TypeVar('_T')


def run(coro: Coroutine[Any, Any, _T]) -> _T:
    """
    Run the coroutine in a properly managed loop: the one we own and close.

    If ``uvloop`` is installed, it is used.
    Otherwise, the default event loop of asyncio is used.

    This loop manager is used in CLI only, not deeper than that:
    the library functions run in whatever loop they are called from.
    """
    try:
        import uvloop
    except ImportError:
        return asyncio.run(coro)
    else:
        return uvloop.run(coro)
