"""
Helpers for orchestrating asyncio tasks.

These utilities only support tasks, not more generic futures, coroutines,
or other awaitables. Everywhere we use them, we need specifically tasks,
as we not only wait for them, but also cancel them: every session's stream
and every forwarded connection is a task of its own.
"""
import asyncio
from collections.abc import Collection, Coroutine
from typing import TYPE_CHECKING, Any

from kubetether._cogs.helpers import typedefs

# A workaround for a difference in tasks at runtime and type-checking time.
# Otherwise, at runtime: TypeError: 'type' object is not subscriptable.
if TYPE_CHECKING:
    Task = asyncio.Task[Any]
else:
    Task = asyncio.Task


async def guard(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        finishable: bool = False,
        cancellable: bool = False,
        logger: typedefs.Logger | None = None,
) -> None:
    """
    A guard for a background task that is started but never awaited directly.

    Such tasks are the streaming loops of the watch & log sessions: nobody
    awaits them until the session is stopped, so their errors would remain
    unnoticed for a long time. The guard logs them as soon as they happen.

    Cancellations are logged unless the task is said to be cancellable.
    Normal exits are logged as warnings unless the task is said to be finishable.
    """
    capname = name[:1].upper() + name[1:]
    try:
        await coro
    except asyncio.CancelledError:
        if logger is not None and not cancellable:
            logger.debug(f"{capname} is cancelled.")
        raise
    except Exception as e:
        if logger is not None:
            logger.exception(f"{capname} has failed: {e}")
        raise
    else:
        if logger is not None and not finishable:
            logger.warning(f"{capname} has finished unexpectedly.")


def create_guarded_task(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        finishable: bool = False,
        cancellable: bool = False,
        logger: typedefs.Logger | None = None,
) -> Task:
    """
    Create a guarded background task. See :func:`guard` for explanation.

    This is only a shortcut for named task creation (name is used in 2 places).
    """
    return asyncio.create_task(
        name=name,
        coro=guard(
            name=name,
            coro=coro,
            finishable=finishable,
            cancellable=cancellable,
            logger=logger))


async def wait(
        tasks: Collection[Task],
        *,
        timeout: float | None = None,
        return_when: Any = asyncio.ALL_COMPLETED,
) -> tuple[set[Task], set[Task]]:
    """
    A safer version of :func:`asyncio.wait` -- does not fail on an empty list.
    """
    if not tasks:
        return set(), set()
    done, pending = await asyncio.wait(tasks, timeout=timeout, return_when=return_when)
    return done, pending


async def stop(
        tasks: Collection[Task],
        *,
        title: str,
        quiet: bool = False,
        logger: typedefs.Logger | None = None,
) -> tuple[set[Task], set[Task]]:
    """
    Cancel the tasks and wait until all of them exit.

    There is no timeout: a task that ignores its cancellation blocks the stopping.
    If the stopping itself is cancelled, the remaining tasks are left as they are,
    and are only logged (even in the quiet mode).
    """
    captitle = title[:1].upper() + title[1:]

    if not tasks:
        if logger is not None and not quiet:
            logger.debug(f"{captitle} tasks stopping is skipped: no tasks given.")
        return set(), set()

    for task in tasks:
        task.cancel()

    try:
        done, pending = await wait(tasks)
    except asyncio.CancelledError:
        if logger is not None:
            left = {task for task in tasks if not task.done()}
            logger.debug(f"{captitle} tasks are interrupted while stopping; tasks left: {left!r}")
        raise

    if logger is not None and not quiet:
        logger.debug(f"{captitle} tasks are stopped: cancelling normally.")
    return done, pending


async def reraise(
        tasks: Collection[Task],
) -> None:
    """
    Re-raise errors from tasks, if any. Do nothing if all tasks have succeeded.
    """
    for task in tasks:
        try:
            task.result()  # can raise the regular (non-cancellation) exceptions.
        except asyncio.CancelledError:
            pass  # re-raise anything except regular cancellations/exits
