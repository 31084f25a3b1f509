"""
The registry of the live sessions: tunnels, watches, log-streams.

The registry is an explicitly owned object: it is created by the caller
(the CLI, the application, the tests) and passed to every session operation.
There are no module-level tables of sessions.

The starts & stops of the sessions with the same key are serialised via
per-key locks, so that e.g. two concurrent starts of a watch with the same key
end with exactly one live watch, not two (one of them orphaned).
"""
import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from kubetether._core.sessions import tails, tunnels, watches

logger = logging.getLogger(__name__)

SessionKind = Literal['forward', 'watch', 'logs']


class SessionRegistry:
    """
    The tables of the live sessions, keyed by their ids or keys.

    The tables are only modified by the session operations
    of :mod:`kubetether._core.sessions`; the callers should only read them.
    """

    def __init__(self) -> None:
        super().__init__()
        self.tunnels: dict[str, "tunnels.TunnelSession"] = {}
        self.watches: dict[str, "watches.WatchSession"] = {}
        self.tails: dict[str, "tails.LogSession"] = {}
        self._locks: dict[tuple[SessionKind, str], asyncio.Lock] = {}

    def __repr__(self) -> str:
        return (f'<{self.__class__.__name__} '
                f'tunnels={len(self.tunnels)} '
                f'watches={len(self.watches)} '
                f'tails={len(self.tails)}>')

    def __bool__(self) -> bool:
        return bool(self.tunnels or self.watches or self.tails)

    @contextlib.asynccontextmanager
    async def lock(self, kind: SessionKind, key: str) -> AsyncIterator[None]:
        """
        Serialise the operations on one session key (but not across the keys).

        The locks are never removed: their number is bounded by the number
        of distinct keys ever used, which is small for interactive usage.
        """
        lock = self._locks.setdefault((kind, key), asyncio.Lock())
        async with lock:
            yield

    async def close(self) -> None:
        """
        Stop all the sessions of all kinds, e.g. on the process shutdown.
        """
        from kubetether._core.sessions import tails, tunnels, watches
        logger.debug(f"Closing all sessions: {self!r}")
        await tunnels.stop_all_forwards(registry=self)
        for key in list(self.watches):
            await watches.stop_watch(registry=self, key=key)
        for session in list(self.tails.values()):
            await tails.stop_log_stream(registry=self,
                                        namespace=session.namespace,
                                        pod=session.pod,
                                        container=session.container)
