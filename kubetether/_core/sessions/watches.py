"""
Watch sessions: the streams of the pods' changes as typed pod events.

Only one watch-stream is opened per session, regardless of how many
namespaces are selected: either for exactly one namespace, or for the whole
cluster. Multiple specific namespaces are filtered on the consuming side
(see :mod:`kubetether._core.reactor.reconciliation`).

The events are put into a bounded channel of the session. A slow consumer
pauses the stream reading, not the event loop.
"""
import asyncio
import logging
from collections.abc import Iterable

import aiohttp

from kubetether._cogs.aiokits import aiochannels, aiotasks
from kubetether._cogs.clients import auth, errors as api_errors, watching
from kubetether._cogs.configs import configuration
from kubetether._cogs.structs import bodies, references, snapshots
from kubetether._core.actions import loggers
from kubetether._core.sessions import errors, registry

logger = logging.getLogger(__name__)

DEFAULT_KEY = 'pods'


def build_pod_event(raw_event: bodies.RawEvent) -> snapshots.PodEvent | None:
    """ Convert a raw watch-event to a pod event, or ``None`` if it is malformed. """
    snapshot = snapshots.build_pod_snapshot(raw_event.get('object'))
    if snapshot is None:
        return None
    return snapshots.PodEvent(type=bodies.EventType(raw_event['type']), pod=snapshot)


class WatchSession:
    """
    One watch-stream of the pods with its streaming task and its event channel.

    Usage::

        session = await start_watch(registry=registry, context=context, settings=settings)
        async for type, pod in session:
            print(type, pod.key)
    """

    response: aiohttp.ClientResponse | None
    task: aiotasks.Task | None
    error: errors.SessionError | None

    def __init__(
            self,
            *,
            key: str,
            namespaces: references.NamespaceFilter,
            context: auth.APIContext,
            settings: configuration.SessionSettings,
    ) -> None:
        super().__init__()
        self.key = key
        self.namespaces = namespaces
        self.context = context
        self.settings = settings
        self.channel: aiochannels.Channel[snapshots.PodEvent]
        self.channel = aiochannels.Channel(maxsize=settings.watching.backlog)
        self.response = None
        self.task = None
        self.error = None
        self.logger = loggers.SessionLogger(kind='watch', id=key)

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} {self.key!r} in {self.namespaces}>'

    def __aiter__(self) -> aiochannels.Channel[snapshots.PodEvent]:
        return self.channel

    @property
    def namespace(self) -> str | None:
        """ The namespace of the server-side stream, or ``None`` if cluster-wide. """
        return self.namespaces.watched_namespace

    async def open(self) -> None:
        try:
            self.response = await watching.open_watch(
                context=self.context,
                settings=self.settings,
                namespace=self.namespace,
            )
        except (api_errors.APIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise errors.StreamOpenFailedError(
                f"Failed to watch the pods in {self.namespaces}: {e}") from e

    def start(self) -> None:
        self.task = aiotasks.create_guarded_task(
            name=f"watch-stream {self.key!r}",
            coro=self._stream(),
            finishable=True,
            cancellable=True,
            logger=self.logger,
        )

    async def stop(self) -> None:
        self.channel.abort()
        if self.task is not None:
            await aiotasks.stop([self.task], title=f"watch-stream {self.key!r}",
                                quiet=True, logger=self.logger)
        if self.response is not None:
            self.response.close()

    async def _stream(self) -> None:
        while True:
            if self.response is not None:
                try:
                    await self._consume(self.response)
                except errors.StreamRuntimeError as e:
                    self.error = e
                    self.logger.error(str(e))
                else:
                    self.logger.info("Watch-stream has ended.")

            backoff = self.settings.watching.reconnect_backoff
            if backoff is None:
                break

            await asyncio.sleep(backoff)
            self.logger.debug("Re-opening the watch-stream.")
            try:
                await self.open()
            except errors.StreamOpenFailedError as e:
                self.error = e
                self.response = None
                self.logger.error(str(e))

    async def _consume(self, response: aiohttp.ClientResponse) -> None:
        try:
            async for raw_event in watching.iter_events(response):
                event = build_pod_event(raw_event)
                if event is not None:
                    await self.channel.put(event)
        except (watching.WatchingError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise errors.StreamRuntimeError(f"Watch-stream has failed: {e}") from e


async def start_watch(
        *,
        registry: registry.SessionRegistry,
        context: auth.APIContext,
        settings: configuration.SessionSettings,
        namespaces: Iterable[str] = (),
        key: str = DEFAULT_KEY,
) -> WatchSession:
    """
    Start watching the pods, replacing the previous watch with the same key.

    The stream is opened before the session is registered:
    if it cannot be opened, nothing is registered, and the previous watch
    with the same key (if any) remains stopped.
    """
    async with registry.lock('watch', key):
        await _stop_watch(registry=registry, key=key)

        session = WatchSession(
            key=key,
            namespaces=references.NamespaceFilter.from_selection(namespaces),
            context=context,
            settings=settings,
        )
        await session.open()
        session.start()
        registry.watches[key] = session
        session.logger.info(f"Watching the pods in {session.namespaces}.")
        return session


async def stop_watch(
        *,
        registry: registry.SessionRegistry,
        key: str = DEFAULT_KEY,
) -> bool:
    async with registry.lock('watch', key):
        return await _stop_watch(registry=registry, key=key)


async def _stop_watch(
        *,
        registry: registry.SessionRegistry,
        key: str,
) -> bool:
    session = registry.watches.pop(key, None)
    if session is None:
        return False
    await session.stop()
    session.logger.info("Stopped watching the pods.")
    return True
