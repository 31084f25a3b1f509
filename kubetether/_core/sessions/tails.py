"""
Log sessions: following the output of one container of one pod.

A new log session for the same container replaces the previous one.
A session that ends by itself (the container has exited, or the server
has closed the stream) deregisters itself, and its consumers see the end
of the iteration after the last chunk.
"""
import asyncio
import logging

import aiohttp

from kubetether._cogs.aiokits import aiochannels, aiotasks
from kubetether._cogs.clients import auth, errors as api_errors, tailing
from kubetether._cogs.configs import configuration
from kubetether._core.actions import loggers
from kubetether._core.sessions import errors, registry

logger = logging.getLogger(__name__)


def build_key(namespace: str, pod: str, container: str) -> str:
    return f'{namespace}-{pod}-{container}'


class LogSession:
    """
    One followed log-stream with its reading task and its text channel.

    Usage::

        session = await start_log_stream(registry=registry, ..., container='main')
        async for text in session:
            sys.stdout.write(text)
    """

    response: aiohttp.ClientResponse | None
    task: aiotasks.Task | None
    error: errors.SessionError | None

    def __init__(
            self,
            *,
            namespace: str,
            pod: str,
            container: str,
            context: auth.APIContext,
            settings: configuration.SessionSettings,
    ) -> None:
        super().__init__()
        self.namespace = namespace
        self.pod = pod
        self.container = container
        self.context = context
        self.settings = settings
        self.channel: aiochannels.Channel[str]
        self.channel = aiochannels.Channel(maxsize=settings.tailing.backlog)
        self.response = None
        self.task = None
        self.error = None
        self.logger = loggers.SessionLogger(kind='logs', id=self.key)
        self._stopping = False

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} {self.key}>'

    def __aiter__(self) -> aiochannels.Channel[str]:
        return self.channel

    @property
    def key(self) -> str:
        return build_key(self.namespace, self.pod, self.container)

    async def open(self) -> None:
        try:
            self.response = await tailing.open_log(
                context=self.context,
                settings=self.settings,
                namespace=self.namespace,
                pod=self.pod,
                container=self.container,
            )
        except (api_errors.APIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise errors.StreamOpenFailedError(
                f"Failed to follow the logs of {self.namespace}/{self.pod}/{self.container}: {e}"
            ) from e

    def start(self, registry: registry.SessionRegistry) -> None:
        self.task = aiotasks.create_guarded_task(
            name=f"log-stream {self.key}",
            coro=self._stream(registry),
            finishable=True,
            cancellable=True,
            logger=self.logger,
        )

    async def stop(self) -> None:
        """
        Abort the HTTP stream, and cancel the reading task if it is still running.
        """
        self._stopping = True
        self.channel.abort()
        if self.response is not None:
            self.response.close()
        if self.task is not None:
            await aiotasks.stop([self.task], title=f"log-stream {self.key}",
                                quiet=True, logger=self.logger)

    async def _stream(self, registry: registry.SessionRegistry) -> None:
        assert self.response is not None
        try:
            async for text in tailing.iter_text(self.response,
                                                chunk_size=self.settings.tailing.chunk_size):
                await self.channel.put(text)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            if not self._stopping:
                self.error = errors.StreamRuntimeError(f"Log-stream has failed: {e!r}")
                self.logger.error(str(self.error))
        else:
            if not self._stopping:
                self.logger.info("Log-stream has ended.")

        await self.channel.finish()

        # Forget this session, but not the one that has replaced it in the meantime.
        if registry.tails.get(self.key) is self:
            del registry.tails[self.key]


async def start_log_stream(
        *,
        registry: registry.SessionRegistry,
        context: auth.APIContext,
        settings: configuration.SessionSettings,
        namespace: str,
        pod: str,
        container: str,
) -> LogSession:
    """
    Start following a container's logs, replacing the previous session for it.
    """
    key = build_key(namespace, pod, container)
    async with registry.lock('logs', key):
        await _stop_log_stream(registry=registry, key=key)

        session = LogSession(
            namespace=namespace,
            pod=pod,
            container=container,
            context=context,
            settings=settings,
        )
        await session.open()
        registry.tails[key] = session
        session.start(registry)
        session.logger.info("Following the logs.")
        return session


async def stop_log_stream(
        *,
        registry: registry.SessionRegistry,
        namespace: str,
        pod: str,
        container: str,
) -> bool:
    key = build_key(namespace, pod, container)
    async with registry.lock('logs', key):
        return await _stop_log_stream(registry=registry, key=key)


async def _stop_log_stream(
        *,
        registry: registry.SessionRegistry,
        key: str,
) -> bool:
    session = registry.tails.pop(key, None)
    if session is None:
        return False
    await session.stop()
    session.logger.info("Stopped following the logs.")
    return True
