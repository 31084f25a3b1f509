"""
Port-forwarding tunnels from local TCP ports to the services' pods.

A tunnel is a local listener bound to one pod and one port of it.
The pod and the port are chosen once, when the tunnel is started:

* The service is read for its selector and its ports.
* The first running pod matching the selector is chosen.
* The port identifier is mapped through the service's ports to the target port,
  and then resolved via the pod's named ports if it is a name.

Every accepted local connection gets its own upstream channel to the pod,
so that the bytes of different connections are never interleaved.
The failures of one connection close only that connection, never the tunnel.
"""
import asyncio
import dataclasses
import logging

import aiohttp

from kubetether._cogs.aiokits import aiotasks
from kubetether._cogs.clients import auth, errors as api_errors, fetching, tunneling
from kubetether._cogs.configs import configuration
from kubetether._cogs.structs import bodies
from kubetether._core.actions import loggers
from kubetether._core.intents import ports
from kubetether._core.sessions import errors, registry

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class ForwardInfo:
    id: str
    namespace: str
    service: str
    input_port: ports.PortIdentifier
    target_port: int
    local_port: int
    pod: str


@dataclasses.dataclass(frozen=True, eq=False)
class Connection:
    """ One accepted local connection: its handling task and its socket. """
    task: aiotasks.Task
    writer: asyncio.StreamWriter
    peer: str

    def abort(self) -> None:
        transport = self.writer.transport
        if not transport.is_closing():
            transport.abort()


class TunnelSession:
    """
    A local listener with its accepted connections, all to one pod's port.
    """

    server: asyncio.Server | None
    local_port: int

    def __init__(
            self,
            *,
            context: auth.APIContext,
            settings: configuration.SessionSettings,
            namespace: str,
            service: str,
            pod: str,
            input_port: ports.PortIdentifier,
            target_port: int,
    ) -> None:
        super().__init__()
        self.context = context
        self.settings = settings
        self.namespace = namespace
        self.service = service
        self.pod = pod
        self.input_port = input_port
        self.target_port = target_port
        self.local_port = 0
        self.server = None
        self.connections: set[Connection] = set()
        self.logger: loggers.SessionLogger | logging.Logger = logger
        self._stopped = False

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} {self.id} connections={len(self.connections)}>'

    @property
    def id(self) -> str:
        return f'{self.namespace}-{self.service}-{self.local_port}'

    @property
    def info(self) -> ForwardInfo:
        return ForwardInfo(
            id=self.id,
            namespace=self.namespace,
            service=self.service,
            input_port=self.input_port,
            target_port=self.target_port,
            local_port=self.local_port,
            pod=self.pod,
        )

    async def listen(self, *, host: str, port: int) -> None:
        try:
            self.server = await asyncio.start_server(self._handle, host=host, port=port)
        except OSError as e:
            raise errors.ListenFailedError(f"Failed to listen on {host}:{port}: {e}") from e

        # With port 0, the OS assigns an ephemeral port: the id is only known now.
        self.local_port = self.server.sockets[0].getsockname()[1]
        self.logger = loggers.SessionLogger(kind='forward', id=self.id)

    async def stop(self) -> None:
        """
        Abort all the connections and release the listening socket.

        Only returns when the socket is released: the same local port
        can be listened on again right after that.
        """
        if self._stopped:
            return
        self._stopped = True

        # No new connections from now on; the ones accepted meanwhile abort themselves.
        if self.server is not None:
            self.server.close()

        # Some connections can be registered while the previous ones are stopping.
        while self.connections:
            connections = list(self.connections)
            for connection in connections:
                connection.abort()
            await aiotasks.stop([connection.task for connection in connections],
                                title=f"Connections of {self.id}", quiet=True, logger=self.logger)

        if self.server is not None:
            await self.server.wait_closed()
        self.logger.info(f"Stopped forwarding from port {self.local_port}.")

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.current_task()
        assert task is not None  # the handlers of asyncio servers are always tasks
        peer = writer.get_extra_info('peername')
        connection = Connection(task=task, writer=writer, peer=str(peer))
        if self._stopped:
            connection.abort()
            self.logger.debug(f"Rejected a connection from {connection.peer}: the tunnel is stopped.")
            return

        self.connections.add(connection)
        self.logger.debug(f"Accepted a connection from {connection.peer}.")
        try:
            await self._serve(reader, writer)
        except errors.TunnelOpenFailedError as e:
            self.logger.error(f"Closing the connection from {connection.peer}: {e}")
        except (ConnectionError, aiohttp.ClientError, tunneling.PortForwardError) as e:
            self.logger.warning(f"Connection from {connection.peer} has failed: {e!r}")
        except asyncio.CancelledError:
            # The server's callback treats a cancelled handler as a failure; a stop is not one.
            if not self._stopped:
                raise
        finally:
            self.connections.discard(connection)
            connection.abort()
            self.logger.debug(f"Closed the connection from {connection.peer}.")

    async def _serve(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            channel = await tunneling.open_channel(
                context=self.context,
                settings=self.settings,
                namespace=self.namespace,
                pod=self.pod,
                port=self.target_port,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise errors.TunnelOpenFailedError(
                f"Failed to open a tunnel to {self.pod}:{self.target_port}: {e!r}") from e

        async with channel:
            upstream = asyncio.create_task(self._send_upstream(reader, channel))
            downstream = asyncio.create_task(self._send_downstream(channel, writer))
            tasks = [upstream, downstream]
            try:
                done, _ = await aiotasks.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            finally:
                await aiotasks.stop(tasks, title="Splicing", quiet=True, logger=self.logger)
            await aiotasks.reraise(done)

    async def _send_upstream(
            self,
            reader: asyncio.StreamReader,
            channel: tunneling.PortForwardChannel,
    ) -> None:
        while data := await reader.read(self.settings.tunneling.chunk_size):
            await channel.send(data)

    async def _send_downstream(
            self,
            channel: tunneling.PortForwardChannel,
            writer: asyncio.StreamWriter,
    ) -> None:
        async for data in channel:
            writer.write(data)
            await writer.drain()


async def find_target(
        *,
        context: auth.APIContext,
        settings: configuration.SessionSettings,
        namespace: str,
        service: str,
        port: ports.PortIdentifier,
) -> tuple[bodies.RawPod, int]:
    """
    Choose the pod of the service and the numeric port in it.
    """
    try:
        body = await fetching.read_service(context=context, settings=settings,
                                           namespace=namespace, name=service, logger=logger)
    except api_errors.APINotFoundError as e:
        raise errors.NoSelectorError(f"Service {namespace}/{service} is not found.") from e

    selector = (body.get('spec') or {}).get('selector')
    if not selector:
        raise errors.NoSelectorError(f"Service {namespace}/{service} has no selector.")

    pods = await fetching.list_pods(context=context, settings=settings,
                                    namespace=namespace, labels=selector, logger=logger)
    running = [pod for pod in pods if (pod.get('status') or {}).get('phase') == 'Running']
    if not running:
        raise errors.NoRunningPodsError(f"No running pods found for service {namespace}/{service}.")

    pod = running[0]
    target_port = ports.resolve_port(pod, ports.map_service_port(body, port))
    return pod, target_port


async def start_forward(
        *,
        registry: registry.SessionRegistry,
        context: auth.APIContext,
        settings: configuration.SessionSettings,
        namespace: str,
        service: str,
        port: ports.PortIdentifier,
        local_port: int = 0,
) -> ForwardInfo:
    """
    Start forwarding a local port to a service's pod; return the tunnel's info.

    Nothing is registered if the tunnel cannot be started for any reason.
    """
    pod, target_port = await find_target(context=context, settings=settings,
                                         namespace=namespace, service=service, port=port)
    session = TunnelSession(
        context=context,
        settings=settings,
        namespace=namespace,
        service=service,
        pod=pod['metadata']['name'],
        input_port=port,
        target_port=target_port,
    )
    await session.listen(host=settings.tunneling.bind_host, port=local_port)
    async with registry.lock('forward', session.id):
        registry.tunnels[session.id] = session
    session.logger.info(f"Forwarding from {settings.tunneling.bind_host}:{session.local_port} "
                        f"to {session.pod}:{session.target_port}.")
    return session.info


async def stop_forward(
        *,
        registry: registry.SessionRegistry,
        id: str,
) -> bool:
    """
    Stop a tunnel by its id. Return ``False`` if there is no such tunnel.
    """
    async with registry.lock('forward', id):
        session = registry.tunnels.get(id)
        if session is None:
            return False
        await session.stop()
        registry.tunnels.pop(id, None)
        return True


async def stop_all_forwards(
        *,
        registry: registry.SessionRegistry,
) -> bool:
    for id in list(registry.tunnels):
        await stop_forward(registry=registry, id=id)
    return True


def list_forwards(
        *,
        registry: registry.SessionRegistry,
) -> list[ForwardInfo]:
    return [session.info for session in registry.tunnels.values()]
