"""
Port-forwarding channels to the pods via the websocket API.

Every channel is one websocket to ``/api/v1/namespaces/{ns}/pods/{pod}/portforward``
for one port, with the ``v4.channel.k8s.io`` subprotocol:

* Every binary frame starts with one byte of the stream number: 0 is the data
  stream of the port, 1 is its error stream.
* The first frame of each stream from the server contains only the port number
  as 2 bytes in little-endian order; it is a confirmation, not the payload.
* The client sends the payload in frames prefixed with the data stream number.

One channel is opened per local client connection, never shared between them:
the bytes of the different connections must never be interleaved.
"""
import logging
import struct
import urllib.parse
from collections.abc import AsyncIterator
from types import TracebackType

import aiohttp

from kubetether._cogs.clients import api, auth
from kubetether._cogs.configs import configuration

logger = logging.getLogger(__name__)

PROTOCOL = 'v4.channel.k8s.io'
DATA_STREAM = 0
ERROR_STREAM = 1


class PortForwardError(Exception):
    """ Raised when the API reports an error via the port's error stream. """


class PortForwardChannel:
    """
    A bidirectional byte pipe to one port of one pod.

    Usage::

        async with await open_channel(...) as channel:
            await channel.send(b'GET / HTTP/1.0\\r\\n\\r\\n')
            async for data in channel:
                print(data)
    """

    def __init__(self, ws: aiohttp.ClientWebSocketResponse, *, port: int) -> None:
        super().__init__()
        self.port = port
        self._ws = ws
        self._confirmed: set[int] = set()

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} port={self.port} closed={self._ws.closed}>'

    async def __aenter__(self) -> "PortForwardChannel":
        return self

    async def __aexit__(
            self,
            exc_type: type[BaseException] | None,
            exc_val: BaseException | None,
            exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._ws.closed

    async def send(self, data: bytes) -> None:
        await self._ws.send_bytes(bytes([DATA_STREAM]) + data)

    async def close(self) -> None:
        await self._ws.close()

    async def __aiter__(self) -> AsyncIterator[bytes]:
        """
        Yield the payload of the data stream until the websocket is closed.

        Errors in the error stream are raised as :class:`PortForwardError`.
        """
        async for msg in self._ws:
            if msg.type == aiohttp.WSMsgType.BINARY:
                data: bytes = msg.data
                if not data:
                    continue
                stream, payload = data[0], data[1:]

                # Strip the port confirmation, which can come with or without the payload.
                if stream not in self._confirmed:
                    self._confirmed.add(stream)
                    if len(payload) >= 2:
                        confirmed_port, = struct.unpack('<H', payload[:2])
                        if confirmed_port != self.port:
                            logger.warning(f"Port {self.port} is confirmed as {confirmed_port}.")
                    payload = payload[2:]

                if stream == DATA_STREAM and payload:
                    yield payload
                elif stream == ERROR_STREAM and payload:
                    raise PortForwardError(payload.decode('utf-8', errors='replace'))
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise PortForwardError(f"Websocket failure: {self._ws.exception()!r}")
            elif msg.type in (aiohttp.WSMsgType.CLOSE,
                              aiohttp.WSMsgType.CLOSING,
                              aiohttp.WSMsgType.CLOSED):
                break


async def open_channel(
        *,
        context: auth.APIContext,
        settings: configuration.SessionSettings,
        namespace: str,
        pod: str,
        port: int,
) -> PortForwardChannel:
    ns = urllib.parse.quote(namespace, safe='')
    nm = urllib.parse.quote(pod, safe='')
    ws = await api.connect(
        url=f'/api/v1/namespaces/{ns}/pods/{nm}/portforward',
        params={'ports': str(port)},
        protocols=[PROTOCOL],
        context=context,
        timeout=settings.tunneling.connect_timeout,
    )
    return PortForwardChannel(ws, port=port)
