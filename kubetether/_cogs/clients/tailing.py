"""
Following the containers' logs.

The log-stream is a long-lived HTTP response with the raw container output.
The chunks are not aligned to lines or even to characters: a multi-byte UTF-8
character can be split between two chunks. Hence the incremental decoding.
"""
import codecs
import logging
import urllib.parse
from collections.abc import AsyncIterator

import aiohttp

from kubetether._cogs.clients import api, auth
from kubetether._cogs.configs import configuration

logger = logging.getLogger(__name__)


async def open_log(
        *,
        context: auth.APIContext,
        settings: configuration.SessionSettings,
        namespace: str,
        pod: str,
        container: str,
) -> aiohttp.ClientResponse:
    ns = urllib.parse.quote(namespace, safe='')
    nm = urllib.parse.quote(pod, safe='')
    params: dict[str, str] = {
        'container': container,
        'follow': 'true',
        'timestamps': 'true' if settings.tailing.timestamps else 'false',
        'pretty': 'false',
    }
    if settings.tailing.tail_lines is not None:
        params['tailLines'] = str(settings.tailing.tail_lines)

    return await api.request(
        method='get',
        url=f'/api/v1/namespaces/{ns}/pods/{nm}/log',
        params=params,
        context=context,
        settings=settings,
        logger=logger,
        timeout=aiohttp.ClientTimeout(
            total=None,
            sock_connect=settings.networking.connect_timeout,
        ),
    )


async def iter_text(
        response: aiohttp.ClientResponse,
        *,
        chunk_size: int = 64 * 1024,
) -> AsyncIterator[str]:
    """
    Decode the chunks of an opened log-stream until it is closed.

    Closes the response when the iteration is over, either way.
    """
    decoder = codecs.getincrementaldecoder('utf-8')(errors='replace')
    async with response:
        async for data in response.content.iter_chunked(chunk_size):
            text = decoder.decode(data)
            if text:
                yield text
    tail = decoder.decode(b'', final=True)
    if tail:
        yield tail
