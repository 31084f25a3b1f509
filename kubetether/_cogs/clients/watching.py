"""
Watching and streaming the pods' watch-events.

The watch-stream is a long-lived HTTP response with one JSON document per line,
each being an event of a pod: ``{"type": "ADDED", "object": {...}}``.

Opening the stream and iterating over it are separate steps: the opening
is a part of the session's creation (and its failures reject the creation),
while the iteration happens later in the session's background task.

There is no separate initial listing here:
the stream starts without a resource version, so the server itself sends
the synthetic ``ADDED`` events for all currently existing pods first.
"""
import json
import logging
import urllib.parse
from collections.abc import AsyncIterator
from typing import cast

import aiohttp

from kubetether._cogs.clients import api, auth
from kubetether._cogs.configs import configuration
from kubetether._cogs.structs import bodies

logger = logging.getLogger(__name__)


class WatchingError(Exception):
    """
    Raised when an unexpected error happens in the watch-stream API.
    """


def build_pods_url(namespace: str | None) -> str:
    if namespace is None:
        return '/api/v1/pods'
    return f'/api/v1/namespaces/{urllib.parse.quote(namespace, safe="")}/pods'


async def open_watch(
        *,
        context: auth.APIContext,
        settings: configuration.SessionSettings,
        namespace: str | None,
) -> aiohttp.ClientResponse:
    """
    Open a watch-stream of pods, either cluster-wide or in one namespace.
    """
    params: dict[str, str] = {}
    params['watch'] = 'true'
    if settings.watching.server_timeout is not None:
        params['timeoutSeconds'] = str(int(settings.watching.server_timeout))

    connect_timeout = (
        settings.watching.connect_timeout if settings.watching.connect_timeout is not None else
        settings.networking.connect_timeout if settings.networking.connect_timeout is not None else
        settings.networking.request_timeout
    )

    return await api.request(
        method='get',
        url=build_pods_url(namespace),
        params=params,
        context=context,
        settings=settings,
        logger=logger,
        timeout=aiohttp.ClientTimeout(
            total=settings.watching.client_timeout,
            sock_connect=connect_timeout,
        ),
    )


async def iter_events(
        response: aiohttp.ClientResponse,
) -> AsyncIterator[bodies.RawEvent]:
    """
    Parse the events from an opened watch-stream until it is closed.

    Closes the response when the iteration is over, either way.
    """
    async with response:
        async for line in api.iter_jsonlines(response.content):
            try:
                raw_input = cast(bodies.RawInput, json.loads(line.decode('utf-8')))
            except ValueError:
                logger.warning(f"Ignoring an unparseable line in the watch-stream: {line[:100]!r}")
                continue

            raw_type = raw_input.get('type')
            raw_object = raw_input.get('object')

            # Watch errors (e.g. "410 Gone") break the stream: it is useless after them.
            if raw_type == 'ERROR':
                raise WatchingError(f"Error in the watch-stream: {raw_object}")

            # Bookmarks only carry the resource versions, which we do not track.
            if raw_type == 'BOOKMARK':
                continue

            # Ensure that the event is something we understand and can handle.
            if raw_type not in ['ADDED', 'MODIFIED', 'DELETED']:
                logger.warning(f"Ignoring an unsupported event type: {raw_input!r}")
                continue

            yield cast(bodies.RawEvent, raw_input)
