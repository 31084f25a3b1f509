"""
Errors of the Kubernetes API, as raised to the sessions.

The sessions never see the HTTP errors of ``aiohttp`` for the failed requests:
those are converted to the classes below by the HTTP status, with the details
taken from the ``Status`` body that the API returns with every failure.
The original ``aiohttp`` error is chained as the cause.

The network-level failures (refused connections, TLS, timeouts) are not
converted: they are not the API's answers, so they are raised as they are.
"""
import json
from collections.abc import Mapping
from typing import Any

import aiohttp

RawStatus = Mapping[str, Any]


class APIError(Exception):
    """ A failure reported by the API, with its ``Status`` body if there was one. """

    def __init__(self, payload: RawStatus | None, *, status: int) -> None:
        self.status = status
        self.payload = payload
        super().__init__(self.message, payload)

    @property
    def code(self) -> int | None:
        return self.payload.get('code') if self.payload else None

    @property
    def message(self) -> str | None:
        return self.payload.get('message') if self.payload else None

    @property
    def details(self) -> Mapping[str, Any] | None:
        return self.payload.get('details') if self.payload else None


class APIClientError(APIError):
    """ 4xx: the request is wrong and is never retried. """


class APIServerError(APIError):
    """ 5xx: the API has failed; the request can be retried. """


class APIUnauthorizedError(APIClientError):
    pass


class APIForbiddenError(APIClientError):
    pass


class APINotFoundError(APIClientError):
    pass


class APIConflictError(APIClientError):
    pass


ERROR_CLASSES: Mapping[int, type[APIError]] = {
    401: APIUnauthorizedError,
    403: APIForbiddenError,
    404: APINotFoundError,
    409: APIConflictError,
}


def get_error_class(status: int) -> type[APIError]:
    if status in ERROR_CLASSES:
        return ERROR_CLASSES[status]
    elif 400 <= status < 500:
        return APIClientError
    elif 500 <= status < 600:
        return APIServerError
    else:
        return APIError


async def read_status(response: aiohttp.ClientResponse) -> RawStatus | None:
    """
    Read the ``Status`` body of a failed response; ignore anything else.

    Other bodies are not kept: nobody knows what they expose in the logs.
    """
    try:
        payload = await response.json()
    except (json.JSONDecodeError, aiohttp.ContentTypeError, aiohttp.ClientConnectionError):
        return None
    if not isinstance(payload, Mapping) or payload.get('kind') != 'Status':
        return None
    return payload


async def check_response(response: aiohttp.ClientResponse) -> None:
    """
    Raise the API error of a failed response; do nothing for the successful ones.
    """
    if response.status < 400:
        return

    # The body must be read before raise_for_status(), which releases the response.
    payload = await read_status(response)
    cls = get_error_class(response.status)
    try:
        response.raise_for_status()
    except aiohttp.ClientResponseError as e:
        raise cls(payload, status=response.status) from e
