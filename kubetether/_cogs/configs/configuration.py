"""
All configuration flags, options, settings to fine-tune the sessions.

All settings are grouped semantically just for convenience
(instead of a flat mega-object with all the values in it).

In this project, they are called *"settings"* (plural).
Combined, they form a *"configuration"* (singular).

Some of the settings are flags, some are scalars, some are optional,
some are not (but all of them have reasonable defaults).
"""
import dataclasses
from collections.abc import Iterable


@dataclasses.dataclass
class NetworkingSettings:

    request_timeout: float | None = 5 * 60  # == aiohttp.client.DEFAULT_TIMEOUT
    """
    A timeout for the one-shot API requests: e.g. fetching services & pods.
    It is not used for the long-lived streams (see the per-stream settings).
    """

    connect_timeout: float | None = None
    """
    A timeout for the connection establishment to the API (TCP & TLS).
    If ``None``, only the ``request_timeout`` applies.
    """

    error_backoffs: float | Iterable[float] = (1, 2, 4)
    """
    Backoffs (in seconds) between the retries of failed API requests.

    Only the connectivity errors, the timeouts, and the HTTP 5xx statuses
    are retried. Other errors (e.g. 404) are escalated immediately.

    It can be an iterable (e.g. a list or a tuple) or a single float number.
    The number of the values defines the number of the retries.
    Set to an empty list to disable the retries.
    """


@dataclasses.dataclass
class WatchingSettings:

    server_timeout: float | None = None
    """
    The maximum duration of one streaming request, as requested from the server.
    If ``None``, then obey the server-side timeouts (they seem to be random).
    """

    client_timeout: float | None = None
    """
    An HTTP/HTTPS session timeout to use in watch requests.
    """

    connect_timeout: float | None = None
    """
    An HTTP/HTTPS connection timeout to use in watch requests.
    """

    reconnect_backoff: float | None = None
    """
    How long to pause before re-opening a watch-stream that has ended or failed.

    If ``None`` (the default), the streams are never re-opened: a watch session
    that ended remains registered but silent until explicitly restarted.
    """

    backlog: int = 1000
    """
    How many pod events can be buffered for a slow consumer of a watch session.
    When the backlog is full, the stream reading is paused until it is consumed.
    """


@dataclasses.dataclass
class TunnelingSettings:

    bind_host: str = '127.0.0.1'
    """
    The local address to listen on. Only the local machine can connect by default.
    """

    chunk_size: int = 64 * 1024
    """
    The maximum number of bytes read from a local connection at once.
    """

    connect_timeout: float | None = 30
    """
    How long to wait for the upstream port-forwarding channel to open.
    If it does not open in time, the accepted local connection is closed.
    """


@dataclasses.dataclass
class TailingSettings:

    tail_lines: int | None = 100
    """
    How many recent lines to backfill before following the live output.
    If ``None``, the whole available log is sent by the server.
    """

    timestamps: bool = False
    """
    Should the server prefix every line with its timestamp?
    """

    backlog: int = 1000
    """
    How many text chunks can be buffered for a slow consumer of a log session.
    """

    chunk_size: int = 64 * 1024
    """
    The maximum number of bytes read from the log stream at once.
    """


@dataclasses.dataclass
class ReconciliationSettings:

    coalescing_window: float = 0.25
    """
    How long (in seconds) the pod events are batched before they are applied.

    The first event of a batch arms a timer; all events arriving before it fires
    are applied together, with only the latest event per pod taking effect.
    """


@dataclasses.dataclass
class SessionSettings:
    networking: NetworkingSettings = dataclasses.field(default_factory=NetworkingSettings)
    watching: WatchingSettings = dataclasses.field(default_factory=WatchingSettings)
    tunneling: TunnelingSettings = dataclasses.field(default_factory=TunnelingSettings)
    tailing: TailingSettings = dataclasses.field(default_factory=TailingSettings)
    reconciliation: ReconciliationSettings = dataclasses.field(default_factory=ReconciliationSettings)
