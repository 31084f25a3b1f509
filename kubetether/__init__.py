"""
The main kubetether module for all the exported functions & classes.
"""
# isort: skip_file

# Unlike all other places, where we import other modules and refer
# the functions via the modules, this is the library's top-level interface,
# as it is seen by the users. So, we export the individual functions.

from kubetether._cogs.aiokits.aiochannels import (
    Channel,
)
from kubetether._cogs.clients.auth import (
    APIContext,
)
from kubetether._cogs.clients.errors import (
    APIError,
    APIClientError,
    APIServerError,
    APIUnauthorizedError,
    APIForbiddenError,
    APINotFoundError,
    APIConflictError,
)
from kubetether._cogs.configs.configuration import (
    SessionSettings,
    NetworkingSettings,
    WatchingSettings,
    TunnelingSettings,
    TailingSettings,
    ReconciliationSettings,
)
from kubetether._cogs.helpers.typedefs import (
    Logger,
)
from kubetether._cogs.helpers.versions import (
    version as __version__,
)
from kubetether._cogs.structs.bodies import (
    EventType,
)
from kubetether._cogs.structs.credentials import (
    LoginError,
    ConnectionInfo,
)
from kubetether._cogs.structs.references import (
    ALL_NAMESPACES,
    NamespaceFilter,
)
from kubetether._cogs.structs.snapshots import (
    ContainerSnapshot,
    PodSnapshot,
    PodEvent,
    build_pod_snapshot,
)
from kubetether._core.actions.loggers import (
    configure,
    LogFormat,
    SessionLogger,
)
from kubetether._core.intents.piggybacking import (
    login,
    login_with_kubeconfig,
    login_with_service_account,
)
from kubetether._core.intents.ports import (
    PortIdentifier,
    resolve_port,
)
from kubetether._core.reactor.reconciliation import (
    Reconciler,
)
from kubetether._core.sessions.errors import (
    SessionError,
    NoSelectorError,
    NoRunningPodsError,
    PortNameUnresolvedError,
    AmbiguousPortFormatError,
    ListenFailedError,
    TunnelOpenFailedError,
    StreamOpenFailedError,
    StreamRuntimeError,
)
from kubetether._core.sessions.registry import (
    SessionRegistry,
)
from kubetether._core.sessions.tails import (
    LogSession,
    start_log_stream,
    stop_log_stream,
)
from kubetether._core.sessions.tunnels import (
    ForwardInfo,
    TunnelSession,
    start_forward,
    stop_forward,
    stop_all_forwards,
    list_forwards,
)
from kubetether._core.sessions.watches import (
    WatchSession,
    start_watch,
    stop_watch,
)

__all__ = [
    'SessionRegistry',
    'APIContext',
    'start_forward', 'stop_forward', 'stop_all_forwards', 'list_forwards',
    'ForwardInfo', 'TunnelSession',
    'start_watch', 'stop_watch', 'WatchSession',
    'start_log_stream', 'stop_log_stream', 'LogSession',
    'Reconciler',
    'resolve_port', 'PortIdentifier',
    'Channel',
    'EventType', 'PodEvent', 'PodSnapshot', 'ContainerSnapshot', 'build_pod_snapshot',
    'ALL_NAMESPACES', 'NamespaceFilter',
    'configure', 'LogFormat', 'SessionLogger', 'Logger',
    'login', 'login_with_kubeconfig', 'login_with_service_account',
    'LoginError', 'ConnectionInfo',
    'SessionSettings',
    'NetworkingSettings',
    'WatchingSettings',
    'TunnelingSettings',
    'TailingSettings',
    'ReconciliationSettings',
    'SessionError',
    'NoSelectorError',
    'NoRunningPodsError',
    'PortNameUnresolvedError',
    'AmbiguousPortFormatError',
    'ListenFailedError',
    'TunnelOpenFailedError',
    'StreamOpenFailedError',
    'StreamRuntimeError',
    'APIError',
    'APIClientError',
    'APIServerError',
    'APIUnauthorizedError',
    'APIForbiddenError',
    'APINotFoundError',
    'APIConflictError',
    '__version__',
]
