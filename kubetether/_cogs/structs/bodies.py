"""
All the structures coming from the Kubernetes API.

For strict type-checking, they are detailed to the per-field level
(e.g. `TypedDict` instead of just ``Mapping[Any, Any]``) --
as used by the sessions. The API can send arbitrary extra fields at runtime,
which are not declared in the type definitions at type-checking time.

Everything marked "raw" is a plain unwrapped unprocessed data as JSON-decoded
from Kubernetes API, usually as retrieved in watching or fetching API calls.
"Input" is a parsed JSON as is, while "event" is an "input" without "errors".
"""
import enum
from collections.abc import Mapping, Sequence
from typing import Any, Literal, TypedDict

Labels = Mapping[str, str]

RawInputType = Literal['ADDED', 'MODIFIED', 'DELETED', 'BOOKMARK', 'ERROR']


class EventType(str, enum.Enum):
    """ The kinds of changes delivered to the consumers of the watch sessions. """
    ADDED = 'ADDED'
    MODIFIED = 'MODIFIED'
    DELETED = 'DELETED'

    def __str__(self) -> str:
        return self.value


class RawMeta(TypedDict, total=False):
    uid: str
    name: str
    namespace: str
    labels: Labels
    annotations: Mapping[str, str]
    resourceVersion: str
    creationTimestamp: str


class RawContainerPort(TypedDict, total=False):
    name: str
    containerPort: int
    protocol: str


class RawContainer(TypedDict, total=False):
    name: str
    image: str
    ports: Sequence[RawContainerPort]


class RawPodSpec(TypedDict, total=False):
    nodeName: str
    containers: Sequence[RawContainer]
    initContainers: Sequence[RawContainer]


class RawContainerStatus(TypedDict, total=False):
    name: str
    image: str
    ready: bool
    restartCount: int
    state: Mapping[str, Any]


class RawPodStatus(TypedDict, total=False):
    phase: str
    containerStatuses: Sequence[RawContainerStatus]
    initContainerStatuses: Sequence[RawContainerStatus]


class RawPod(TypedDict, total=False):
    apiVersion: str
    kind: str
    metadata: RawMeta
    spec: RawPodSpec
    status: RawPodStatus


class RawServicePort(TypedDict, total=False):
    name: str
    port: int
    targetPort: int | str
    protocol: str


class RawServiceSpec(TypedDict, total=False):
    selector: Labels
    ports: Sequence[RawServicePort]


class RawService(TypedDict, total=False):
    apiVersion: str
    kind: str
    metadata: RawMeta
    spec: RawServiceSpec


# A special payload for type==ERROR (this is not a connection or client error).
class RawError(TypedDict, total=False):
    apiVersion: str     # usually: Literal['v1']
    kind: str           # usually: Literal['Status']
    metadata: Mapping[Any, Any]
    code: int
    reason: str
    status: str
    message: str


# As received from the stream before processing the errors and special cases.
class RawInput(TypedDict, total=True):
    type: RawInputType
    object: RawPod | RawError


# As passed further after processing the errors and special cases.
class RawEvent(TypedDict, total=True):
    type: Literal['ADDED', 'MODIFIED', 'DELETED']
    object: RawPod
