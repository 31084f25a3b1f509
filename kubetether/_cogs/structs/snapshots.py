"""
Denormalized, immutable views of pods as consumed by the presentation tier.

The raw pods are big and deeply nested. Only the fields that are rendered
in the pod lists are extracted: the phase, the restarts, the node,
and the per-container readiness & state.

The identity of a pod is ``namespace/name``. Pods without either of them
are considered malformed and are not converted at all. The ``uid`` is kept
too: it survives the changes of the namespace, which the key does not.
"""
import dataclasses
import datetime
from collections.abc import Mapping, Sequence
from typing import Literal, NamedTuple

import iso8601

from kubetether._cogs.structs import bodies

ContainerState = Literal['running', 'waiting', 'terminated']


@dataclasses.dataclass(frozen=True)
class ContainerSnapshot:
    name: str
    state: ContainerState
    ready: bool
    image: str | None
    restart_count: int


@dataclasses.dataclass(frozen=True)
class PodSnapshot:
    namespace: str
    name: str
    phase: str | None = None
    restarts: int = 0
    created: datetime.datetime | None = None
    node: str | None = None
    containers: tuple[ContainerSnapshot, ...] = ()
    labels: Mapping[str, str] = dataclasses.field(default_factory=dict, hash=False)
    uid: str | None = None

    @property
    def key(self) -> str:
        return f'{self.namespace}/{self.name}'


class PodEvent(NamedTuple):
    type: bodies.EventType
    pod: PodSnapshot


def get_container_state(status: bodies.RawContainerStatus) -> ContainerState:
    state = status.get('state') or {}
    return ('running' if state.get('running') is not None else
            'waiting' if state.get('waiting') is not None else
            'terminated')


def build_container_snapshots(
        statuses: Sequence[bodies.RawContainerStatus],
) -> tuple[ContainerSnapshot, ...]:
    return tuple(
        ContainerSnapshot(
            name=status.get('name', ''),
            state=get_container_state(status),
            ready=bool(status.get('ready', False)),
            image=status.get('image'),
            restart_count=status.get('restartCount') or 0,
        )
        for status in statuses
    )


def parse_timestamp(value: str | None) -> datetime.datetime | None:
    if not value:
        return None
    try:
        return iso8601.parse_date(value)
    except iso8601.ParseError:
        return None


def build_pod_snapshot(raw: bodies.RawPod | None) -> PodSnapshot | None:
    """
    Convert a raw pod to its snapshot, or return ``None`` if it has no identity.
    """
    if not isinstance(raw, Mapping):
        return None
    metadata = raw.get('metadata')
    if not isinstance(metadata, Mapping):
        return None
    name = metadata.get('name')
    namespace = metadata.get('namespace')
    if not name or not namespace:
        return None

    spec = raw.get('spec') or {}
    status = raw.get('status') or {}
    regular_statuses = status.get('containerStatuses') or []
    init_statuses = status.get('initContainerStatuses') or []

    return PodSnapshot(
        namespace=namespace,
        name=name,
        phase=status.get('phase'),
        restarts=sum(s.get('restartCount') or 0 for s in regular_statuses),
        created=parse_timestamp(metadata.get('creationTimestamp')),
        node=spec.get('nodeName'),
        containers=build_container_snapshots([*init_statuses, *regular_statuses]),
        labels=dict(metadata.get('labels') or {}),
        uid=metadata.get('uid') or None,
    )
