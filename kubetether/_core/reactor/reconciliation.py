"""
Reconciliation of the pod events into a consistent collection of pods.

The watch-streams are bursty: e.g. a rollout produces dozens of events
for the same pods within a fraction of a second. Instead of re-rendering
the pod list on every event, the events are buffered and coalesced:

* The first event after a flush arms a timer of a fixed coalescing window.
* All the events arriving before the timer fires are kept per pod;
  only the latest event of each pod takes effect (last write wins).
* When the timer fires, the whole batch is applied at once: the consumers
  never see a half-applied batch.

The flushes are synchronous (they contain no ``await``), so they are exclusive
by the nature of the event loop: nothing else can happen in the middle of one.

The namespace filter is enforced at the flush: the pods outside of it are
never inserted, and the stale ones are evicted when the filter changes.
A pod that moves to another namespace is evicted from its old key: it is
recognised by its uid, or by its name for the pods without uids.
"""
import asyncio
import logging
from collections.abc import AsyncIterable, Iterable

from kubetether._cogs.configs import configuration
from kubetether._cogs.structs import bodies, references, snapshots

logger = logging.getLogger(__name__)


class Reconciler:
    """
    A canonical collection of the pods, fed by the pod events.

    Usage::

        reconciler = Reconciler(settings=settings, namespaces=['default', 'kube-system'])
        task = asyncio.create_task(reconciler.consume(session))
        while True:
            await reconciler.wait_for_flush()
            render(reconciler.snapshot())
    """

    def __init__(
            self,
            *,
            settings: configuration.SessionSettings | None = None,
            namespaces: Iterable[str] | None = (),
    ) -> None:
        super().__init__()
        self.settings = settings if settings is not None else configuration.SessionSettings()
        self.namespaces = references.NamespaceFilter.from_selection(namespaces)
        self.pods: dict[str, snapshots.PodSnapshot] = {}
        self._keys: dict[str, str] = {}  # uid -> key in self.pods
        self._pending: dict[str, snapshots.PodEvent] = {}
        self._timer: asyncio.TimerHandle | None = None
        self._flushed = asyncio.Event()

    def __repr__(self) -> str:
        return (f'<{self.__class__.__name__} in {self.namespaces}: '
                f'pods={len(self.pods)} pending={len(self._pending)}>')

    @property
    def buffering(self) -> bool:
        return self._timer is not None

    def push(self, type: bodies.EventType, pod: snapshots.PodSnapshot) -> None:
        """
        Buffer an event until the next flush; arm the timer if it is not armed yet.
        """
        self._pending[pod.key] = snapshots.PodEvent(type=type, pod=pod)
        if self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self.settings.reconciliation.coalescing_window,
                                          self.flush)

    def flush(self) -> int:
        """
        Apply all the buffered events at once. Return the number of the applied events.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        batch, self._pending = self._pending, {}
        for key, event in batch.items():
            pod = event.pod

            # The pod could be stored under another key if its namespace has changed.
            self._discard(key)
            if pod.uid is not None and pod.uid in self._keys:
                self._discard(self._keys[pod.uid])

            if event.type == bodies.EventType.DELETED:
                continue
            if pod.namespace in self.namespaces:
                self.pods[key] = pod
                if pod.uid is not None:
                    self._keys[pod.uid] = key
            elif pod.uid is None:
                # Without the uids, a pod leaving the filter is recognised by its name.
                stale = [k for k, p in self.pods.items() if p.uid is None and p.name == pod.name]
                for k in stale:
                    self._discard(k)

        if batch:
            logger.debug(f"Applied {len(batch)} pod events; {len(self.pods)} pods now.")

        # Wake up the current waiters; the next ones will wait for the next flush.
        flushed, self._flushed = self._flushed, asyncio.Event()
        flushed.set()
        return len(batch)

    def set_namespaces(self, namespaces: Iterable[str] | None) -> None:
        """
        Change the namespace filter and evict the pods that do not pass it anymore.
        """
        self.namespaces = references.NamespaceFilter.from_selection(namespaces)
        evicted = [key for key, pod in self.pods.items() if pod.namespace not in self.namespaces]
        for key in evicted:
            self._discard(key)
        logger.debug(f"Switched to {self.namespaces}; evicted {len(evicted)} pods.")

    def _discard(self, key: str) -> None:
        pod = self.pods.pop(key, None)
        if pod is not None and pod.uid is not None:
            self._keys.pop(pod.uid, None)

    async def consume(self, events: AsyncIterable[snapshots.PodEvent]) -> None:
        """
        Feed the reconciler from a watch session (or any source) until it ends.
        """
        async for type, pod in events:
            self.push(type, pod)

    def snapshot(self) -> list[snapshots.PodSnapshot]:
        return [self.pods[key] for key in sorted(self.pods)]

    async def wait_for_flush(self) -> None:
        await self._flushed.wait()

    def close(self) -> None:
        """
        Disarm the timer. The buffered events are discarded, not applied.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending.clear()
