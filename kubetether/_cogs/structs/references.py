"""
Namespace selections as requested by the user, and their interpretation.

A selection is a collection of namespace names, possibly empty, and possibly
containing the special ``"all"`` marker. It is interpreted twice:

* Server-side: which watch-stream to open. Only one stream is ever opened:
  either for exactly one namespace, or for all namespaces at once.
* Client-side: which pods to accept from that stream. With several specific
  namespaces, the cluster-wide stream is filtered locally.
"""
import dataclasses
from collections.abc import Iterable

ALL_NAMESPACES = 'all'


@dataclasses.dataclass(frozen=True)
class NamespaceFilter:
    """
    An allow-set of namespaces, or ``None`` for all of them.
    """
    namespaces: frozenset[str] | None = None

    @classmethod
    def from_selection(cls, selection: Iterable[str] | None = None) -> "NamespaceFilter":
        namespaces = frozenset(selection or ())
        if not namespaces or ALL_NAMESPACES in namespaces:
            return cls(namespaces=None)
        return cls(namespaces=namespaces)

    def __str__(self) -> str:
        if self.namespaces is None:
            return 'all namespaces'
        return ', '.join(sorted(self.namespaces))

    def __contains__(self, namespace: object) -> bool:
        return self.namespaces is None or namespace in self.namespaces

    @property
    def clusterwide(self) -> bool:
        return self.namespaces is None

    @property
    def watched_namespace(self) -> str | None:
        """
        The namespace to watch server-side, or ``None`` for a cluster-wide stream.

        Multiple specific namespaces degrade to the cluster-wide stream,
        which is then filtered client-side, instead of N parallel streams.
        """
        if self.namespaces is not None and len(self.namespaces) == 1:
            return next(iter(self.namespaces))
        return None
