"""
The long-running activities of the command-line tool.

Each activity sets up its session(s) in a fresh registry, streams the results
to the output until it is finished or cancelled (e.g. by Ctrl+C), and then
stops all the sessions it has started, so that no sockets or tasks are leaked.
"""
import asyncio
import logging
from collections.abc import Callable, Collection

from kubetether._cogs.aiokits import aiotasks
from kubetether._cogs.clients import auth, fetching
from kubetether._cogs.configs import configuration
from kubetether._cogs.structs import credentials, snapshots
from kubetether._core.intents import ports
from kubetether._core.reactor import reconciliation
from kubetether._core.sessions import errors, registry as registries, tails, tunnels, watches

logger = logging.getLogger(__name__)

Output = Callable[[str], None]


async def forward(
        *,
        info: credentials.ConnectionInfo,
        settings: configuration.SessionSettings,
        namespace: str,
        service: str,
        port: ports.PortIdentifier,
        local_port: int = 0,
        output: Output,
        stop_flag: asyncio.Event | None = None,
) -> None:
    """
    Forward a local port until stopped, and print where it is forwarded to.
    """
    registry = registries.SessionRegistry()
    async with auth.APIContext(info) as context:
        try:
            forwarded = await tunnels.start_forward(
                registry=registry,
                context=context,
                settings=settings,
                namespace=namespace,
                service=service,
                port=port,
                local_port=local_port,
            )
            output(f"localhost:{forwarded.local_port} -> {forwarded.pod}:{forwarded.target_port}")
            await (stop_flag if stop_flag is not None else asyncio.Event()).wait()
        finally:
            await registry.close()


def format_pods(pods: Collection[snapshots.PodSnapshot]) -> str:
    rows = [('NAMESPACE', 'NAME', 'READY', 'STATUS', 'RESTARTS', 'NODE')]
    for pod in pods:
        ready = sum(1 for c in pod.containers if c.ready)
        rows.append((pod.namespace, pod.name, f'{ready}/{len(pod.containers)}',
                     pod.phase or '', str(pod.restarts), pod.node or ''))
    widths = [max(len(row[i]) for row in rows) for i in range(len(rows[0]))]
    lines = ['  '.join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip()
             for row in rows]
    return '\n'.join(lines)


async def watch_pods(
        *,
        info: credentials.ConnectionInfo,
        settings: configuration.SessionSettings,
        namespaces: Collection[str] = (),
        output: Output,
) -> None:
    """
    Watch the pods and print the whole table after every reconciled batch.
    """
    registry = registries.SessionRegistry()
    reconciler = reconciliation.Reconciler(settings=settings, namespaces=namespaces)
    async with auth.APIContext(info) as context:
        try:
            session = await watches.start_watch(
                registry=registry,
                context=context,
                settings=settings,
                namespaces=namespaces,
            )
            consuming = aiotasks.create_guarded_task(
                name="pods reconciliation",
                coro=reconciler.consume(session),
                finishable=True,
                cancellable=True,
                logger=logger,
            )
            try:
                while True:
                    await reconciler.wait_for_flush()
                    output(format_pods(reconciler.snapshot()))
            finally:
                await aiotasks.stop([consuming], title="pods reconciliation",
                                    quiet=True, logger=logger)
        finally:
            reconciler.close()
            await registry.close()


async def follow_logs(
        *,
        info: credentials.ConnectionInfo,
        settings: configuration.SessionSettings,
        namespace: str,
        pod: str,
        container: str | None = None,
        output: Output,
) -> None:
    """
    Print the logs of a container until the log-stream ends or is cancelled.

    If the container is not specified, the first container of the pod is used.
    """
    registry = registries.SessionRegistry()
    async with auth.APIContext(info) as context:
        try:
            if container is None:
                body = await fetching.read_pod(context=context, settings=settings,
                                               namespace=namespace, name=pod, logger=logger)
                containers = (body.get('spec') or {}).get('containers') or []
                if not containers:
                    raise errors.StreamOpenFailedError(f"Pod {namespace}/{pod} has no containers.")
                container = containers[0]['name']

            session = await tails.start_log_stream(
                registry=registry,
                context=context,
                settings=settings,
                namespace=namespace,
                pod=pod,
                container=container,
            )
            async for text in session:
                output(text)
        finally:
            await registry.close()
