"""
One-shot fetching of the objects needed to set up the sessions.

Only the core v1 services & pods are fetched: the services for their selectors
and ports, the pods as the targets of the port-forwarding tunnels.
"""
import urllib.parse
from collections.abc import Collection, Mapping

from kubetether._cogs.clients import api, auth
from kubetether._cogs.configs import configuration
from kubetether._cogs.helpers import typedefs
from kubetether._cogs.structs import bodies


def build_label_selector(labels: Mapping[str, str]) -> str:
    return ','.join(f'{key}={value}' for key, value in labels.items())


async def read_service(
        *,
        context: auth.APIContext,
        settings: configuration.SessionSettings,
        namespace: str,
        name: str,
        logger: typedefs.Logger,
) -> bodies.RawService:
    ns = urllib.parse.quote(namespace, safe='')
    nm = urllib.parse.quote(name, safe='')
    rsp: bodies.RawService = await api.get(
        url=f'/api/v1/namespaces/{ns}/services/{nm}',
        context=context,
        settings=settings,
        logger=logger,
    )
    return rsp


async def list_pods(
        *,
        context: auth.APIContext,
        settings: configuration.SessionSettings,
        namespace: str,
        labels: Mapping[str, str] | None = None,
        logger: typedefs.Logger,
) -> Collection[bodies.RawPod]:
    ns = urllib.parse.quote(namespace, safe='')
    params = {'labelSelector': build_label_selector(labels)} if labels else None
    rsp = await api.get(
        url=f'/api/v1/namespaces/{ns}/pods',
        params=params,
        context=context,
        settings=settings,
        logger=logger,
    )
    items: list[bodies.RawPod] = list(rsp.get('items') or [])
    return items


async def read_pod(
        *,
        context: auth.APIContext,
        settings: configuration.SessionSettings,
        namespace: str,
        name: str,
        logger: typedefs.Logger,
) -> bodies.RawPod:
    ns = urllib.parse.quote(namespace, safe='')
    nm = urllib.parse.quote(name, safe='')
    rsp: bodies.RawPod = await api.get(
        url=f'/api/v1/namespaces/{ns}/pods/{nm}',
        context=context,
        settings=settings,
        logger=logger,
    )
    return rsp
