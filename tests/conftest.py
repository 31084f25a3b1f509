import asyncio
import dataclasses
import json
import logging
import re
import struct
from typing import Any

import aiohttp.test_utils
import aiohttp.web
import pytest

from kubetether._cogs.clients.auth import APIContext
from kubetether._cogs.configs.configuration import SessionSettings
from kubetether._cogs.structs.credentials import ConnectionInfo
from kubetether._core.sessions.registry import SessionRegistry


def pytest_configure(config):
    # Warnings from the testing tools out of our control should not fail the tests.
    config.addinivalue_line('filterwarnings', 'ignore::DeprecationWarning:aiohttp')


def make_pod(
        name: str,
        *,
        namespace: str = 'default',
        phase: str = 'Running',
        labels: dict[str, str] | None = None,
        ports: list[dict[str, Any]] | None = None,
        containers: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """ A minimal raw pod as the API would return it. """
    if containers is None:
        containers = [{'name': 'main', 'image': 'nginx', 'ports': ports or []}]
    return {
        'metadata': {'name': name, 'namespace': namespace, 'labels': labels or {},
                     'creationTimestamp': '2024-01-02T03:04:05Z'},
        'spec': {'containers': containers, 'nodeName': 'node-1'},
        'status': {'phase': phase, 'containerStatuses': [
            {'name': c['name'], 'image': c.get('image'), 'ready': phase == 'Running',
             'restartCount': 0, 'state': {'running': {}} if phase == 'Running' else {'waiting': {}}}
            for c in containers
        ]},
    }


def make_service(
        name: str,
        *,
        namespace: str = 'default',
        selector: dict[str, str] | None = None,
        ports: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    spec: dict[str, Any] = {'ports': ports or []}
    if selector is not None:
        spec['selector'] = selector
    return {'metadata': {'name': name, 'namespace': namespace}, 'spec': spec}


@dataclasses.dataclass
class FakeCluster:
    """
    The state of a fake Kubernetes API, as served by the ``server`` fixture.

    The streams (watches & logs) send what is prepared, and then hang until
    released, as the real API does for the long-lived requests.
    Set ``hold=False`` to end the streams right after the prepared data.
    """
    services: dict[tuple[str, str], Any] = dataclasses.field(default_factory=dict)
    pods: dict[tuple[str, str], Any] = dataclasses.field(default_factory=dict)
    watch_events: list[Any] = dataclasses.field(default_factory=list)
    log_chunks: list[bytes] = dataclasses.field(default_factory=list)
    failures: dict[str, int] = dataclasses.field(default_factory=dict)
    hold: bool = True
    released: asyncio.Event = dataclasses.field(default_factory=asyncio.Event)
    requests: list[aiohttp.web.Request] = dataclasses.field(default_factory=list)
    sockets: list[aiohttp.web.WebSocketResponse] = dataclasses.field(default_factory=list)

    def add_service(self, name: str, **kwargs: Any) -> dict[str, Any]:
        body = make_service(name, **kwargs)
        self.services[body['metadata']['namespace'], name] = body
        return body

    def add_pod(self, name: str, **kwargs: Any) -> dict[str, Any]:
        body = make_pod(name, **kwargs)
        self.pods[body['metadata']['namespace'], name] = body
        return body

    def add_event(self, type: str, name: str, **kwargs: Any) -> None:
        self.watch_events.append({'type': type, 'object': make_pod(name, **kwargs)})

    def paths(self, pattern: str = '') -> list[str]:
        return [request.path_qs for request in self.requests if re.search(pattern, request.path_qs)]


def status(code: int, message: str = 'failure') -> aiohttp.web.Response:
    return aiohttp.web.json_response(status=code, data={
        'apiVersion': 'v1', 'kind': 'Status', 'status': 'Failure', 'code': code, 'message': message,
    })


def build_app(cluster: FakeCluster) -> aiohttp.web.Application:

    @aiohttp.web.middleware
    async def recorder(request: aiohttp.web.Request, handler: Any) -> Any:
        cluster.requests.append(request)
        for pattern, code in cluster.failures.items():
            if re.search(pattern, request.path):
                return status(code)
        return await handler(request)

    async def read_service(request: aiohttp.web.Request) -> aiohttp.web.StreamResponse:
        key = request.match_info['ns'], request.match_info['name']
        if key not in cluster.services:
            return status(404, 'services not found')
        return aiohttp.web.json_response(cluster.services[key])

    async def read_pod(request: aiohttp.web.Request) -> aiohttp.web.StreamResponse:
        key = request.match_info['ns'], request.match_info['name']
        if key not in cluster.pods:
            return status(404, 'pods not found')
        return aiohttp.web.json_response(cluster.pods[key])

    async def list_pods(request: aiohttp.web.Request) -> aiohttp.web.StreamResponse:
        if request.query.get('watch') == 'true':
            return await watch_pods(request)
        namespace = request.match_info.get('ns')
        selector = dict(item.split('=', 1) for item in request.query.get('labelSelector', '').split(',') if item)
        items = [
            pod for (ns, _), pod in cluster.pods.items()
            if (namespace is None or ns == namespace) and
               all(pod['metadata']['labels'].get(k) == v for k, v in selector.items())
        ]
        return aiohttp.web.json_response({'kind': 'PodList', 'items': items})

    async def watch_pods(request: aiohttp.web.Request) -> aiohttp.web.StreamResponse:
        response = aiohttp.web.StreamResponse()
        response.content_type = 'application/json'
        await response.prepare(request)
        for event in cluster.watch_events:
            line = event if isinstance(event, bytes) else json.dumps(event).encode('utf-8')
            await response.write(line + b'\n')
        if cluster.hold:
            await cluster.released.wait()
        return response

    async def follow_log(request: aiohttp.web.Request) -> aiohttp.web.StreamResponse:
        response = aiohttp.web.StreamResponse()
        response.content_type = 'text/plain'
        await response.prepare(request)
        for chunk in cluster.log_chunks:
            await response.write(chunk)
            await asyncio.sleep(0.01)  # to make them separate chunks on the client side
        if cluster.hold:
            await cluster.released.wait()
        return response

    async def portforward(request: aiohttp.web.Request) -> aiohttp.web.StreamResponse:
        """ An echo server behind the port-forwarding protocol. """
        ws = aiohttp.web.WebSocketResponse(protocols=['v4.channel.k8s.io'])
        await ws.prepare(request)
        cluster.sockets.append(ws)
        port = int(request.query['ports'])
        await ws.send_bytes(b'\x00' + struct.pack('<H', port))
        await ws.send_bytes(b'\x01' + struct.pack('<H', port))
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.BINARY and msg.data[:1] == b'\x00':
                payload = msg.data[1:]
                if payload == b'fail\n':
                    await ws.send_bytes(b'\x01' + b'connection refused')
                else:
                    await ws.send_bytes(b'\x00' + payload.upper())
        return ws

    app = aiohttp.web.Application(middlewares=[recorder])
    app.router.add_get('/api/v1/namespaces/{ns}/services/{name}', read_service)
    app.router.add_get('/api/v1/namespaces/{ns}/pods', list_pods)
    app.router.add_get('/api/v1/namespaces/{ns}/pods/{name}', read_pod)
    app.router.add_get('/api/v1/namespaces/{ns}/pods/{name}/log', follow_log)
    app.router.add_get('/api/v1/namespaces/{ns}/pods/{name}/portforward', portforward)
    app.router.add_get('/api/v1/pods', list_pods)
    return app


@pytest.fixture()
def cluster():
    return FakeCluster()


@pytest.fixture()
async def server(cluster):
    server = aiohttp.test_utils.TestServer(build_app(cluster))
    await server.start_server()
    try:
        yield server
    finally:
        cluster.released.set()
        for ws in cluster.sockets:
            await ws.close()
        await server.close()


@pytest.fixture()
def info(server):
    return ConnectionInfo(server=str(server.make_url('/')), default_namespace='default')


@pytest.fixture()
async def context(info):
    async with APIContext(info) as context:
        yield context


@pytest.fixture()
def settings():
    settings = SessionSettings()
    settings.networking.error_backoffs = [0.01, 0.01]
    settings.tunneling.connect_timeout = 5
    settings.reconciliation.coalescing_window = 0.05
    return settings


@pytest.fixture()
async def registry(context):
    registry = SessionRegistry()
    try:
        yield registry
    finally:
        await registry.close()


@pytest.fixture()
def web_service(cluster):
    """ The service & pods from the typical scenario: port 80 targets the named port 8080. """
    cluster.add_service('web', selector={'app': 'web'},
                        ports=[{'name': 'http', 'port': 80, 'targetPort': 'http'}])
    cluster.add_pod('web-pending', labels={'app': 'web'}, phase='Pending',
                    ports=[{'name': 'http', 'containerPort': 8080}])
    cluster.add_pod('web-1', labels={'app': 'web'},
                    ports=[{'name': 'http', 'containerPort': 8080}])
    cluster.add_pod('other', labels={'app': 'other'},
                    ports=[{'name': 'http', 'containerPort': 9090}])


#
# Helpers for the logging checks.
#


@pytest.fixture()
def assert_logs(caplog):
    """
    A function to assert the logs are present (by pattern).

    The listed message patterns MUST be present, in the order specified.
    Some other log messages can also be present, but they are ignored.
    """
    caplog.set_level(logging.DEBUG)

    def assert_logs_fn(patterns, prohibited=[]):
        __traceback_hide__ = True
        remaining_patterns = list(patterns)
        for message in caplog.messages:
            if remaining_patterns and re.search(remaining_patterns[0], message):
                remaining_patterns[:1] = []
            for pattern in prohibited:
                if re.search(pattern, message):
                    raise AssertionError(f"Prohibited log pattern found: {message!r} ~ {pattern!r}")
        if remaining_patterns:
            raise AssertionError(f"Few patterns were missed: {remaining_patterns!r}")

    return assert_logs_fn


@pytest.fixture()
def logger():
    return logging.getLogger('kubetether.tests')
