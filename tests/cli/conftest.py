import functools
import logging

import click.testing
import pytest

from kubetether._cogs.structs.credentials import ConnectionInfo
from kubetether.cli import CLIControls, main


@pytest.fixture(autouse=True)
def _restore_logging():
    # The commands configure the global logging; do not let it leak to other tests.
    names = ['', 'asyncio', 'aiohttp']
    saved = {name: (logging.getLogger(name).level,
                    logging.getLogger(name).propagate,
                    logging.getLogger(name).handlers[:]) for name in names}
    yield
    for name, (level, propagate, handlers) in saved.items():
        logging.getLogger(name).setLevel(level)
        logging.getLogger(name).propagate = propagate
        logging.getLogger(name).handlers[:] = handlers


@pytest.fixture()
def runner():
    return click.testing.CliRunner()


@pytest.fixture()
def controls(settings):
    info = ConnectionInfo(server='https://localhost:6443', default_namespace='default')
    return CLIControls(info=info, settings=settings)


@pytest.fixture()
def invoke(runner, controls):
    return functools.partial(runner.invoke, main, obj=controls)


@pytest.fixture()
def login(mocker):
    return mocker.patch('kubetether._core.intents.piggybacking.login')


@pytest.fixture()
def real_forward(mocker):
    return mocker.patch('kubetether._core.reactor.running.forward')


@pytest.fixture()
def real_watch_pods(mocker):
    return mocker.patch('kubetether._core.reactor.running.watch_pods')


@pytest.fixture()
def real_follow_logs(mocker):
    return mocker.patch('kubetether._core.reactor.running.follow_logs')
