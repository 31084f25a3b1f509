import dataclasses
import functools
from collections.abc import Callable, Collection
from typing import Any

import aiohttp
import click

from kubetether._cogs.clients import errors as api_errors
from kubetether._cogs.configs import configuration
from kubetether._cogs.helpers import versions
from kubetether._cogs.structs import credentials, references
from kubetether._core.actions import loggers
from kubetether._core.intents import piggybacking
from kubetether._core.reactor import running
from kubetether._core.sessions import errors
from kubetether._kits import loops


@dataclasses.dataclass()
class CLIControls:
    """ Controls for the embedded & tested runs, which are impossible to pass via CLI. """
    info: credentials.ConnectionInfo | None = None
    settings: configuration.SessionSettings | None = None


class LogFormatParamType(click.Choice):

    def __init__(self) -> None:
        super().__init__(choices=[v.name.lower() for v in loggers.LogFormat])

    def convert(self, value: Any, param: Any, ctx: Any) -> loggers.LogFormat:
        if isinstance(value, loggers.LogFormat):
            return value
        else:
            name: str = super().convert(value, param, ctx)
            return loggers.LogFormat[name.upper()]


def logging_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """ A decorator to configure logging in all commands the same way."""
    @click.option('-v', '--verbose', is_flag=True)
    @click.option('-d', '--debug', is_flag=True)
    @click.option('-q', '--quiet', is_flag=True)
    @click.option('--log-format', type=LogFormatParamType(), default='full')
    @click.option('--log-refkey', type=str)
    @click.option('--log-prefix/--no-log-prefix', default=None)
    @functools.wraps(fn)  # to preserve other opts/args
    def wrapper(verbose: bool, quiet: bool, debug: bool,
                log_format: loggers.LogFormat = loggers.LogFormat.FULL,
                log_prefix: bool | None = None,
                log_refkey: str | None = None,
                *args: Any, **kwargs: Any) -> Any:
        loggers.configure(debug=debug, verbose=verbose, quiet=quiet,
                          log_format=log_format, log_refkey=log_refkey, log_prefix=log_prefix)
        return fn(*args, **kwargs)

    return wrapper


def connection_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """ A decorator to resolve the credentials in all commands the same way."""
    @click.option('--kubeconfig', type=click.Path(dir_okay=False))
    @click.option('--context', 'context_name', type=str)
    @click.make_pass_decorator(CLIControls, ensure=True)
    @functools.wraps(fn)  # to preserve other opts/args
    def wrapper(__controls: CLIControls,
                kubeconfig: str | None,
                context_name: str | None,
                *args: Any, **kwargs: Any) -> Any:
        try:
            info = (__controls.info if __controls.info is not None else
                    piggybacking.login(kubeconfig=kubeconfig, context=context_name))
        except credentials.LoginError as e:
            raise click.ClickException(str(e)) from e
        settings = (__controls.settings if __controls.settings is not None else
                    configuration.SessionSettings())
        return fn(*args, info=info, settings=settings, **kwargs)

    return wrapper


def run(coro: Any) -> None:
    """ Run the activity, and present its expected failures as CLI errors. """
    try:
        loops.run(coro)
    except (errors.SessionError, api_errors.APIError, aiohttp.ClientError) as e:
        raise click.ClickException(str(e)) from e
    except KeyboardInterrupt:
        pass


@click.version_option(version=versions.version or 'unknown', prog_name='kubetether')
@click.group(name='kubetether', context_settings=dict(
    auto_envvar_prefix='KUBETETHER',
))
def main() -> None:
    pass


@main.command()
@logging_options
@connection_options
@click.option('-l', '--local-port', type=int, default=0, show_default=True)
@click.argument('namespace')
@click.argument('service')
@click.argument('port')
def forward(
        info: credentials.ConnectionInfo,
        settings: configuration.SessionSettings,
        namespace: str,
        service: str,
        port: str,
        local_port: int,
) -> None:
    """ Forward a local port to a service's pod until interrupted. """
    run(running.forward(
        info=info,
        settings=settings,
        namespace=namespace,
        service=service,
        port=port,
        local_port=local_port,
        output=click.echo,
    ))


@main.command()
@logging_options
@connection_options
@click.option('-A', '--all-namespaces', 'clusterwide', is_flag=True)
@click.option('-n', '--namespace', 'namespaces', multiple=True)
def pods(
        info: credentials.ConnectionInfo,
        settings: configuration.SessionSettings,
        namespaces: Collection[str],
        clusterwide: bool,
) -> None:
    """ Watch the pods and print their list on every change. """
    if namespaces and clusterwide:
        raise click.UsageError("Either --namespace or --all-namespaces can be used, not both.")
    if clusterwide:
        namespaces = [references.ALL_NAMESPACES]
    elif not namespaces and info.default_namespace:
        namespaces = [info.default_namespace]
    run(running.watch_pods(
        info=info,
        settings=settings,
        namespaces=namespaces,
        output=click.echo,
    ))


@main.command()
@logging_options
@connection_options
@click.option('-c', '--container', type=str, default=None)
@click.argument('namespace')
@click.argument('pod')
def logs(
        info: credentials.ConnectionInfo,
        settings: configuration.SessionSettings,
        namespace: str,
        pod: str,
        container: str | None,
) -> None:
    """ Follow the logs of a container until it exits or until interrupted. """
    run(running.follow_logs(
        info=info,
        settings=settings,
        namespace=namespace,
        pod=pod,
        container=container,
        output=functools.partial(click.echo, nl=False),
    ))
