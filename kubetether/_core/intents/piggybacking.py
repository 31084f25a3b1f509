"""
Rudimentary reading of the static credentials from the well-known places.

There are no authentication flows here: no auth-providers, no exec-plugins,
no token refreshing. Only the static data is taken from the kubeconfig files
or from the pod's service account, as much as it is needed to connect.

.. seealso::
    :mod:`kubetether._cogs.structs.credentials`.
"""
import logging
import os
from collections.abc import Mapping
from typing import Any

import yaml

from kubetether._cogs.structs import credentials

logger = logging.getLogger(__name__)

# As per https://kubernetes.io/docs/tasks/run-application/access-api-from-pod/
SERVICE_ACCOUNT_DIR = '/var/run/secrets/kubernetes.io/serviceaccount'
DEFAULT_KUBECONFIG = '~/.kube/config'


def has_service_account() -> bool:
    return os.path.exists(os.path.join(SERVICE_ACCOUNT_DIR, 'token'))


def login_with_service_account() -> credentials.ConnectionInfo | None:
    """
    Get the raw credentials of the pod's service account, if running in a cluster.
    """
    token_path = os.path.join(SERVICE_ACCOUNT_DIR, 'token')
    ns_path = os.path.join(SERVICE_ACCOUNT_DIR, 'namespace')
    ca_path = os.path.join(SERVICE_ACCOUNT_DIR, 'ca.crt')

    if not os.path.exists(token_path):
        return None

    with open(token_path, encoding='utf-8') as f:
        token = f.read().strip()

    namespace: str | None = None
    if os.path.exists(ns_path):
        with open(ns_path, encoding='utf-8') as f:
            namespace = f.read().strip()

    host = os.environ.get('KUBERNETES_SERVICE_HOST', 'kubernetes.default.svc')
    port = os.environ.get('KUBERNETES_SERVICE_PORT', '443')
    return credentials.ConnectionInfo(
        server=f'https://{host}:{port}',
        ca_path=ca_path if os.path.exists(ca_path) else None,
        token=token or None,
        default_namespace=namespace or None,
    )


def get_kubeconfig_paths(path: str | None = None) -> list[str]:
    kubeconfig = path or os.environ.get('KUBECONFIG')
    if not kubeconfig and os.path.exists(os.path.expanduser(DEFAULT_KUBECONFIG)):
        kubeconfig = DEFAULT_KUBECONFIG
    if not kubeconfig:
        return []
    paths = [path.strip() for path in kubeconfig.split(os.pathsep)]
    return [os.path.expanduser(path) for path in paths if path]


def _relative_to(base: str, path: str | None) -> str | None:
    # Relative files in kubeconfigs are relative to the kubeconfig itself, not to the cwd.
    if path and not os.path.isabs(path):
        return os.path.join(os.path.dirname(base), path)
    return path


def login_with_kubeconfig(
        path: str | None = None,
        context: str | None = None,
) -> credentials.ConnectionInfo | None:
    """
    Get the raw credentials of a context from the kubeconfig file(s).

    The files are taken either from the explicit path, or from ``$KUBECONFIG``
    (possibly several of them), or from ``~/.kube/config``. As with kubectl,
    the first file to define a context/cluster/user wins.
    If no context is requested explicitly, the current context is used.
    """
    paths = get_kubeconfig_paths(path)
    if not paths:
        return None

    # As prescribed: if the file is absent or non-deserialisable, then fail. The first value wins.
    current_context: str | None = None
    contexts: dict[str, Mapping[str, Any]] = {}
    clusters: dict[str, tuple[str, Mapping[str, Any]]] = {}
    users: dict[str, tuple[str, Mapping[str, Any]]] = {}
    for path in paths:
        try:
            with open(path, encoding='utf-8') as f:
                config = yaml.safe_load(f.read()) or {}
        except (OSError, yaml.YAMLError) as e:
            raise credentials.LoginError(f"Cannot read the kubeconfig {path}: {e}") from e

        if current_context is None:
            current_context = config.get('current-context')
        for item in config.get('contexts') or []:
            contexts.setdefault(item['name'], item.get('context') or {})
        for item in config.get('clusters') or []:
            clusters.setdefault(item['name'], (path, item.get('cluster') or {}))
        for item in config.get('users') or []:
            users.setdefault(item['name'], (path, item.get('user') or {}))

    # Once fully parsed, use the requested or the current context only.
    context_name = context or current_context
    if context_name is None:
        raise credentials.LoginError("Current context is not set in kubeconfigs.")
    if context_name not in contexts:
        raise credentials.LoginError(f"Context {context_name!r} is not found in kubeconfigs.")
    ctx = contexts[context_name]
    try:
        cluster_path, cluster = clusters[ctx['cluster']]
    except KeyError as e:
        raise credentials.LoginError(f"Cluster of context {context_name!r} is not found.") from e
    user_path, user = users.get(ctx.get('user', ''), (cluster_path, {}))

    # Map the retrieved fields into the credentials object.
    logger.debug(f"Using the context {context_name!r} from the kubeconfigs.")
    return credentials.ConnectionInfo(
        server=cluster.get('server'),
        ca_path=_relative_to(cluster_path, cluster.get('certificate-authority')),
        ca_data=cluster.get('certificate-authority-data'),
        insecure=cluster.get('insecure-skip-tls-verify'),
        certificate_path=_relative_to(user_path, user.get('client-certificate')),
        certificate_data=user.get('client-certificate-data'),
        private_key_path=_relative_to(user_path, user.get('client-key')),
        private_key_data=user.get('client-key-data'),
        username=user.get('username'),
        password=user.get('password'),
        token=user.get('token'),
        default_namespace=ctx.get('namespace'),
    )


def login(
        kubeconfig: str | None = None,
        context: str | None = None,
) -> credentials.ConnectionInfo:
    """
    Get the credentials from any available source, or fail.

    The explicitly requested kubeconfig or context take precedence.
    Otherwise, the service account is preferred when running in a cluster.
    """
    info: credentials.ConnectionInfo | None = None
    if kubeconfig is None and context is None and has_service_account():
        info = login_with_service_account()
    if info is None:
        info = login_with_kubeconfig(path=kubeconfig, context=context)
    if info is None:
        raise credentials.LoginError("Cannot find the credentials: neither in-cluster, "
                                     "nor via kubeconfig.")
    return info
