"""
Resolving the port identifiers to the numeric ports of the pods.

The port identifiers come from the user as is: either as integers,
or as strings, which can contain either numbers or the port names.
The strings are numbers only if they are exactly the canonical form
of an integer: ``"8080"`` is a number, but ``"08080"``, ``"8080.0"``,
``" 8080"``, ``"+8080"`` are not -- they are treated as port names.
"""
import logging

from kubetether._cogs.structs import bodies
from kubetether._core.sessions import errors

logger = logging.getLogger(__name__)

PortIdentifier = int | str


def as_number(port: PortIdentifier) -> int | None:
    """ Interpret the identifier as a number if it is exactly a number. """
    if isinstance(port, bool):
        return None
    if isinstance(port, int):
        return port
    try:
        number = int(port, 10)
    except ValueError:
        return None
    return number if str(number) == port else None


def looks_numeric(port: str) -> bool:
    """ Check if a non-canonical string could have been meant as a number. """
    try:
        float(port)
    except ValueError:
        return False
    else:
        return True


def map_service_port(service: bodies.RawService, port: PortIdentifier) -> PortIdentifier:
    """
    Map a service's port (by number or by name) to its target in the pods.

    If the service declares no such port, the identifier is kept as is,
    and is then resolved against the pod directly.
    """
    number = as_number(port)
    for service_port in (service.get('spec') or {}).get('ports') or []:
        matches_number = number is not None and service_port.get('port') == number
        matches_name = number is None and service_port.get('name') == port
        if matches_number or matches_name:
            return service_port.get('targetPort', service_port.get('port', port))
    return port


def resolve_port(pod: bodies.RawPod, port: PortIdentifier) -> int:
    """
    Resolve a port identifier to a numeric port of the pod's containers.

    Numbers are returned as is, without looking into the pod.
    Names are searched in the containers' ports in the order of declaration,
    and the first match wins.
    """
    number = as_number(port)
    if number is not None:
        return number

    name = str(port)
    ambiguous = looks_numeric(name)
    if ambiguous:
        logger.warning(f"Port {name!r} looks numeric, but is not an integer; "
                       f"resolving it as a port name.")

    for container in (pod.get('spec') or {}).get('containers') or []:
        for container_port in container.get('ports') or []:
            if container_port.get('name') == name and 'containerPort' in container_port:
                return int(container_port['containerPort'])

    pod_name = (pod.get('metadata') or {}).get('name')
    if ambiguous:
        raise errors.AmbiguousPortFormatError(
            f"Port {name!r} is neither an integer nor a named port in pod {pod_name}.")
    raise errors.PortNameUnresolvedError(
        f"Could not resolve named port {name!r} to a numeric port in pod {pod_name}.")
