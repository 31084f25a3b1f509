"""
Errors of the sessions' lifecycle.

Creation-time errors reject the creating call and leave nothing registered:
:class:`NoSelectorError`, :class:`NoRunningPodsError`,
:class:`PortNameUnresolvedError`, :class:`ListenFailedError`,
:class:`StreamOpenFailedError`. Their messages are meant to be shown
to the user as is.

Run-time errors are local to one connection or to one stream, and are only
logged or remembered: :class:`TunnelOpenFailedError`, :class:`StreamRuntimeError`.
"""


class SessionError(Exception):
    """ A base class for all errors of the sessions. """


class NoSelectorError(SessionError):
    """ The service does not exist or has no selector to find its pods. """


class NoRunningPodsError(SessionError):
    """ None of the service's pods is running. """


class PortNameUnresolvedError(SessionError):
    """ No container of the pod declares a port with this name. """


class AmbiguousPortFormatError(PortNameUnresolvedError):
    """ The port looked numeric, but was not a canonical integer, nor a known name. """


class ListenFailedError(SessionError):
    """ The local port cannot be listened on: e.g. it is busy or privileged. """


class TunnelOpenFailedError(SessionError):
    """ The upstream channel for one accepted connection cannot be opened. """


class StreamOpenFailedError(SessionError):
    """ The watch- or log-stream cannot be opened. """


class StreamRuntimeError(SessionError):
    """ The watch- or log-stream has failed after it was opened. """
