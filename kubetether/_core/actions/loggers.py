"""
Per-session logging: every message of a session carries the session's identity.

The sessions log to the same named logger, but via the adapters that attach
a reference to the session (its kind & id) to every record. The reference
is then rendered either as a ``[kind id]`` prefix in the text formats,
or as a separate field in the JSON format (for log parsers).
"""
import copy
import enum
import logging
from collections.abc import MutableMapping
from typing import TYPE_CHECKING, Any, TextIO

from pythonjsonlogger.core import RESERVED_ATTRS as _pjl_RESERVED_ATTRS
from pythonjsonlogger.json import JsonFormatter as _pjl_JsonFormatter

from kubetether._cogs.helpers import typedefs

logger = logging.getLogger('kubetether.sessions')

# A key for session references in JSON logs, as seen by the log parsers.
DEFAULT_JSON_REFKEY = 'session'


class LogFormat(enum.Enum):
    """ Log formats, as specified on CLI. """
    PLAIN = '%(message)s'
    FULL = '[%(asctime)s] %(name)-20.20s [%(levelname)-8.8s] %(message)s'
    JSON = '-json-'  # not used for formatting, only for detection


class SessionFormatter(logging.Formatter):
    pass


class SessionTextFormatter(SessionFormatter, logging.Formatter):
    pass


class SessionJsonFormatter(SessionFormatter, _pjl_JsonFormatter):
    def __init__(
            self,
            *args: Any,
            refkey: str | None = None,
            **kwargs: Any,
    ) -> None:
        # Avoid type checking, as the args are not in the parent consructor.
        reserved_attrs = kwargs.pop('reserved_attrs', _pjl_RESERVED_ATTRS)
        reserved_attrs = set(reserved_attrs)
        reserved_attrs |= {'session_ref'}
        kwargs |= dict(reserved_attrs=reserved_attrs)
        kwargs.setdefault('timestamp', True)
        super().__init__(*args, **kwargs)
        self._refkey: str = refkey or DEFAULT_JSON_REFKEY

    def add_fields(
            self,
            log_record: dict[str, object],
            record: logging.LogRecord,
            message_dict: dict[str, object],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if self._refkey and hasattr(record, 'session_ref'):
            ref = getattr(record, 'session_ref')
            log_record[self._refkey] = ref

        if 'severity' not in log_record:
            log_record['severity'] = (
                "debug" if record.levelno <= logging.DEBUG else
                "info" if record.levelno <= logging.INFO else
                "warn" if record.levelno <= logging.WARNING else
                "error" if record.levelno <= logging.ERROR else
                "fatal")


class SessionPrefixingMixin(SessionFormatter):
    def format(self, record: logging.LogRecord) -> str:
        if hasattr(record, 'session_ref'):
            ref = getattr(record, 'session_ref')
            kind = ref.get('kind', '')
            id = ref.get('id', '')
            prefix = f"[{kind} {id}]" if kind else f"[{id}]"
            record = copy.copy(record)  # shallow
            record.msg = f"{prefix} {record.msg}"
        return super().format(record)


class SessionPrefixingTextFormatter(SessionPrefixingMixin, SessionTextFormatter):
    pass


class SessionPrefixingJsonFormatter(SessionPrefixingMixin, SessionJsonFormatter):
    pass


class SessionLogger(typedefs.LoggerAdapter):
    """
    A logger/adapter to carry the session identifiers for formatting.

    Constructed once per session (a tunnel, a watch, a log-stream),
    and passed down to all of its tasks and connections.
    """

    def __init__(self, *, kind: str, id: str) -> None:
        super().__init__(logger, dict(
            session_ref=dict(
                kind=kind,
                id=id,
            ),
        ))

    def process(
            self,
            msg: str,
            kwargs: MutableMapping[str, Any],
    ) -> tuple[str, MutableMapping[str, Any]]:
        # Native logging overwrites the message's extra with the adapter's extra.
        # We merge them, so that both message's & adapter's extras are available.
        kwargs["extra"] = (self.extra or {}) | kwargs.get('extra', {})
        return msg, kwargs


# Used to identify and remove our own handlers on re-runs in CLI tests. Every CLI test injects
# its own handler, but the previous handlers of preceding tests can have the stream closed,
# since they stream into an stderr interceptor of Click's runner, not to the real stderr.
if TYPE_CHECKING:
    class _KubeTetherStreamHandler(logging.StreamHandler[TextIO]):
        pass
else:
    class _KubeTetherStreamHandler(logging.StreamHandler):
        pass


def configure(
        debug: bool | None = None,
        verbose: bool | None = None,
        quiet: bool | None = None,
        log_format: LogFormat = LogFormat.FULL,
        log_prefix: bool | None = False,
        log_refkey: str | None = None,
) -> None:
    log_level = 'DEBUG' if debug or verbose else 'WARNING' if quiet else 'INFO'
    formatter = make_formatter(log_format=log_format, log_prefix=log_prefix, log_refkey=log_refkey)
    handler = _KubeTetherStreamHandler()
    handler.setFormatter(formatter)
    logger = logging.getLogger()
    logger.handlers[:] = [h for h in logger.handlers if not isinstance(h, _KubeTetherStreamHandler)]
    logger.addHandler(handler)
    logger.setLevel(log_level)

    # Prevent the low-level logging unless in the debug mode. Keep only the sessions' messages.
    # For no-propagation loggers, add a dummy null handler to prevent printing the messages.
    for name in ['asyncio', 'aiohttp']:
        logger = logging.getLogger(name)
        logger.propagate = bool(debug)
        if not debug:
            logger.handlers[:] = [logging.NullHandler()]


def make_formatter(
        log_format: LogFormat | str = LogFormat.FULL,
        log_prefix: bool | None = False,
        log_refkey: str | None = None,
) -> SessionFormatter:
    log_prefix = log_prefix if log_prefix is not None else bool(log_format is not LogFormat.JSON)
    match log_format:
        case LogFormat.JSON:
            if log_prefix:
                return SessionPrefixingJsonFormatter(refkey=log_refkey)
            else:
                return SessionJsonFormatter(refkey=log_refkey)
        case LogFormat():
            if log_prefix:
                return SessionPrefixingTextFormatter(log_format.value)
            else:
                return SessionTextFormatter(log_format.value)
        case str():
            if log_prefix:
                return SessionPrefixingTextFormatter(log_format)
            else:
                return SessionTextFormatter(log_format)
        case _:
            raise ValueError(f"Unsupported log format: {log_format!r}")
