import json
import logging

import pytest

from kubetether._core.actions.loggers import LogFormat, SessionJsonFormatter, SessionLogger, \
                                             SessionPrefixingJsonFormatter, \
                                             SessionPrefixingTextFormatter, SessionTextFormatter, \
                                             make_formatter


def make_record(msg: str = 'hello', level: int = logging.INFO, **extra) -> logging.LogRecord:
    record = logging.LogRecord('kubetether.sessions', level, __file__, 1, msg, (), None)
    record.__dict__.update(extra)
    return record


SESSION_REF = dict(kind='forward', id='default-web-8080')


def test_text_without_prefix():
    formatter = SessionTextFormatter('%(message)s')
    assert formatter.format(make_record(session_ref=SESSION_REF)) == 'hello'


def test_text_with_prefix():
    formatter = SessionPrefixingTextFormatter('%(message)s')
    record = make_record(session_ref=SESSION_REF)
    assert formatter.format(record) == '[forward default-web-8080] hello'
    assert record.msg == 'hello'  # not modified in place


def test_text_with_prefix_without_kind():
    formatter = SessionPrefixingTextFormatter('%(message)s')
    assert formatter.format(make_record(session_ref=dict(id='x'))) == '[x] hello'


def test_text_with_prefix_for_non_session_records():
    formatter = SessionPrefixingTextFormatter('%(message)s')
    assert formatter.format(make_record()) == 'hello'


def test_json_with_the_default_refkey():
    formatter = SessionJsonFormatter()
    data = json.loads(formatter.format(make_record(session_ref=SESSION_REF)))
    assert data['message'] == 'hello'
    assert data['session'] == SESSION_REF
    assert data['severity'] == 'info'
    assert 'timestamp' in data
    assert 'session_ref' not in data


def test_json_with_a_custom_refkey():
    formatter = SessionJsonFormatter(refkey='k8s')
    data = json.loads(formatter.format(make_record(session_ref=SESSION_REF)))
    assert data['k8s'] == SESSION_REF
    assert 'session' not in data


def test_json_with_prefix():
    formatter = SessionPrefixingJsonFormatter()
    data = json.loads(formatter.format(make_record(session_ref=SESSION_REF)))
    assert data['message'] == '[forward default-web-8080] hello'
    assert data['session'] == SESSION_REF


@pytest.mark.parametrize('level, severity', [
    (logging.DEBUG, 'debug'),
    (logging.INFO, 'info'),
    (logging.WARNING, 'warn'),
    (logging.ERROR, 'error'),
    (logging.CRITICAL, 'fatal'),
])
def test_json_severities(level, severity):
    formatter = SessionJsonFormatter()
    data = json.loads(formatter.format(make_record(level=level)))
    assert data['severity'] == severity


@pytest.mark.parametrize('log_format, log_prefix, cls', [
    (LogFormat.PLAIN, False, SessionTextFormatter),
    (LogFormat.FULL, None, SessionPrefixingTextFormatter),
    (LogFormat.JSON, None, SessionJsonFormatter),
    (LogFormat.JSON, True, SessionPrefixingJsonFormatter),
    ('%(levelname)s %(message)s', False, SessionTextFormatter),
])
def test_formatter_factory(log_format, log_prefix, cls):
    assert type(make_formatter(log_format=log_format, log_prefix=log_prefix)) is cls


def test_session_logger_attaches_the_reference(caplog):
    caplog.set_level(logging.DEBUG)
    session_logger = SessionLogger(kind='watch', id='pods')
    session_logger.info("hello", extra=dict(other='value'))
    assert caplog.records[0].name == 'kubetether.sessions'
    assert caplog.records[0].session_ref == dict(kind='watch', id='pods')
    assert caplog.records[0].other == 'value'
    assert caplog.messages == ['hello']
