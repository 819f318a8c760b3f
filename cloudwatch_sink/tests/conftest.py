"""
Shared fixtures for the CloudWatch log sink tests.

Nothing here needs a live PostgreSQL server: connections are MagicMocks and
the pool is a small in-memory stand-in that counts acquisitions.
"""

from contextlib import contextmanager
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from cloudwatch_sink.core.config import DatabaseConfig, PipelineConfig, Settings
from cloudwatch_sink.services.normalizer import encode_payload

DB_ENV = {
    "DB_HOST": "db.internal",
    "DB_PORT": "5432",
    "DB_NAME": "cloudwatch",
    "DB_USER": "cloudwatch_app",
    "DB_PASSWORD": "s3cret-password",
}

OPTIONAL_ENV = (
    "DB_SSL",
    "DB_POOL_MAX",
    "DB_CONNECT_TIMEOUT",
    "LOG_LEVEL",
    "ESCALATE_PARTIAL_FAILURES",
)

LOG_GROUP = "/aws/lambda/test-function"
LOG_STREAM = "2024/01/01/[$LATEST]abcdef"


class FakePool:
    """Stands in for ConnectionPool; hands out one shared mock connection"""

    def __init__(self, connection, acquire_error: Optional[Exception] = None):
        self.connection = connection
        self.acquire_error = acquire_error
        self.acquired = 0
        self.released = 0
        self.closed = False

    @contextmanager
    def get_connection(self):
        if self.acquire_error is not None:
            raise self.acquire_error
        self.acquired += 1
        try:
            yield self.connection
        finally:
            self.released += 1

    def close(self):
        self.closed = True


@pytest.fixture
def db_env(monkeypatch):
    """Mandatory database variables set, optional ones cleared"""
    for name, value in DB_ENV.items():
        monkeypatch.setenv(name, value)
    for name in OPTIONAL_ENV:
        monkeypatch.delenv(name, raising=False)
    return dict(DB_ENV)


@pytest.fixture
def clean_env(monkeypatch):
    """No database variables at all"""
    for name in list(DB_ENV) + list(OPTIONAL_ENV):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def db_config(db_env) -> DatabaseConfig:
    return DatabaseConfig()


@pytest.fixture
def settings(db_config) -> Settings:
    return Settings(database=db_config, pipeline=PipelineConfig())


@pytest.fixture
def cursor():
    return MagicMock(name="cursor")


@pytest.fixture
def connection(cursor):
    conn = MagicMock(name="connection")
    conn.cursor.return_value.__enter__.return_value = cursor
    conn.closed = 0
    return conn


@pytest.fixture
def fake_pool(connection) -> FakePool:
    return FakePool(connection)


def make_log_events(count: int, start: int = 1704067200000) -> List[Dict[str, Any]]:
    return [
        {"id": str(i + 1), "timestamp": start + i, "message": f"Test log message {i + 1}"}
        for i in range(count)
    ]


def make_document(
    log_events: List[Dict[str, Any]],
    log_group: str = LOG_GROUP,
    log_stream: str = LOG_STREAM,
) -> Dict[str, Any]:
    return {
        "messageType": "DATA_MESSAGE",
        "owner": "123456789012",
        "logGroup": log_group,
        "logStream": log_stream,
        "subscriptionFilters": ["test-filter"],
        "logEvents": log_events,
    }


def make_event(document: Dict[str, Any]) -> Dict[str, Any]:
    return {"awslogs": {"data": encode_payload(document)}}


@pytest.fixture(name="make_document")
def make_document_fixture():
    return make_document


@pytest.fixture(name="make_event")
def make_event_fixture():
    return make_event


@pytest.fixture(name="make_log_events")
def make_log_events_fixture():
    return make_log_events
