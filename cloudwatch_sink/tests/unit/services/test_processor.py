"""
Tests for the ingestion pipeline orchestrator.

The database is a MagicMock with LogDatabase's interface; payloads are real
gzip/base64 encoded CloudWatch documents.
"""

from unittest.mock import MagicMock

import pytest

from cloudwatch_sink.core.config import PipelineConfig, Settings
from cloudwatch_sink.core.database import LogDatabase
from cloudwatch_sink.core.exceptions import (
    ConfigError,
    ConnectivityError,
    ParseError,
    PartialFailureError,
    PipelineError,
    SchemaError,
)
from cloudwatch_sink.services.models import ProcessingResult
from cloudwatch_sink.services.processor import LogProcessor, PipelineContext


@pytest.fixture
def database():
    db = MagicMock(spec=LogDatabase)
    db.test_connection.return_value = True
    db.upsert.side_effect = lambda records: ProcessingResult(
        success=True, processed_count=len(records), errors=[]
    )
    return db


@pytest.fixture
def context(settings, database):
    return PipelineContext(settings=settings, database=database)


@pytest.fixture
def processor(context):
    return LogProcessor(context)


class TestLogProcessor:
    """Test cases for LogProcessor.process"""

    def test_runs_stages_in_order(self, processor, database, make_document, make_event, make_log_events):
        event = make_event(make_document(make_log_events(3)))

        result = processor.process(event, "req-123")

        assert [c[0] for c in database.method_calls] == ["test_connection", "ensure_schema", "upsert"]
        assert result.request_id == "req-123"
        assert result.message == "Successfully processed 3 out of 3 log events"
        assert isinstance(result.timestamp, int)

    def test_passes_normalized_records_to_upsert(self, processor, database, make_document, make_event):
        event = make_event(make_document([{"id": "1", "timestamp": 1704067200000, "message": "Test log message"}]))

        processor.process(event, "req-1")

        (records,), _ = database.upsert.call_args
        assert [r.id for r in records] == ["/aws/lambda/test-function-2024/01/01/[$LATEST]abcdef-1704067200000-1"]

    def test_probe_failure_is_fatal(self, processor, database, make_document, make_event, make_log_events):
        database.test_connection.return_value = False

        with pytest.raises(PipelineError) as exc_info:
            processor.process(make_event(make_document(make_log_events(1))), "req-1")

        assert str(exc_info.value) == "Failed to process CloudWatch logs: Error: Failed to connect to database"
        assert isinstance(exc_info.value.__cause__, ConnectivityError)
        database.ensure_schema.assert_not_called()
        database.upsert.assert_not_called()

    def test_schema_failure_is_fatal(self, processor, database, make_document, make_event, make_log_events):
        database.ensure_schema.side_effect = SchemaError("permission denied for schema public")

        with pytest.raises(PipelineError, match="permission denied for schema public"):
            processor.process(make_event(make_document(make_log_events(1))), "req-1")

        database.upsert.assert_not_called()

    def test_parse_failure_is_fatal(self, processor, database):
        with pytest.raises(PipelineError) as exc_info:
            processor.process({"awslogs": {"data": "%%%"}}, "req-1")

        assert str(exc_info.value).startswith("Failed to process CloudWatch logs: Error: Failed to parse CloudWatch logs: ")
        assert isinstance(exc_info.value.__cause__, ParseError)
        database.upsert.assert_not_called()

    def test_missing_awslogs_is_fatal(self, processor):
        with pytest.raises(PipelineError) as exc_info:
            processor.process({"Records": []}, "req-1")

        assert isinstance(exc_info.value.__cause__, ParseError)

    def test_partial_failure_still_succeeds(self, processor, database, make_document, make_event, make_log_events):
        database.upsert.side_effect = None
        database.upsert.return_value = ProcessingResult(
            success=False, processed_count=3, errors=["Failed to insert log event x: bad"]
        )

        result = processor.process(make_event(make_document(make_log_events(4))), "req-1")

        assert result.message == "Successfully processed 3 out of 4 log events"

    def test_partial_failure_escalates_when_configured(
        self, db_config, database, monkeypatch, make_document, make_event, make_log_events
    ):
        monkeypatch.setenv("ESCALATE_PARTIAL_FAILURES", "true")
        context = PipelineContext(settings=Settings(db_config, PipelineConfig()), database=database)
        database.upsert.side_effect = None
        database.upsert.return_value = ProcessingResult(
            success=False, processed_count=3, errors=["Failed to insert log event x: bad"]
        )

        with pytest.raises(PipelineError) as exc_info:
            LogProcessor(context).process(make_event(make_document(make_log_events(4))), "req-1")

        assert isinstance(exc_info.value.__cause__, PartialFailureError)
        assert exc_info.value.__cause__.failed == 1

    def test_empty_batch(self, processor, make_document, make_event):
        result = processor.process(make_event(make_document([])), "req-1")

        assert result.message == "Successfully processed 0 out of 0 log events"

    def test_process_payload(self, processor, make_document, make_event, make_log_events):
        payload = make_event(make_document(make_log_events(2)))["awslogs"]["data"]

        result = processor.process_payload(payload, "req-1")

        assert result.message == "Successfully processed 2 out of 2 log events"


class TestContextProvider:
    """Test cases for lazily built contexts"""

    def test_config_error_is_wrapped(self, db_env, monkeypatch, make_document, make_event, make_log_events):
        monkeypatch.delenv("DB_HOST")
        monkeypatch.delenv("DB_PORT")
        processor = LogProcessor(PipelineContext.from_environment)

        with pytest.raises(PipelineError) as exc_info:
            processor.process(make_event(make_document(make_log_events(1))), "req-1")

        assert str(exc_info.value) == (
            "Failed to process CloudWatch logs: Error: "
            "Missing required environment variables: DB_HOST, DB_PORT"
        )
        assert isinstance(exc_info.value.__cause__, ConfigError)

    def test_provider_called_per_invocation(self, context, make_document, make_event):
        provider = MagicMock(return_value=context)
        processor = LogProcessor(provider)
        event = make_event(make_document([]))

        processor.process(event, "req-1")
        processor.process(event, "req-2")

        assert provider.call_count == 2

    def test_from_environment_builds_database(self, db_env, monkeypatch):
        monkeypatch.setenv("DB_POOL_MAX", "3")

        context = PipelineContext.from_environment()

        assert isinstance(context.database, LogDatabase)
        assert context.database.pool.max_connections == 3
        assert context.database.pool.connect_timeout == 2
        assert context.settings.database.host == "db.internal"
