"""
CloudWatch Logs ingestion pipeline.

One call to LogProcessor.process() handles one delivered batch:

    probe connectivity -> ensure schema -> normalize payload -> upsert records

Redelivery policy: any failure of a whole stage (configuration, connectivity,
schema, payload parsing) is raised as a single PipelineError so the invoking
runtime retries the batch. Per-record failures are logged and the invocation
still succeeds, since redelivering would reprocess records that were already
stored. PipelineConfig.escalate_partial_failures turns the latter into a
fatal error as well.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Union

import structlog

from cloudwatch_sink.core.config import Settings
from cloudwatch_sink.core.database import LogDatabase
from cloudwatch_sink.core.exceptions import ConnectivityError, PartialFailureError, PipelineError
from cloudwatch_sink.core.log_config import configure_logging
from cloudwatch_sink.services.models import InvocationResult
from cloudwatch_sink.services.normalizer import extract_payload, normalize

logger = structlog.get_logger(__name__)


@dataclass
class PipelineContext:
    """Process-lifetime state shared by every invocation"""
    settings: Settings
    database: LogDatabase

    @classmethod
    def from_environment(cls) -> "PipelineContext":
        """
        Build the context from environment variables.

        Configuration is validated before anything else so a missing
        variable fails without attempting a connection.
        """
        settings = Settings.from_environment()
        configure_logging(settings.pipeline.log_level)
        database = LogDatabase(
            settings.database,
            max_connections=settings.pipeline.pool_max_connections,
            connect_timeout=settings.pipeline.connect_timeout_seconds,
        )
        logger.info("Pipeline context created", config=settings.to_dict())
        return cls(settings=settings, database=database)

    def close(self) -> None:
        self.database.close()


ContextProvider = Callable[[], PipelineContext]


def _now_ms() -> int:
    return int(time.time() * 1000)


class LogProcessor:
    """
    Runs the ingestion pipeline for one batch at a time.

    The context may be given directly or as a zero-argument provider; a
    provider is called inside the error boundary, so configuration errors
    raised while building the context are wrapped like any other stage.
    """

    def __init__(self, context: Union[PipelineContext, ContextProvider]):
        if isinstance(context, PipelineContext):
            self._provide_context: ContextProvider = lambda: context
        else:
            self._provide_context = context

    def process(self, event: Mapping[str, Any], request_id: str) -> InvocationResult:
        """
        Process one invocation event of shape {"awslogs": {"data": ...}}.

        Raises:
            PipelineError: On any fatal stage failure
        """
        return self._run(lambda: extract_payload(event), request_id)

    def process_payload(self, raw_payload: str, request_id: str) -> InvocationResult:
        """Run the pipeline over an encoded awslogs.data payload"""
        return self._run(lambda: raw_payload, request_id)

    def _run(self, read_payload: Callable[[], str], request_id: str) -> InvocationResult:
        log = logger.bind(request_id=request_id)
        log.info("Processing CloudWatch logs event")
        stage = "context"

        try:
            context = self._provide_context()
            db = context.database

            stage = "probe"
            if not db.test_connection():
                raise ConnectivityError("Failed to connect to database")

            stage = "schema"
            db.ensure_schema()

            stage = "normalize"
            records = normalize(read_payload())
            log.info("Parsed log events", count=len(records))

            stage = "upsert"
            result = db.upsert(records)
            log.info("Processing result", **result.to_dict())

            if not result.success:
                log.error("Some errors occurred during processing", errors=result.errors)
                if context.settings.pipeline.escalate_partial_failures:
                    raise PartialFailureError(len(records) - result.processed_count, len(records))

            return InvocationResult(
                request_id=request_id,
                timestamp=_now_ms(),
                message=f"Successfully processed {result.processed_count} out of {len(records)} log events",
            )

        except Exception as e:
            log.error("Error processing CloudWatch logs", error=str(e), stage=stage, exc_info=True)
            raise PipelineError(e) from e
