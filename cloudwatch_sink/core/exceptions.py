"""
Error taxonomy for the CloudWatch log sink.

Fatal errors (ConfigError, ParseError, ConnectivityError, SchemaError,
PartialFailureError) propagate to the processor boundary, where they are
wrapped into a single PipelineError. RecordError and TransactionError are
recovered inside the upsert engine and only surface as diagnostics in
ProcessingResult.errors.
"""

FATAL_ERROR_PREFIX = "Failed to process CloudWatch logs: "


class CloudWatchSinkError(Exception):
    """Base class for all log sink errors"""
    pass


class ConfigError(CloudWatchSinkError):
    """Raised when required configuration is missing or malformed"""
    pass


class ParseError(CloudWatchSinkError):
    """Raised when a delivered payload cannot be decoded"""

    def __init__(self, cause: object):
        super().__init__(f"Failed to parse CloudWatch logs: {cause}")
        self.cause = cause


class ConnectivityError(CloudWatchSinkError):
    """Raised when the pre-flight database probe fails"""

    def __init__(self, message: str = "Failed to connect to database"):
        super().__init__(message)


class SchemaError(CloudWatchSinkError):
    """Raised when the log table or one of its indexes cannot be created"""
    pass


class RecordError(CloudWatchSinkError):
    """A single record failed to insert. Never raised past the upsert engine."""

    def __init__(self, record_id: str, cause: object):
        super().__init__(f"Failed to insert log event {record_id}: {cause}")
        self.record_id = record_id
        self.cause = cause


class TransactionError(CloudWatchSinkError):
    """The batch transaction itself failed and was rolled back"""

    def __init__(self, cause: object):
        super().__init__(f"Transaction failed: {cause}")
        self.cause = cause


class PartialFailureError(CloudWatchSinkError):
    """Raised only when partial failures are configured to escalate"""

    def __init__(self, failed: int, total: int):
        super().__init__(f"{failed} of {total} log events failed to persist")
        self.failed = failed
        self.total = total


class PipelineError(CloudWatchSinkError):
    """The single fatal error surfaced to the invoking runtime"""

    def __init__(self, cause: BaseException):
        super().__init__(f"{FATAL_ERROR_PREFIX}Error: {cause}")
        self.cause = cause
