"""
Data model for the CloudWatch log sink.

LogRecord is the canonical unit of persistence. The upsert engine folds
per-record Ok/Err outcomes into a BatchAccumulator, which produces the
ProcessingResult returned to the processor.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from cloudwatch_sink.core.exceptions import RecordError, TransactionError


@dataclass(frozen=True)
class LogRecord:
    """Normalized log event, one per source entry"""
    id: str
    timestamp: int
    message: str
    log_group: str
    log_stream: str
    extracted_fields: Optional[Dict[str, str]] = None


class FailureKind(str, Enum):
    """Failure classes recovered inside the upsert engine"""
    RECORD = "record"
    TRANSACTION = "transaction"


@dataclass(frozen=True)
class Ok:
    processed_count: int


@dataclass(frozen=True)
class Err:
    kind: FailureKind
    detail: str


Outcome = Union[Ok, Err]


@dataclass
class ProcessingResult:
    """Outcome of upserting one batch"""
    success: bool
    processed_count: int
    errors: List[str] = field(default_factory=list)
    rolled_back: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "processedCount": self.processed_count,
            "errors": list(self.errors),
            "rolledBack": self.rolled_back,
        }


@dataclass
class BatchAccumulator:
    """Collects per-record and transaction outcomes in encounter order"""
    processed_count: int = 0
    failures: List[Err] = field(default_factory=list)

    def add(self, outcome: Outcome) -> None:
        if isinstance(outcome, Ok):
            self.processed_count += outcome.processed_count
        else:
            self.failures.append(outcome)

    def record_failed(self, record_id: str, cause: object) -> Err:
        outcome = Err(FailureKind.RECORD, str(RecordError(record_id, cause)))
        self.add(outcome)
        return outcome

    def transaction_failed(self, cause: object) -> Err:
        outcome = Err(FailureKind.TRANSACTION, str(TransactionError(cause)))
        self.add(outcome)
        return outcome

    @property
    def rolled_back(self) -> bool:
        return any(f.kind is FailureKind.TRANSACTION for f in self.failures)

    def to_result(self) -> ProcessingResult:
        errors = [failure.detail for failure in self.failures]
        return ProcessingResult(
            success=not errors,
            processed_count=self.processed_count,
            errors=errors,
            rolled_back=self.rolled_back,
        )


@dataclass(frozen=True)
class InvocationResult:
    """Result handed back to the invoking runtime"""
    request_id: str
    timestamp: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requestId": self.request_id,
            "timestamp": self.timestamp,
            "message": self.message,
        }
