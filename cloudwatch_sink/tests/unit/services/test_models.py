"""
Tests for the batch accumulator and result types.
"""

from cloudwatch_sink.services.models import (
    BatchAccumulator,
    Err,
    FailureKind,
    InvocationResult,
    Ok,
    ProcessingResult,
)


class TestBatchAccumulator:
    """Test cases for BatchAccumulator"""

    def test_empty_accumulator_is_success(self):
        result = BatchAccumulator().to_result()

        assert result == ProcessingResult(success=True, processed_count=0, errors=[], rolled_back=False)

    def test_folds_outcomes_in_order(self):
        acc = BatchAccumulator()
        acc.add(Ok(1))
        acc.record_failed("id-2", "bad value")
        acc.add(Ok(1))
        acc.record_failed("id-4", ValueError("worse value"))

        result = acc.to_result()

        assert result.processed_count == 2
        assert result.success is False
        assert result.rolled_back is False
        assert result.errors == [
            "Failed to insert log event id-2: bad value",
            "Failed to insert log event id-4: worse value",
        ]

    def test_transaction_failure_marks_rollback(self):
        acc = BatchAccumulator()
        acc.add(Ok(1))
        failure = acc.transaction_failed("connection reset")

        assert failure == Err(FailureKind.TRANSACTION, "Transaction failed: connection reset")
        result = acc.to_result()
        assert result.rolled_back is True
        assert result.processed_count == 1
        assert result.errors == ["Transaction failed: connection reset"]


class TestResultSerialization:
    def test_processing_result_to_dict(self):
        result = ProcessingResult(success=False, processed_count=3, errors=["e"])

        assert result.to_dict() == {
            "success": False,
            "processedCount": 3,
            "errors": ["e"],
            "rolledBack": False,
        }

    def test_invocation_result_to_dict(self):
        result = InvocationResult(request_id="req-1", timestamp=1704067200000, message="ok")

        assert result.to_dict() == {"requestId": "req-1", "timestamp": 1704067200000, "message": "ok"}
