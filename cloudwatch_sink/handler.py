"""
AWS Lambda entry point for the CloudWatch log sink.

The PipelineContext (settings plus the database connection pool) is built
on the first invocation and reused by every later invocation handled by the
same process.

Usage:
    Configure the function handler as ``cloudwatch_sink.handler.handler``.
"""

import threading
from typing import Any, Dict, Mapping, Optional

from cloudwatch_sink.services.processor import LogProcessor, PipelineContext

_context: Optional[PipelineContext] = None
_context_lock = threading.Lock()


def get_pipeline_context() -> PipelineContext:
    """Return the process-wide context, creating it on first use"""
    global _context

    if _context is None:
        with _context_lock:
            if _context is None:
                _context = PipelineContext.from_environment()
    return _context


def set_pipeline_context(context: Optional[PipelineContext]) -> None:
    """Install a prebuilt context, e.g. one wired to a fake database in tests"""
    global _context
    with _context_lock:
        _context = context


def reset_pipeline_context() -> None:
    """Drop the process-wide context and close its connection pool"""
    global _context
    with _context_lock:
        if _context is not None:
            _context.close()
        _context = None


def handler(event: Mapping[str, Any], context: Any) -> Dict[str, Any]:
    request_id = getattr(context, "aws_request_id", None) or "local"
    processor = LogProcessor(get_pipeline_context)
    return processor.process(event, request_id).to_dict()
