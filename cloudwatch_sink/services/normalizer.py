"""
CloudWatch Logs payload normalizer.

A subscription delivery carries its log events as base64 text wrapping a
gzip stream wrapping a UTF-8 JSON document:

    {
        "messageType": "DATA_MESSAGE",
        "owner": "123456789012",
        "logGroup": "/aws/lambda/example",
        "logStream": "2024/01/01/[$LATEST]abcdef",
        "subscriptionFilters": ["filter"],
        "logEvents": [{"id": "...", "timestamp": 1704067200000, "message": "..."}]
    }

Decoding is all-or-nothing: if any stage fails the whole batch is rejected
with a ParseError, since a corrupt envelope cannot be partially trusted.

Record ids are "<logGroup>-<logStream>-<timestamp>-<eventId>". Stored rows
are keyed on this exact format, so it must not change.
"""

import base64
import binascii
import gzip
import json
import zlib
from typing import Any, Dict, List, Mapping, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError

from cloudwatch_sink.core.exceptions import ParseError
from cloudwatch_sink.services.models import LogRecord

logger = structlog.get_logger(__name__)

# Accept both gzip and zlib framed deflate streams
_DECOMPRESS_WBITS = zlib.MAX_WBITS | 32


class CloudWatchLogEvent(BaseModel):
    """One entry of logEvents"""
    id: str
    timestamp: int
    message: str
    extracted_fields: Optional[Dict[str, Optional[str]]] = Field(default=None, alias="extractedFields")


class CloudWatchLogsData(BaseModel):
    """Decoded subscription delivery"""
    message_type: Optional[str] = Field(default=None, alias="messageType")
    owner: Optional[str] = None
    log_group: str = Field(alias="logGroup")
    log_stream: str = Field(alias="logStream")
    subscription_filters: List[str] = Field(default_factory=list, alias="subscriptionFilters")
    log_events: List[CloudWatchLogEvent] = Field(alias="logEvents")


def derive_record_id(log_group: str, log_stream: str, timestamp: int, event_id: str) -> str:
    return f"{log_group}-{log_stream}-{timestamp}-{event_id}"


def filter_extracted_fields(fields: Optional[Mapping[str, Optional[str]]]) -> Optional[Dict[str, str]]:
    """Drop keys without a value; None stays None, an empty mapping stays empty"""
    if fields is None:
        return None
    return {key: value for key, value in fields.items() if value is not None}


def build_log_records(document: Any) -> List[LogRecord]:
    """
    Map a decoded subscription document to LogRecords.

    Args:
        document: The parsed JSON document (a dict) or an already validated
            CloudWatchLogsData instance

    Returns:
        One LogRecord per log event, in delivery order

    Raises:
        ParseError: If the document does not have the expected shape
    """
    if isinstance(document, CloudWatchLogsData):
        data = document
    else:
        try:
            data = CloudWatchLogsData.model_validate(document)
        except ValidationError as e:
            raise ParseError(e) from e

    return [
        LogRecord(
            id=derive_record_id(data.log_group, data.log_stream, event.timestamp, event.id),
            timestamp=event.timestamp,
            message=event.message,
            log_group=data.log_group,
            log_stream=data.log_stream,
            extracted_fields=filter_extracted_fields(event.extracted_fields),
        )
        for event in data.log_events
    ]


def _decompress(compressed: bytes) -> bytes:
    """Decompress exactly one stream; trailing or missing bytes are an error"""
    decompressor = zlib.decompressobj(_DECOMPRESS_WBITS)
    uncompressed = decompressor.decompress(compressed) + decompressor.flush()
    if not decompressor.eof:
        raise zlib.error("compressed stream is truncated")
    if decompressor.unused_data:
        raise zlib.error(f"{len(decompressor.unused_data)} unexpected bytes after compressed stream")
    return uncompressed


def decode_payload(raw_payload: str) -> Any:
    """base64 -> decompress -> UTF-8 -> JSON"""
    compressed = base64.b64decode(raw_payload, validate=True)
    uncompressed = _decompress(compressed)
    return json.loads(uncompressed.decode("utf-8"))


def normalize(raw_payload: str) -> List[LogRecord]:
    """
    Decode a subscription payload into normalized log records.

    Raises:
        ParseError: Wrapping whichever decoding stage failed
    """
    try:
        document = decode_payload(raw_payload)
        return build_log_records(document)
    except ParseError as e:
        logger.error("Failed to parse CloudWatch logs payload", error=str(e))
        raise
    except (binascii.Error, zlib.error, UnicodeDecodeError, ValueError, TypeError) as e:
        logger.error("Failed to parse CloudWatch logs payload", error=str(e), stage=type(e).__name__)
        raise ParseError(e) from e


def extract_payload(event: Mapping[str, Any]) -> str:
    """Pull the awslogs.data string out of an invocation event"""
    try:
        data = event["awslogs"]["data"]
    except (KeyError, TypeError) as e:
        raise ParseError(f"event does not carry awslogs.data ({e!r})") from e
    if not isinstance(data, str):
        raise ParseError(f"awslogs.data must be a string, got {type(data).__name__}")
    return data


def encode_payload(document: Mapping[str, Any]) -> str:
    """Inverse of decode_payload, for building local test events"""
    compressed = gzip.compress(json.dumps(document).encode("utf-8"))
    return base64.b64encode(compressed).decode("ascii")
