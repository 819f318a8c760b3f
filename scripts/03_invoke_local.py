#!/usr/bin/env python3
"""
Invoke the handler locally with a synthetic CloudWatch Logs delivery.

Usage:
    python scripts/03_invoke_local.py --events 25
    python scripts/03_invoke_local.py --file messages.txt --log-group /aws/lambda/my-fn

Each line of --file becomes one log event. Running the same command twice
demonstrates that redelivery does not create duplicate rows: event ids and
timestamps are derived from --start, not from the wall clock.
"""

import argparse
import json
import sys
import uuid
from pathlib import Path
from types import SimpleNamespace

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from cloudwatch_sink.core.exceptions import PipelineError
from cloudwatch_sink.handler import handler, reset_pipeline_context
from cloudwatch_sink.services.normalizer import encode_payload


def build_document(messages, log_group, log_stream, start):
    return {
        "messageType": "DATA_MESSAGE",
        "owner": "000000000000",
        "logGroup": log_group,
        "logStream": log_stream,
        "subscriptionFilters": ["local-invoke"],
        "logEvents": [
            {"id": f"{start + i}{i:06d}", "timestamp": start + i, "message": message}
            for i, message in enumerate(messages)
        ],
    }


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--events", type=int, default=10, help="Number of generated events")
    parser.add_argument("--file", type=Path, help="Read one message per line instead of generating")
    parser.add_argument("--log-group", default="/aws/lambda/local-test")
    parser.add_argument("--log-stream", default="2024/01/01/[$LATEST]local")
    parser.add_argument("--start", type=int, default=1704067200000, help="Timestamp of the first event (ms)")
    args = parser.parse_args()

    if args.file:
        messages = [line.rstrip("\n") for line in args.file.read_text(encoding="utf-8").splitlines() if line.strip()]
    else:
        messages = [f"local test message {i + 1}" for i in range(args.events)]

    document = build_document(messages, args.log_group, args.log_stream, args.start)
    event = {"awslogs": {"data": encode_payload(document)}}
    context = SimpleNamespace(aws_request_id=str(uuid.uuid4()))

    try:
        print(json.dumps(handler(event, context), indent=2))
        return 0
    except PipelineError as e:
        print(f"✗ {e}")
        return 1
    finally:
        reset_pipeline_context()


if __name__ == "__main__":
    sys.exit(main())
