#!/usr/bin/env python3
"""
Create the cloudwatch_logs table and its indexes.

The handler does this on every cold start; this script lets an operator
prepare the database ahead of the first delivery. It is idempotent and can
be run multiple times safely.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from cloudwatch_sink.core.config import Settings
from cloudwatch_sink.core.database import TABLE_NAME, LogDatabase
from cloudwatch_sink.core.exceptions import CloudWatchSinkError
from cloudwatch_sink.core.log_config import configure_logging


def main() -> int:
    try:
        settings = Settings.from_environment()
    except CloudWatchSinkError as e:
        print(f"✗ {e}")
        return 1

    configure_logging(settings.pipeline.log_level)
    db = LogDatabase(settings.database, max_connections=1,
                     connect_timeout=settings.pipeline.connect_timeout_seconds)
    try:
        db.ensure_schema()
    except CloudWatchSinkError as e:
        print(f"✗ {e}")
        return 1
    finally:
        db.close()

    print(f"✓ Table '{TABLE_NAME}' and indexes are in place")
    return 0


if __name__ == "__main__":
    sys.exit(main())
