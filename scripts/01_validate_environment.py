#!/usr/bin/env python3
"""
Script: 01_validate_environment.py
Purpose: Check that the database variables are set and the database is reachable
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from cloudwatch_sink.core.config import Settings
from cloudwatch_sink.core.database import LogDatabase
from cloudwatch_sink.core.exceptions import ConfigError


# Color codes for terminal output
class Colors:
    RED = '\033[0;31m'
    GREEN = '\033[0;32m'
    YELLOW = '\033[1;33m'
    BLUE = '\033[0;34m'
    NC = '\033[0m'  # No Color


def print_colored(message: str, color: str = Colors.NC):
    """Print colored message to terminal"""
    print(f"{color}{message}{Colors.NC}")


def main() -> int:
    print_colored("=" * 60, Colors.GREEN)
    print_colored("     CloudWatch Sink Environment Validation", Colors.GREEN)
    print_colored("=" * 60, Colors.GREEN)

    try:
        settings = Settings.from_environment()
    except ConfigError as e:
        print_colored(f"✗ {e}", Colors.RED)
        print_colored("  Copy .env.example to .env and fill it in", Colors.YELLOW)
        return 1

    print_colored("✓ Configuration loaded", Colors.GREEN)
    for section, values in settings.to_dict().items():
        print_colored(f"\n{section}:", Colors.BLUE)
        for key, value in values.items():
            print(f"  - {key}: {value}")

    db = LogDatabase(
        settings.database,
        max_connections=1,
        connect_timeout=settings.pipeline.connect_timeout_seconds,
    )
    try:
        if not db.test_connection():
            print_colored("\n✗ Database is not reachable", Colors.RED)
            return 1
        print_colored("\n✓ Database connection OK", Colors.GREEN)
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
