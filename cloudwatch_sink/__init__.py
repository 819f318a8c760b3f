"""Ingest CloudWatch Logs subscription deliveries into PostgreSQL."""

__version__ = "1.0.0"
