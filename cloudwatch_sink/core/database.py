"""
Database layer for the CloudWatch log sink.

This module provides:
- A lazily connecting pool around psycopg2's ThreadedConnectionPool
- Schema management for the cloudwatch_logs table and its indexes
- A cheap connectivity probe used as a pre-flight gate
- The batch upsert engine: one transaction per batch, one savepoint per
  record, so a failing record is rolled back on its own while the rest of
  the batch still commits

Usage:
    >>> from cloudwatch_sink.core.config import DatabaseConfig
    >>> from cloudwatch_sink.core.database import LogDatabase
    >>> db = LogDatabase(DatabaseConfig())
    >>> if db.test_connection():
    ...     db.ensure_schema()
    ...     result = db.upsert(records)
"""

import threading
from contextlib import contextmanager
from typing import Generator, Optional, Sequence

import psycopg2
import psycopg2.extras
import psycopg2.pool
import structlog

from cloudwatch_sink.core.config import DatabaseConfig
from cloudwatch_sink.core.exceptions import SchemaError
from cloudwatch_sink.services.models import BatchAccumulator, Ok, Outcome, LogRecord, ProcessingResult


logger = structlog.get_logger(__name__)


TABLE_NAME = "cloudwatch_logs"

CREATE_TABLE_SQL = f"""
    CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
        id VARCHAR(255) PRIMARY KEY,
        timestamp BIGINT NOT NULL,
        log_group VARCHAR(255) NOT NULL,
        log_stream VARCHAR(255) NOT NULL,
        message TEXT NOT NULL,
        extracted_fields JSONB,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
"""

CREATE_INDEX_SQL = [
    f"CREATE INDEX IF NOT EXISTS idx_timestamp ON {TABLE_NAME} (timestamp)",
    f"CREATE INDEX IF NOT EXISTS idx_log_group ON {TABLE_NAME} (log_group)",
    f"CREATE INDEX IF NOT EXISTS idx_created_at ON {TABLE_NAME} (created_at)",
]

SCHEMA_STATEMENTS = [CREATE_TABLE_SQL] + CREATE_INDEX_SQL

INSERT_LOG_EVENT_SQL = f"""
    INSERT INTO {TABLE_NAME}
    (id, timestamp, log_group, log_stream, message, extracted_fields)
    VALUES (%s, %s, %s, %s, %s, %s)
    ON CONFLICT (id) DO NOTHING
"""

RECORD_SAVEPOINT = "log_event"

DEFAULT_MAX_CONNECTIONS = 10
DEFAULT_CONNECT_TIMEOUT = 2


class DatabaseConnectionError(Exception):
    """Raised when a connection cannot be acquired from the pool"""
    pass


class ConnectionPool:
    """
    Connection pool for the log database.

    No connection is opened until the first acquisition, so constructing the
    pool never touches the network. Connections handed back in a failed or
    closed state are discarded instead of being reused.
    """

    def __init__(
        self,
        config: DatabaseConfig,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        connect_timeout: int = DEFAULT_CONNECT_TIMEOUT
    ):
        self.config = config
        self.max_connections = max_connections
        self.connect_timeout = connect_timeout

        self._pool: Optional[psycopg2.pool.ThreadedConnectionPool] = None
        self._lock = threading.Lock()
        self._logger = logger.bind(host=config.host, database=config.database)

    def _get_pool(self) -> psycopg2.pool.ThreadedConnectionPool:
        if self._pool is None:
            with self._lock:
                if self._pool is None:
                    self._logger.info(
                        "Creating connection pool",
                        max_conn=self.max_connections,
                        ssl=self.config.ssl
                    )
                    self._pool = psycopg2.pool.ThreadedConnectionPool(
                        0,
                        self.max_connections,
                        connect_timeout=self.connect_timeout,
                        **self.config.connection_kwargs()
                    )
        return self._pool

    @contextmanager
    def get_connection(self) -> Generator[psycopg2.extensions.connection, None, None]:
        """
        Get a connection from the pool with proper cleanup.

        An exception escaping the block rolls back whatever transaction is
        still open before the connection goes back to the pool.

        Raises:
            DatabaseConnectionError: If no connection could be acquired
        """
        pool = self._get_pool()
        try:
            connection = pool.getconn()
        except (psycopg2.Error, psycopg2.pool.PoolError) as e:
            self._logger.error("Failed to acquire connection", error=str(e))
            raise DatabaseConnectionError(f"Failed to acquire connection: {e}") from e

        discard = False
        try:
            yield connection
        except Exception:
            try:
                connection.rollback()
            except psycopg2.Error as rollback_error:
                self._logger.warning("Rollback on release failed", error=str(rollback_error))
                discard = True
            raise
        finally:
            pool.putconn(connection, close=discard or bool(connection.closed))

    def close(self) -> None:
        """Close the connection pool"""
        with self._lock:
            if self._pool is not None:
                self._pool.closeall()
                self._pool = None
                self._logger.info("Connection pool closed")


class LogDatabase:
    """
    Persistence for normalized CloudWatch log records.

    Holds one ConnectionPool for the lifetime of the process; every public
    operation acquires a single connection and releases it on every exit path.
    """

    def __init__(
        self,
        config: DatabaseConfig,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        connect_timeout: int = DEFAULT_CONNECT_TIMEOUT,
        pool: Optional[ConnectionPool] = None
    ):
        self.pool = pool or ConnectionPool(config, max_connections, connect_timeout)
        self._logger = logger.bind(component="log_database")

    def ensure_schema(self) -> None:
        """
        Create the log table and its indexes if they do not exist.

        Idempotent and safe to run on every cold start; nothing is ever
        dropped or altered.

        Raises:
            SchemaError: If any statement fails
        """
        try:
            with self.pool.get_connection() as conn:
                with conn.cursor() as cursor:
                    for statement in SCHEMA_STATEMENTS:
                        cursor.execute(statement)
                conn.commit()
        except Exception as e:
            self._logger.error("Schema initialization failed", error=str(e))
            raise SchemaError(f"Failed to initialize {TABLE_NAME} schema: {e}") from e

        self._logger.debug("Schema ready", table=TABLE_NAME)

    def test_connection(self) -> bool:
        """Round-trip a trivial query. Failures are logged and reported as False."""
        try:
            with self.pool.get_connection() as conn:
                with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
                    cursor.execute("SELECT 1 AS probe")
                    cursor.fetchone()
                conn.rollback()
            return True
        except Exception as e:
            self._logger.error("Database connection test failed", error=str(e))
            return False

    def _insert_record(self, cursor, record: LogRecord, accumulator: BatchAccumulator) -> Outcome:
        # Savepoint handling errors are not caught here: they mean the
        # transaction itself is unusable.
        cursor.execute(f"SAVEPOINT {RECORD_SAVEPOINT}")
        try:
            cursor.execute(
                INSERT_LOG_EVENT_SQL,
                (
                    record.id,
                    record.timestamp,
                    record.log_group,
                    record.log_stream,
                    record.message,
                    psycopg2.extras.Json(record.extracted_fields)
                    if record.extracted_fields is not None else None,
                )
            )
        except (psycopg2.Error, TypeError, ValueError) as e:
            cursor.execute(f"ROLLBACK TO SAVEPOINT {RECORD_SAVEPOINT}")
            failure = accumulator.record_failed(record.id, e)
            self._logger.error("Record insert failed", record_id=record.id, error=failure.detail)
            return failure

        cursor.execute(f"RELEASE SAVEPOINT {RECORD_SAVEPOINT}")
        outcome = Ok(processed_count=1)
        accumulator.add(outcome)
        return outcome

    def upsert(self, records: Sequence[LogRecord]) -> ProcessingResult:
        """
        Insert a batch of records, ignoring ids that already exist.

        Each record is attempted independently inside a single transaction.
        A failing record is reported in the result and the loop moves on;
        a failure of the transaction itself rolls everything back and is
        reported as one "Transaction failed" diagnostic.

        Args:
            records: Normalized records for one batch

        Returns:
            ProcessingResult with the processed count and ordered diagnostics

        Raises:
            DatabaseConnectionError: If no connection could be acquired
        """
        if not records:
            return ProcessingResult(success=True, processed_count=0, errors=[])

        accumulator = BatchAccumulator()

        with self.pool.get_connection() as conn:
            try:
                with conn.cursor() as cursor:
                    for record in records:
                        self._insert_record(cursor, record, accumulator)
                conn.commit()
            except Exception as e:
                self._rollback(conn)
                failure = accumulator.transaction_failed(e)
                self._logger.error(
                    "Transaction failed",
                    error=failure.detail,
                    processed_before_failure=accumulator.processed_count
                )

        result = accumulator.to_result()
        self._logger.info(
            "Batch upserted",
            records=len(records),
            processed=result.processed_count,
            failed=len(result.errors),
            rolled_back=result.rolled_back
        )
        return result

    def _rollback(self, conn) -> None:
        try:
            conn.rollback()
        except psycopg2.Error as e:
            # Closed connections are discarded by the pool on release
            self._logger.warning("Rollback failed, closing connection", error=str(e))
            conn.close()

    def close(self) -> None:
        self.pool.close()
