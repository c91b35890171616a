"""DuckDB database setup and connection management."""

import duckdb
import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS traces (
    id              VARCHAR PRIMARY KEY,
    name            VARCHAR NOT NULL,
    project_name    VARCHAR,
    input           JSON,
    output          JSON,
    metadata        JSON,
    tags            JSON,
    success         BOOLEAN,
    duration_ms     DOUBLE,
    start_time      TIMESTAMP NOT NULL,
    end_time        TIMESTAMP,
    created_at      TIMESTAMP DEFAULT current_timestamp
);

CREATE TABLE IF NOT EXISTS spans (
    id              VARCHAR PRIMARY KEY,
    trace_id        VARCHAR NOT NULL,
    parent_span_id  VARCHAR,
    position        INTEGER NOT NULL,
    name            VARCHAR NOT NULL,
    input           JSON,
    output          JSON,
    metadata        JSON,
    success         BOOLEAN,
    duration_ms     DOUBLE,
    start_time      TIMESTAMP NOT NULL,
    end_time        TIMESTAMP
);

CREATE TABLE IF NOT EXISTS datasets (
    id              VARCHAR PRIMARY KEY,
    name            VARCHAR NOT NULL UNIQUE,
    description     VARCHAR,
    created_at      TIMESTAMP DEFAULT current_timestamp
);

CREATE TABLE IF NOT EXISTS dataset_items (
    id              VARCHAR PRIMARY KEY,
    dataset_id      VARCHAR NOT NULL,
    position        INTEGER NOT NULL,
    input           JSON,
    expected_output JSON,
    metadata        JSON,
    created_at      TIMESTAMP DEFAULT current_timestamp
);

CREATE TABLE IF NOT EXISTS feedback_scores (
    id              VARCHAR PRIMARY KEY,
    trace_id        VARCHAR NOT NULL,
    name            VARCHAR NOT NULL,
    value           DOUBLE NOT NULL,
    category        VARCHAR,
    reason          VARCHAR,
    metadata        JSON,
    created_at      TIMESTAMP DEFAULT current_timestamp
);
"""


class Database:
    """DuckDB database manager for locally persisted traces, datasets and feedback."""

    def __init__(self, db_path: str = "circletrace.duckdb"):
        self.db_path = db_path
        self._conn: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.RLock()

    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            self._conn = duckdb.connect(self.db_path)
            self._init_schema()
        return self._conn

    def _init_schema(self) -> None:
        self.conn.execute(SCHEMA_SQL)
        logger.info(f"Database schema initialized at {self.db_path}")

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @contextmanager
    def transaction(self) -> Iterator["Database"]:
        """Run the enclosed statements atomically; roll back and re-raise on error."""
        with self._lock:
            self.conn.execute("BEGIN TRANSACTION")
            try:
                yield self
            except Exception:
                self.conn.execute("ROLLBACK")
                raise
            self.conn.execute("COMMIT")

    def execute(self, query: str, params=None):
        with self._lock:
            if params:
                return self.conn.execute(query, params)
            return self.conn.execute(query)

    def fetchall(self, query: str, params=None):
        with self._lock:
            result = self.execute(query, params)
            columns = [desc[0] for desc in result.description]
            rows = result.fetchall()
        return [dict(zip(columns, row)) for row in rows]

    def fetchone(self, query: str, params=None):
        with self._lock:
            result = self.execute(query, params)
            columns = [desc[0] for desc in result.description]
            row = result.fetchone()
        if row:
            return dict(zip(columns, row))
        return None
