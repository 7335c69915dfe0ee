"""PostgreSQL database engine for the SolRelay agent.

Manages the connection via psycopg3 and handles schema initialization.
All queries flow through this engine; the Repository class builds on top.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

import psycopg
from psycopg.rows import dict_row

from src.core.config import DatabaseConfig
from src.core.exceptions import ConnectionError, DatabaseError, SchemaInitError

logger = logging.getLogger("solrelay.db")

SCHEMA_PATH = Path(__file__).parent / "schema.sql"


class DatabaseEngine:
    """PostgreSQL engine wrapping psycopg3.

    Usage:
        engine = DatabaseEngine(config)
        rows = engine.fetch_all("SELECT * FROM missions WHERE status = %s", ["approved"])

        # Conditional single-row writes are atomic on their own:
        row = engine.fetch_one("UPDATE missions SET ... WHERE id = %s AND status = %s RETURNING *", [...])
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._conn: Optional[psycopg.Connection] = None

    @property
    def conn(self) -> psycopg.Connection:
        if self._conn is None or self._conn.closed:
            self._connect()
        assert self._conn is not None
        return self._conn

    def _connect(self) -> None:
        try:
            self._conn = psycopg.connect(
                self.config.connection_string,
                row_factory=dict_row,
                autocommit=True,
            )
            logger.info("Connected to PostgreSQL at %s:%s/%s",
                        self.config.host, self.config.port, self.config.dbname)
        except psycopg.OperationalError as e:
            raise ConnectionError(f"Failed to connect to database: {e}") from e

    def initialize_schema(self) -> None:
        """Run schema.sql to create all tables and indexes."""
        if not SCHEMA_PATH.exists():
            raise SchemaInitError(f"Schema file not found: {SCHEMA_PATH}")

        sql = SCHEMA_PATH.read_text()
        try:
            self.conn.execute(sql)
            logger.info("Database schema initialized successfully")
        except psycopg.Error as e:
            raise SchemaInitError(f"Failed to initialize schema: {e}") from e

    def execute(self, query: str, params: Optional[Sequence[Any]] = None) -> int:
        """Execute a query without returning rows. Returns the affected row count."""
        try:
            cur = self.conn.execute(query, params)
            return cur.rowcount
        except psycopg.Error as e:
            raise DatabaseError(f"Query failed: {e}") from e

    def fetch_one(self, query: str, params: Optional[Sequence[Any]] = None) -> Optional[dict[str, Any]]:
        """Execute a query and return the first row as a dict, or None."""
        try:
            cur = self.conn.execute(query, params)
            return cur.fetchone()
        except psycopg.Error as e:
            raise DatabaseError(f"Query failed: {e}") from e

    def fetch_all(self, query: str, params: Optional[Sequence[Any]] = None) -> list[dict[str, Any]]:
        """Execute a query and return all rows as dicts."""
        try:
            cur = self.conn.execute(query, params)
            return cur.fetchall()
        except psycopg.Error as e:
            raise DatabaseError(f"Query failed: {e}") from e

    @contextmanager
    def transaction(self) -> Iterator[psycopg.Cursor]:
        """Run several statements as one unit of work.

        Everything executed on the yielded cursor commits together when the
        block exits, or rolls back if it raises. psycopg errors surface as
        ``DatabaseError``; anything else propagates unchanged.

        Usage:
            with engine.transaction() as cur:
                cur.execute("UPDATE transfers ...")
                cur.execute("INSERT INTO email_queue ...")
        """
        try:
            with self.conn.transaction(), self.conn.cursor() as cur:
                yield cur
        except psycopg.Error as e:
            raise DatabaseError(f"Transaction failed: {e}") from e

    def ping(self) -> bool:
        """Cheap liveness probe used by the health surface."""
        try:
            self.conn.execute("SELECT 1")
            return True
        except (psycopg.Error, DatabaseError):
            return False

    def close(self) -> None:
        """Close the database connection."""
        if self._conn and not self._conn.closed:
            self._conn.close()
            logger.info("Database connection closed")

    def __del__(self):
        self.close()
