"""Database manager: connection pooling, response table schema, thread safety."""

import random
import re
import sqlite3
import threading
import time
import uuid
from datetime import datetime
from typing import Any, Dict, List

from api_cache.utils.logger import get_logger


def adapt_datetime_iso(val):
    """Adapt datetime to a fixed-width ISO 8601 string so stored values sort correctly."""
    return val.isoformat(sep=" ", timespec="microseconds")


def convert_timestamp(val):
    """Convert ISO 8601 timestamp to datetime object."""
    return datetime.fromisoformat(val.decode())


# Register adapters and converters to replace deprecated default ones
sqlite3.register_adapter(datetime, adapt_datetime_iso)
sqlite3.register_converter("datetime", convert_timestamp)
sqlite3.register_converter("timestamp", convert_timestamp)

TABLE_NAME_PATTERN = re.compile(r"^[a-z0-9_]+$")

RESPONSE_TABLE_SCHEMA = """CREATE TABLE IF NOT EXISTS {table} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    key TEXT NOT NULL UNIQUE,
    client TEXT NOT NULL,
    version TEXT,
    endpoint TEXT NOT NULL,
    base_url TEXT,
    full_url TEXT,
    method TEXT,
    attributes TEXT,
    credits INTEGER,
    cost REAL,
    request_params_summary TEXT,
    request_headers {payload_type},
    request_body {payload_type},
    response_headers {payload_type},
    response_body {payload_type},
    response_status_code INTEGER,
    response_size INTEGER,
    response_time REAL,
    expires_at TIMESTAMP,
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
    processed_at TIMESTAMP,
    processed_status TEXT
);"""

RESPONSE_TABLE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_{table}_expires_at ON {table}(expires_at);",
    "CREATE INDEX IF NOT EXISTS idx_{table}_client ON {table}(client);",
]


def check_table_name(table: str) -> str:
    """Guard for table names interpolated into SQL."""
    if not TABLE_NAME_PATTERN.match(table or ""):
        raise ValueError(f"Invalid table name: {table!r}")
    return table


class DatabaseManager:
    """Manages SQLite database operations with thread safety and connection pooling.

    ``":memory:"`` maps to a private shared-cache in-memory database, so every
    pooled connection of one manager sees the same data while separate
    managers stay isolated.
    """

    def __init__(self, database_path: str, max_pool_size: int = 5):
        self.logger = get_logger("database.manager")
        if database_path == ":memory:":
            self.database_path = f"file:api_cache_{uuid.uuid4().hex}?mode=memory&cache=shared"
            self._use_uri = True
        else:
            self.database_path = database_path
            self._use_uri = database_path.startswith("file:")
        self._lock = threading.Lock()
        self._pool: List[sqlite3.Connection] = []
        self._max_pool_size = max_pool_size
        self._known_tables: set = set()
        # Keeps a shared in-memory database alive while connections cycle
        self._anchor = self._connect()
        for _ in range(self._max_pool_size):
            self._pool.append(self._connect())

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.database_path, check_same_thread=False, detect_types=sqlite3.PARSE_DECLTYPES, uri=self._use_uri
        )
        # WAL is ignored for in-memory databases
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    def get_connection(self) -> sqlite3.Connection:
        with self._lock:
            if self._pool:
                return self._pool.pop()
        return self._connect()

    def return_connection(self, conn: sqlite3.Connection):
        with self._lock:
            if len(self._pool) < self._max_pool_size:
                self._pool.append(conn)
                return
        conn.close()

    def _run(self, operation, retries: int = 10, delay: float = 0.05):
        for attempt in range(retries):
            conn = self.get_connection()
            try:
                return operation(conn)
            except Exception as e:
                # Pooled connections must never go back holding an open transaction
                conn.rollback()
                if isinstance(e, sqlite3.OperationalError) and "locked" in str(e).lower() and attempt < retries - 1:
                    # Exponential backoff with jitter to avoid thundering herd
                    backoff = delay * (2**attempt) + random.uniform(0, 0.1)
                    time.sleep(min(backoff, 1.0))
                    continue
                raise
            finally:
                self.return_connection(conn)

    def execute_query(self, query: str, params: tuple = ()) -> List[Any]:
        def operation(conn):
            cur = conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

        return self._run(operation)

    def fetch_dicts(self, query: str, params: tuple = ()) -> List[Dict[str, Any]]:
        """Run a query and return rows as column-name dictionaries."""

        def operation(conn):
            cur = conn.cursor()
            cur.row_factory = sqlite3.Row
            cur.execute(query, params)
            return [dict(row) for row in cur.fetchall()]

        return self._run(operation)

    def execute_update(self, query: str, params: tuple = ()) -> int:
        def operation(conn):
            cur = conn.cursor()
            cur.execute(query, params)
            conn.commit()
            return cur.rowcount

        return self._run(operation)

    def table_exists(self, table: str) -> bool:
        rows = self.execute_query("SELECT name FROM sqlite_master WHERE type='table' AND name = ?", (table,))
        return bool(rows)

    def get_columns(self, table: str) -> List[str]:
        check_table_name(table)
        return [row[1] for row in self.execute_query(f"PRAGMA table_info({table})")]

    def ensure_response_table(self, table: str, compressed: bool = False) -> str:
        """Create a client response table (and its indexes) if it does not exist yet."""
        check_table_name(table)
        if table in self._known_tables:
            return table

        payload_type = "BLOB" if compressed else "TEXT"

        def operation(conn):
            cur = conn.cursor()
            cur.execute(RESPONSE_TABLE_SCHEMA.format(table=table, payload_type=payload_type))
            for stmt in RESPONSE_TABLE_INDEXES:
                cur.execute(stmt.format(table=table))
            conn.commit()

        self._run(operation)
        self._known_tables.add(table)
        self.logger.debug("Ensured response table %s (compressed=%s)", table, compressed)
        return table

    def drop_table(self, table: str) -> None:
        check_table_name(table)
        self.execute_update(f"DROP TABLE IF EXISTS {table}")
        self._known_tables.discard(table)

    def close(self):
        """Close all pooled database connections."""
        with self._lock:
            while self._pool:
                self._pool.pop().close()
            if self._anchor is not None:
                self._anchor.close()
                self._anchor = None
