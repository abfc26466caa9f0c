"""
SQLite database connection and initialization.
"""
import sqlite3
import json
from pathlib import Path
from typing import Optional, List, Dict, Any
from contextlib import contextmanager

from .config import DB_PATH, SCHEMA_FILE


# Tables in dependency order (children last)
TABLES = [
    "users",
    "institutions",
    "courses",
    "units",
    "topics",
    "content_assets",
    "assessments",
    "subscriptions",
    "student_downloads",
    "access_logs",
]


class Database:
    """Database manager for SQLite operations."""

    def __init__(self, db_path: Path = DB_PATH, schema_file: Path = SCHEMA_FILE):
        self.db_path = db_path
        self.schema_file = schema_file
        self.ensure_tables()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def get_connection(self):
        """Context manager for database connections."""
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get_connection_raw(self):
        """Get a raw connection (for operations that need manual commit)."""
        return self._connect()

    def ensure_tables(self):
        """Create all tables if they don't exist."""
        if self.schema_file.exists():
            with open(self.schema_file, "r") as f:
                schema = f.read()

            with self.get_connection() as conn:
                conn.executescript(schema)

    def execute(self, query: str, params: Optional[tuple] = None) -> List[sqlite3.Row]:
        """Execute a SELECT query and return results."""
        with self.get_connection() as conn:
            cursor = conn.execute(query, params or ())
            return cursor.fetchall()

    def execute_one(self, query: str, params: Optional[tuple] = None) -> Optional[sqlite3.Row]:
        """Execute a SELECT query and return first result."""
        results = self.execute(query, params)
        return results[0] if results else None

    def execute_write(self, query: str, params: Optional[tuple] = None) -> int:
        """Execute an INSERT/UPDATE/DELETE query and return the affected row count."""
        conn = self.get_connection_raw()
        try:
            cursor = conn.execute(query, params or ())
            conn.commit()
            return cursor.rowcount
        finally:
            conn.close()

    def clear_all(self) -> None:
        """Delete every row from every table (used by tests and reseeding)."""
        with self.get_connection() as conn:
            for table in reversed(TABLES):
                conn.execute(f"DELETE FROM {table}")


def row_to_dict(row: Optional[sqlite3.Row], json_columns: tuple = ()) -> Optional[Dict[str, Any]]:
    """Convert a row to a plain dict, decoding the given JSON columns."""
    if row is None:
        return None
    data = dict(row)
    for column in json_columns:
        raw = data.get(column)
        data[column] = json.loads(raw) if raw else ({} if column == "access_rules" else [])
    return data


# Global database instance
db = Database()
