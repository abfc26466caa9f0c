"""
Multi-statement writes: one transaction per request, savepoints per item,
and compensation for files written alongside the rows.
"""
import logging
import sqlite3
from contextlib import contextmanager
from typing import Callable, List, Optional

from core.database import db, Database

logger = logging.getLogger(__name__)


class TransactionManager:
    """Runs a block of writes atomically and undoes its file side effects on failure."""

    def __init__(self, database: Database = db):
        self.database = database
        self.compensation_handlers: List[Callable[[], None]] = []

    @contextmanager
    def transaction(self, isolation_level: Optional[str] = None):
        """
        Open a connection, BEGIN, and commit when the block exits cleanly.

        Usage:
            with transaction_manager.transaction() as conn:
                conn.execute("INSERT INTO assessments ...")
                transaction_manager.register_compensation(lambda: path.unlink())

        On any exception the transaction is rolled back, the registered
        compensation handlers run newest first, and the exception propagates.

        Args:
            isolation_level: "IMMEDIATE" or "EXCLUSIVE" to take the write
                lock up front; None keeps SQLite's deferred default
        """
        conn = self.database.get_connection_raw()
        if isolation_level:
            conn.isolation_level = isolation_level

        try:
            conn.execute("BEGIN")
            yield conn
            conn.commit()
            self.compensation_handlers.clear()
        except Exception:
            conn.rollback()
            self._execute_compensation()
            raise
        finally:
            conn.close()

    @contextmanager
    def savepoint(self, conn: sqlite3.Connection, name: str):
        """
        Scope a partial rollback inside an open transaction.

        A failing block is rolled back to the savepoint and its exception
        re-raised; earlier work in the transaction is kept.
        """
        conn.execute(f"SAVEPOINT {name}")
        try:
            yield
        except Exception:
            conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        conn.execute(f"RELEASE SAVEPOINT {name}")

    def register_compensation(self, handler: Callable[[], None]) -> None:
        """Undo step for the current transaction, e.g. removing a stored upload."""
        self.compensation_handlers.append(handler)

    def _execute_compensation(self) -> None:
        handlers = list(reversed(self.compensation_handlers))
        self.compensation_handlers.clear()
        for handler in handlers:
            try:
                handler()
            except Exception as e:
                # rollback already happened; keep undoing the rest
                logger.error("Compensation handler failed: %s", e)


# Global transaction manager instance
transaction_manager = TransactionManager()
