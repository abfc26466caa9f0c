"""
Configuration validation for EduVault backend.
Validates payment credentials, database, directories and settings on startup.
"""
import os
import sqlite3
from typing import List, Dict, Any

import requests

from core.database import TABLES


class ConfigValidator:
    """Validates system configuration before the API starts serving."""

    def __init__(self):
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate_all(self) -> Dict[str, Any]:
        """
        Run all validation checks.

        Returns:
            {
                "valid": bool,
                "errors": List[str],
                "warnings": List[str]
            }
        """
        self.errors = []
        self.warnings = []

        if self._validate_mpesa_credentials():
            self._validate_mpesa_connection()
        self._validate_database()
        self._validate_directories()
        self._validate_config_values()

        return {
            "valid": len(self.errors) == 0,
            "errors": self.errors,
            "warnings": self.warnings
        }

    def _validate_mpesa_credentials(self) -> bool:
        """Subscriptions cannot be paid for without Daraja credentials."""
        from core.config import MPESA_CONSUMER_KEY, MPESA_CONSUMER_SECRET, MPESA_PASSKEY

        missing = [
            name for name, value in (
                ("MPESA_CONSUMER_KEY", MPESA_CONSUMER_KEY),
                ("MPESA_CONSUMER_SECRET", MPESA_CONSUMER_SECRET),
                ("MPESA_PASSKEY", MPESA_PASSKEY),
            )
            if not value
        ]
        if missing:
            self.warnings.append(
                f"M-Pesa credentials not set ({', '.join(missing)}). "
                "Subscription payments will fail until they are configured."
            )
            return False
        return True

    def _validate_mpesa_connection(self):
        """Check that the Daraja API is reachable (warning only)."""
        from core.config import MPESA_BASE_URL

        try:
            requests.get(MPESA_BASE_URL, timeout=5)
        except requests.exceptions.ConnectionError:
            self.warnings.append(f"Cannot reach M-Pesa API at {MPESA_BASE_URL}.")
        except requests.exceptions.Timeout:
            self.warnings.append(f"M-Pesa API connection timeout at {MPESA_BASE_URL}.")
        except requests.exceptions.RequestException as e:
            self.warnings.append(f"M-Pesa API check failed: {e}")

    def _validate_database(self):
        """The SQLite file must carry every table the services query."""
        from core.config import DB_PATH, SCHEMA_FILE
        from core.database import db

        if not SCHEMA_FILE.exists():
            self.errors.append(f"Schema file missing: {SCHEMA_FILE}")

        if not DB_PATH.exists():
            self.warnings.append(f"Database file not found at {DB_PATH}; it is created on first use.")
            return

        try:
            rows = db.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        except sqlite3.Error as e:
            self.errors.append(f"Database connection error: {e}")
            return

        existing = {row["name"] for row in rows}
        for table in TABLES:
            if table not in existing:
                self.errors.append(f"Required database table missing: {table}. Re-run schema initialization.")

    def _validate_directories(self):
        """Uploads are written to disk, so the upload directories must be writable."""
        from core.config import DATA_DIR, UPLOADS_DIR, ASSESSMENT_UPLOADS_DIR

        for name, path in (
            ("Data directory", DATA_DIR),
            ("Uploads directory", UPLOADS_DIR),
            ("Assessment uploads directory", ASSESSMENT_UPLOADS_DIR),
        ):
            if not path.is_dir():
                self.errors.append(f"{name} not found at {path}")
            elif not os.access(path, os.W_OK):
                self.errors.append(f"{name} is not writable: {path}")

    def _validate_config_values(self):
        """Validate configuration value ranges and types."""
        from core.config import (
            JWT_SECRET,
            SUBSCRIPTION_PRICE,
            SUBSCRIPTION_DURATION_DAYS,
            SUBSCRIPTION_POLL_INTERVAL_SECONDS,
            SUBSCRIPTION_POLL_MAX_ATTEMPTS,
            SUBSCRIPTION_QUERY_AFTER_ATTEMPTS,
            VIEWER_TIME_UP_GRACE_SECONDS,
        )

        if SUBSCRIPTION_QUERY_AFTER_ATTEMPTS >= SUBSCRIPTION_POLL_MAX_ATTEMPTS:
            self.errors.append(
                f"SUBSCRIPTION_QUERY_AFTER_ATTEMPTS ({SUBSCRIPTION_QUERY_AFTER_ATTEMPTS}) "
                f"must be < SUBSCRIPTION_POLL_MAX_ATTEMPTS ({SUBSCRIPTION_POLL_MAX_ATTEMPTS})"
            )

        if SUBSCRIPTION_POLL_INTERVAL_SECONDS <= 0:
            self.errors.append(
                f"SUBSCRIPTION_POLL_INTERVAL_SECONDS ({SUBSCRIPTION_POLL_INTERVAL_SECONDS}) must be positive"
            )

        if SUBSCRIPTION_PRICE <= 0 or SUBSCRIPTION_DURATION_DAYS <= 0:
            self.errors.append("SUBSCRIPTION_PRICE and SUBSCRIPTION_DURATION_DAYS must be positive")

        if VIEWER_TIME_UP_GRACE_SECONDS < 0:
            self.warnings.append(
                f"VIEWER_TIME_UP_GRACE_SECONDS ({VIEWER_TIME_UP_GRACE_SECONDS}) is negative; treated as 0"
            )

        if len(JWT_SECRET) < 32:
            self.warnings.append("JWT_SECRET is shorter than 32 characters")


# Global validator instance
config_validator = ConfigValidator()
