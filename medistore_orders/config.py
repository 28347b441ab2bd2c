"""
config.py — Runtime Settings for the Order Service

All settings are read once from environment variables at import time.
Defaults are suitable for a local single-instance run against SQLite.
"""

import os


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./medistore.db")
SQL_ECHO = _flag("SQL_ECHO", "false")
CREATE_SCHEMA_ON_STARTUP = _flag("CREATE_SCHEMA_ON_STARTUP", "true")

DEFAULT_PAGE_SIZE = int(os.environ.get("DEFAULT_PAGE_SIZE", "10"))
MAX_PAGE_SIZE = int(os.environ.get("MAX_PAGE_SIZE", "50"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
# Empty string disables the file handler
LOG_FILE = os.environ.get("LOG_FILE", "order_processing.log")

# Cancelling an order puts every medicine back to ACTIVE, including listings
# that were DISABLED in the meantime. Set to false to only lift OUT_OF_STOCK.
CANCEL_REACTIVATES_DISABLED = _flag("CANCEL_REACTIVATES_DISABLED", "true")
