# config.py
"""
Runtime configuration for the progress sync engine.
Values can be overridden through environment variables.
"""

import logging
import os

APP_VERSION = "1.0.0"
DEBUG = os.getenv("PROGRESS_DEBUG", "false").lower() == "true"

# Logging
LOG_LEVEL = logging.DEBUG if DEBUG else logging.INFO
LOGS_DIR = os.getenv("PROGRESS_LOGS_DIR", "logs")
LOG_FILE = "progress.log"
MAX_LOG_SIZE = 5 * 1024 * 1024  # 5MB
LOG_BACKUP_COUNT = 3
ENABLE_FILE_LOGGING = os.getenv("PROGRESS_FILE_LOGGING", "true").lower() == "true"
ENABLE_CONSOLE_LOGGING = True

# Signed-in user for CLI runs (real apps pass it through AuthContext)
DEFAULT_USER_ID = os.getenv("PROGRESS_USER_ID")

PROGRESS_CONFIG = {
    "backend": os.getenv("PROGRESS_BACKEND", "sqlite"),  # "sqlite" or "remote"
    "database_path": os.getenv("PROGRESS_DB", "learning_progress.db"),
    "debounce_seconds": float(os.getenv("PROGRESS_DEBOUNCE", "0.1")),
    "history_limit": 10,
    "remote": {
        "base_url": os.getenv("PROGRESS_REMOTE_URL", ""),
        "api_key": os.getenv("PROGRESS_REMOTE_API_KEY", ""),
        "access_token": os.getenv("PROGRESS_REMOTE_TOKEN", ""),
        "timeout": 8,
        "connect_timeout": 3,
    },
}
