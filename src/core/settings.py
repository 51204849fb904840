import os
from typing import Any
from pathlib import Path

PROJECT_NAME = "bridge_pool_assignments"

# Paths
PROJECT_ROOT_DIR = Path(__file__).parent.parent.parent.resolve()

DATA_DIR = PROJECT_ROOT_DIR / "data"
DATABASE_PATH = Path(os.getenv("DB_PATH", str(DATA_DIR / "bridge_pool_assignments.duckdb")))
CONFIG_PATH = PROJECT_ROOT_DIR / "configs" / "collector.yaml"
LOG_FOLDER = PROJECT_ROOT_DIR / "logs"

os.makedirs(LOG_FOLDER, exist_ok=True)

# CollecTor
DEFAULT_BASE_URL = os.getenv("BASE_URL", "https://collector.torproject.org")
DEFAULT_DIRECTORIES = [d for d in os.getenv("DIRS", "recent/bridge-pool-assignments").split(",") if d]
INDEX_RELPATH = "index/index.json"
INDEX_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M"

DEFAULT_MAX_CONCURRENCY = 50
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0

# Tables
TABLE_FILE = "bridge_pool_assignments_file"
TABLE_ASSIGNMENT = "bridge_pool_assignment"

INSERT_BATCH_SIZE = 1000


# Logging Configuration

LOGGING_CONFIG: dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s [%(levelname)s] %(message)s"
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "level": "INFO",
        },
        "rotating_file": {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "standard",
            "level": "DEBUG",
            "filename": str(LOG_FOLDER / "ingestion.log"),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
            "encoding": "utf8",
        },
    },
    "loggers": {
        "": {  # root logger
            "handlers": ["console", "rotating_file"],
            "level": "DEBUG",
            "propagate": True
        },
        "httpx": {
            "level": "WARNING",
        },
    }

}
