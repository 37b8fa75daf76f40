"""Gooseherd dashboard configuration."""
import os
import re
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    value = (os.getenv(name) or "").strip()
    return value or default


# Project root (one level up from gooseherd/)
PROJECT_ROOT = Path(__file__).resolve().parent.parent

APP_NAME = _env_str("GOOSEHERD_APP_NAME", "Gooseherd")
APP_SLUG = re.sub(r"\s+", "-", APP_NAME.lower())

# Storage: runs.json lives in DATA_DIR, per-run clones and run.log files in WORK_ROOT
DATA_DIR = Path(_env_str("GOOSEHERD_DATA_DIR", "data"))
WORK_ROOT = Path(_env_str("GOOSEHERD_WORK_ROOT", ".work"))
RUNS_FILE = DATA_DIR / "runs.json"
RUN_LOG_NAME = "run.log"

BRANCH_PREFIX = _env_str("GOOSEHERD_BRANCH_PREFIX", APP_SLUG)
DEFAULT_BASE_BRANCH = _env_str("GOOSEHERD_DEFAULT_BASE_BRANCH", "main")

# Observability
OTEL_ENABLED = _env_bool("GOOSEHERD_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("GOOSEHERD_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("GOOSEHERD_OTEL_SERVICE_NAME", f"{APP_SLUG}-dashboard")
PROM_PORT = _env_int("GOOSEHERD_PROM_PORT", 0)

# Server settings
DASHBOARD_HOST = _env_str("GOOSEHERD_DASHBOARD_HOST", "127.0.0.1")
DASHBOARD_PORT = _env_int("GOOSEHERD_DASHBOARD_PORT", 8787)

# CORS
FRONTEND_ORIGIN = os.getenv("GOOSEHERD_FRONTEND_ORIGIN", "http://localhost:3000")
