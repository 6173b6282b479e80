"""
Runtime configuration for the Task Manager API.

Every setting is read from the environment once, at import time. Numeric values
are validated against a safe range; anything unparsable or out of range is
logged and replaced by its default so a bad deployment variable never takes the
process down.

The JWT signing key is resolved in auth/security.py, which may generate a
temporary one outside production.
"""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


def _int_env(name: str, default: int, minimum: int, maximum: int) -> int:
    """Read an integer environment variable, falling back to default when invalid."""
    raw = os.environ.get(name)
    if raw is None:
        return default

    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"⚠️  Invalid {name} value in environment. Using default of {default}.")
        return default

    if value < minimum or value > maximum:
        logger.warning(
            f"⚠️  {name}={value} is outside safe range ({minimum}-{maximum}). "
            f"Using default of {default}."
        )
        return default
    return value


def _bool_env(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


# Server
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = _int_env("PORT", 3000, 1, 65535)
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# Database
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./task_manager.db")
AUTO_CREATE_TABLES = _bool_env("AUTO_CREATE_TABLES", True)

# Seeded admin account (created on startup unless SEED_ADMIN is off)
ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@example.com")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "admin123")
SEED_ADMIN = _bool_env("SEED_ADMIN", True)

# File uploads
UPLOAD_DIR = Path(os.environ.get("UPLOAD_DIR", "uploads"))
MAX_FILE_SIZE = _int_env("MAX_FILE_SIZE", 10 * 1024 * 1024, 1, 1024 * 1024 * 1024)
MAX_FILES_PER_UPLOAD = _int_env("MAX_FILES_PER_UPLOAD", 10, 1, 100)

# CORS: a single browser origin is allowed
FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173")

# Fixed-window rate limiting, applied per client address
RATE_LIMIT_MAX_REQUESTS = _int_env("RATE_LIMIT_MAX_REQUESTS", 100, 1, 1_000_000)
RATE_LIMIT_WINDOW_MINUTES = _int_env("RATE_LIMIT_WINDOW_MINUTES", 15, 1, 24 * 60)

# Deployment environment; production and staging refuse insecure defaults
ENVIRONMENT = os.environ.get("ENVIRONMENT", "development").lower()


def is_production_like() -> bool:
    return ENVIRONMENT in ("production", "staging")


# Bearer tokens
JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY")
SUPPORTED_JWT_ALGORITHMS = ("HS256", "HS384", "HS512")
JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
if JWT_ALGORITHM not in SUPPORTED_JWT_ALGORITHMS:
    logger.warning(f"⚠️  Unsupported JWT_ALGORITHM={JWT_ALGORITHM}. Using HS256.")
    JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = _int_env("ACCESS_TOKEN_EXPIRE_MINUTES", 7 * 24 * 60, 1, 30 * 24 * 60)
