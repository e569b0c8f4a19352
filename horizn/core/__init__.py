"""
Core package containing configuration, database, context, security, and logging.
"""
from horizn.core.config import Settings, get_settings
from horizn.core.context import AppContext, Context, build_context, utc_now
from horizn.core.database import Base, Database, get_db_session
from horizn.core.logging import configure_logging, get_logger
from horizn.core.security import (
    ApiToken,
    AttemptLimiter,
    create_access_token,
    decode_access_token,
)

__all__ = [
    "Settings",
    "get_settings",
    "AppContext",
    "Context",
    "build_context",
    "utc_now",
    "Base",
    "Database",
    "get_db_session",
    "configure_logging",
    "get_logger",
    "ApiToken",
    "AttemptLimiter",
    "create_access_token",
    "decode_access_token",
]
