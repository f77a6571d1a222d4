"""Database engine builder.

Pool policy for the Supabase pooler:
- Default: NullPool (client-side pooling disabled, pooler does the pooling)
- Supabase host → sslmode=require unless the URL sets its own sslmode
- ENV: CRUX_DB_POOL=nullpool|queuepool (default: nullpool)
- SQLite URLs (tests, local tooling) get a StaticPool for :memory: databases
"""

import logging
import os
import re
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

from sqlalchemy import Engine, NullPool, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

_SUPABASE_HOST_SUFFIXES = (".supabase.co", ".supabase.com")


def is_supabase_host(url: str) -> bool:
    """Check if URL points to a Supabase database or pooler host."""
    hostname = (urlparse(url).hostname or "").lower()
    return hostname.endswith(_SUPABASE_HOST_SUFFIXES)


def mask_password(url: str) -> str:
    """Mask password in database URL for safe logging."""
    return re.sub(r"://([^:/]+):([^@]+)@", r"://\1:***@", url)


def _sqlite_engine(url: str) -> Engine:
    if ":memory:" in url or url in {"sqlite://", "sqlite:///"}:
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, connect_args={"check_same_thread": False})


def build_engine(database_url: Optional[str] = None) -> Engine:
    """
    Build SQLAlchemy engine.

    Args:
        database_url: Database URL. If None, reads from env DATABASE_URL.

    Returns:
        SQLAlchemy Engine instance.

    Raises:
        ValueError: If no URL is available or CRUX_DB_POOL is invalid.
    """
    url = database_url or os.getenv("DATABASE_URL")
    if not url:
        raise ValueError(
            "DATABASE_URL is required. "
            "Pass as argument or set DATABASE_URL environment variable."
        )

    if url.startswith("sqlite"):
        return _sqlite_engine(url)

    connect_args: dict[str, Any] = {}
    if is_supabase_host(url) and "sslmode" not in parse_qs(urlparse(url).query):
        connect_args["sslmode"] = "require"

    app_name = os.getenv("CRUX_DB_APPLICATION_NAME", "crux-api")
    if app_name:
        connect_args["application_name"] = app_name

    pool_mode = os.getenv("CRUX_DB_POOL", "nullpool").lower()

    if pool_mode == "nullpool":
        engine = create_engine(
            url,
            poolclass=NullPool,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
    elif pool_mode == "queuepool":
        engine = create_engine(
            url,
            pool_pre_ping=True,
            pool_size=int(os.getenv("CRUX_DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("CRUX_DB_MAX_OVERFLOW", "10")),
            connect_args=connect_args,
        )
    else:
        raise ValueError(
            f"Invalid CRUX_DB_POOL value: {pool_mode}. "
            "Must be 'nullpool' or 'queuepool'."
        )

    logger.debug(
        "Database engine created: pool=%s, url=%s",
        engine.pool.__class__.__name__,
        mask_password(url),
    )
    return engine


def build_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    """Build sessionmaker with autocommit=False, autoflush=False."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
