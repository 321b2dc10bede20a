from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import exc as sa_exc
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlmodel import create_engine

from identity_core.domain.errors import ConflictError, StoreUnavailable

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "postgresql+psycopg://identity:identity@db:5432/identity_core",
)
DB_POOL_TIMEOUT_SECONDS = int(os.getenv("DB_POOL_TIMEOUT_SECONDS", "10"))
DB_STATEMENT_TIMEOUT_MS = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "5000"))


def _engine_options(url: str) -> dict[str, Any]:
    if not url.startswith("postgresql"):
        return {}
    return {
        "pool_timeout": DB_POOL_TIMEOUT_SECONDS,
        "connect_args": {
            "connect_timeout": DB_POOL_TIMEOUT_SECONDS,
            "options": f"-c statement_timeout={DB_STATEMENT_TIMEOUT_MS}",
        },
    }


engine = create_engine(DATABASE_URL, pool_pre_ping=True, **_engine_options(DATABASE_URL))


def get_engine() -> Engine:
    return engine


def check_db_ready() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


@contextmanager
def store_errors(conflict_message: str = "unique key already exists") -> Iterator[None]:
    """Translate driver failures into the identity error taxonomy."""
    try:
        yield
    except sa_exc.IntegrityError as exc:
        raise ConflictError(conflict_message) from exc
    except (sa_exc.OperationalError, sa_exc.TimeoutError) as exc:
        raise StoreUnavailable("identity store unavailable, retry later") from exc
