"""Database engine helpers."""

from __future__ import annotations

import json
import os
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine

DEFAULT_DATABASE_URL = "postgresql://user:pass@db:5432/catalog"


def create_engine_from_env() -> Engine:
    """Create an engine using the DATABASE_URL environment variable."""
    url = os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)
    return create_engine(url, pool_pre_ping=True, future=True)


def json_param(conn: Connection, name: str) -> str:
    """Bind expression for a JSON column; PostgreSQL needs an explicit JSONB cast."""
    if conn.dialect.name == "postgresql":
        return f"CAST(:{name} AS JSONB)"
    return f":{name}"


def dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, sort_keys=True)


def load_json(value: Any, default: Any = None) -> Any:
    """JSON columns come back decoded from PostgreSQL and as text from SQLite."""
    if value is None:
        return default
    if isinstance(value, (bytes, str)):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return default
    return value
