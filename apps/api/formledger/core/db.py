"""
DB utilities (sqlite default).

Defaults:
- DATABASE_URL: sqlite:///./data/app.db

Tables are declared as SQLModel models in each module's models.py; data access
goes through plain sqlite3 connections with explicit transactions.
"""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel

from formledger.core import settings


def get_database_url() -> str:
    return settings.DATABASE_URL


def _repo_root() -> Path:
    # apps/api/formledger/core/db.py -> repo root = parents[4]
    return Path(__file__).resolve().parents[4]


def resolve_sqlite_path(database_url: str) -> Optional[Path]:
    if not database_url.startswith("sqlite:///"):
        return None
    p = database_url[len("sqlite:///") :]

    # absolute unix
    if p.startswith("/"):
        return Path(p)

    # absolute windows drive, both C:/ and C:\ forms
    if len(p) >= 3 and p[1] == ":" and (p[2] == "/" or p[2] == "\\"):
        return Path(p)

    # relative -> repo root
    return (_repo_root() / p).resolve()


def sqlite_path(database_url: Optional[str] = None) -> Path:
    url = database_url or get_database_url()
    sp = resolve_sqlite_path(url)
    if sp is None:
        raise ValueError(f"Only sqlite supported for now, got DATABASE_URL={url!r}")
    return sp


def connect(database_url: Optional[str] = None, timeout: Optional[float] = None) -> sqlite3.Connection:
    path = sqlite_path(database_url)
    conn = sqlite3.connect(
        str(path),
        timeout=float(timeout if timeout is not None else settings.DB_TIMEOUT_SECONDS),
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


@contextmanager
def write_transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    # BEGIN IMMEDIATE takes the database write lock up front, so reads done
    # inside the block cannot be invalidated by another writer before commit.
    conn.execute("BEGIN IMMEDIATE;")
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    else:
        conn.commit()


def _engine_for(database_url: str) -> Engine:
    connect_args = {}
    url = database_url
    if url.startswith("sqlite:///"):
        connect_args = {"check_same_thread": False}
        sp = resolve_sqlite_path(url)
        if sp is not None:
            sp.parent.mkdir(parents=True, exist_ok=True)
            url = "sqlite:///" + sp.as_posix()
    return create_engine(url, future=True, connect_args=connect_args)


def init_db(database_url: Optional[str] = None) -> None:
    """Create every table and index declared on SQLModel.metadata (idempotent)."""
    # import for side effects: registers the table models on the metadata
    from formledger.modules.form_schemas import models as _schema_models  # noqa: F401
    from formledger.modules.orders import models as _order_models  # noqa: F401
    from formledger.modules.purge import models as _purge_models  # noqa: F401

    engine = _engine_for(database_url or get_database_url())
    try:
        SQLModel.metadata.create_all(engine)
        with engine.connect() as conn:
            conn.execute(text("PRAGMA journal_mode=WAL;"))
    finally:
        engine.dispose()


def db_health(database_url: Optional[str] = None) -> Dict[str, Any]:
    url = database_url or get_database_url()
    kind = "sqlite" if url.startswith("sqlite") else "unknown"
    sp = resolve_sqlite_path(url)
    path = str(sp.as_posix()) if sp is not None else url

    try:
        conn = connect(url, timeout=2)
        try:
            conn.execute("SELECT 1").fetchone()
        finally:
            conn.close()
        return {"status": "ok", "kind": kind, "path": path}
    except Exception as e:
        return {"status": "error", "kind": kind, "path": path, "error": str(e)}
