from __future__ import annotations

from typing import Optional

import sqlalchemy as sa
from sqlmodel import SQLModel, Field


# one row per purge run (audit trail)
class PurgeRun(SQLModel, table=True):
    __tablename__ = "purge_runs"
    __table_args__ = (sa.Index("ix_purge_runs_started_at", "started_at"),)

    purge_id: str = Field(primary_key=True)  # PURGE-YYYYMMDD-HHMMSS-xxxx
    run_trigger: str  # scheduled|manual
    status: str  # SUCCESS|PARTIAL|FAILED|INTERRUPTED
    started_at: str
    finished_at: Optional[str] = Field(default=None)
    duration_ms: int = Field(default=0)
    orders_examined: int = Field(default=0)
    versions_deleted: int = Field(default=0)
    versions_retained: int = Field(default=0)
    failures: int = Field(default=0)
    details_json: str = Field(default="[]")
    error_message: Optional[str] = Field(default=None)


# run-level lease; a row with expires_at in the future means a run is in flight
class JobLock(SQLModel, table=True):
    __tablename__ = "job_locks"

    name: str = Field(primary_key=True)
    holder: str
    acquired_at: str
    expires_at: float
