from __future__ import annotations

from typing import Optional

import sqlalchemy as sa
from sqlmodel import SQLModel, Field


# append-only apart from is_latest_version (cleared when superseded) and
# status (WIP -> COMMITTED promotion); rows are deleted only by the WIP purge
class OrderVersion(SQLModel, table=True):
    __tablename__ = "order_versions"
    __table_args__ = (
        sa.UniqueConstraint("order_id", "version_number", name="uq_order_versions_order_id_version"),
        sa.Index("ix_order_versions_order_id_status", "order_id", "status"),
        sa.Index("ix_order_versions_status", "status"),
        # at most one latest version per order (partial unique index)
        sa.Index(
            "uq_order_versions_latest",
            "order_id",
            unique=True,
            sqlite_where=sa.text("is_latest_version = 1"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: str = Field(index=True)  # ORD-NNNNN
    version_number: int
    status: str  # WIP|COMMITTED
    form_version_id: str = Field(index=True)
    payload_json: str
    user_name: str
    timestamp: str

    # 0|1
    is_latest_version: int = Field(default=0, sa_column_kwargs={"server_default": "0"})
    previous_version_number: Optional[int] = Field(default=None)
    change_description: Optional[str] = Field(default=None)
