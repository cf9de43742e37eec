from __future__ import annotations

from typing import Optional

import sqlalchemy as sa
from sqlmodel import SQLModel, Field


# field_definitions_json is immutable after insert; new content needs a new form_version_id
class FormSchema(SQLModel, table=True):
    __tablename__ = "form_schemas"
    __table_args__ = (
        sa.Index("ix_form_schemas_created_date", "created_date"),
        # at most one active schema (partial unique index)
        sa.Index(
            "uq_form_schemas_active",
            "is_active",
            unique=True,
            sqlite_where=sa.text("is_active = 1"),
        ),
    )

    form_version_id: str = Field(primary_key=True)  # vMAJOR.MINOR.PATCH
    form_name: str
    description: Optional[str] = Field(default=None)
    field_definitions_json: str

    # 0|1
    is_active: int = Field(default=0, sa_column_kwargs={"server_default": "0"})

    created_date: str
    created_by: Optional[str] = Field(default=None)
    deprecated_date: Optional[str] = Field(default=None)
