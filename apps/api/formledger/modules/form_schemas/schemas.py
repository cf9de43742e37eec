from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SchemaCreateIn(BaseModel):
    form_version_id: str = Field(min_length=1, max_length=20, description="vMAJOR.MINOR.PATCH")
    form_name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    field_definitions: Dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[str] = None


class SchemaOut(BaseModel):
    form_version_id: str
    form_name: str
    description: Optional[str] = None
    field_definitions: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = False
    created_date: Optional[str] = None
    created_by: Optional[str] = None
    deprecated_date: Optional[str] = None
    is_deprecated: bool = False


class SchemaListOut(BaseModel):
    items: List[SchemaOut]
    total: int
