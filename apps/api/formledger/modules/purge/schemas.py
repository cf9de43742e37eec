from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class PurgeFailureOut(BaseModel):
    order_id: str
    version_number: Optional[int] = None
    error: str
    message: str


class PurgeOrderDetailOut(BaseModel):
    order_id: str
    deleted_versions: List[int] = Field(default_factory=list)
    skipped_versions: List[int] = Field(default_factory=list)
    retained_wip_version: Optional[int] = None
    committed_versions_count: Optional[int] = None


class PurgeRunOut(BaseModel):
    purge_id: str
    trigger: str
    status: str
    started_at: str
    finished_at: Optional[str] = None
    duration_ms: int = 0
    orders_examined: int = 0
    versions_deleted: int = 0
    versions_retained: int = 0
    versions_skipped: int = 0
    failures: List[PurgeFailureOut] = Field(default_factory=list)
    details: List[PurgeOrderDetailOut] = Field(default_factory=list)
    error_message: Optional[str] = None


class PurgeAuditOut(BaseModel):
    purge_id: str
    trigger: str
    status: str
    started_at: str
    finished_at: Optional[str] = None
    duration_ms: int = 0
    orders_examined: int = 0
    versions_deleted: int = 0
    versions_retained: int = 0
    failures: int = 0
    details: List[PurgeOrderDetailOut] = Field(default_factory=list)
    error_message: Optional[str] = None


class PurgeAuditListOut(BaseModel):
    items: List[PurgeAuditOut]
