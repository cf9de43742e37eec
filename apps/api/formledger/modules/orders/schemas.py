from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

OrderStatus = Literal["WIP", "COMMITTED"]


class OrderCreateIn(BaseModel):
    order_id: Optional[str] = Field(default=None, description="ORD-NNNNN; generated for drafts when missing")
    form_version_id: Optional[str] = Field(default=None, description="defaults to the active schema")
    data: Dict[str, Any] = Field(default_factory=dict)
    final_save: bool = False
    change_description: Optional[str] = Field(default=None, max_length=500)
    user_name: Optional[str] = None


class OrderVersionOut(BaseModel):
    order_id: str
    version_number: int
    status: OrderStatus
    form_version_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    user_name: str
    timestamp: str
    is_latest_version: bool
    previous_version_number: Optional[int] = None
    change_description: Optional[str] = None


class VersionSummaryOut(BaseModel):
    version_number: int
    status: OrderStatus
    form_version_id: str
    user_name: str
    timestamp: str
    is_latest_version: bool
    previous_version_number: Optional[int] = None
    change_description: Optional[str] = None


class OrderHistoryOut(BaseModel):
    order_id: str
    total_versions: int
    committed_versions: int
    wip_versions: int
    versions: List[VersionSummaryOut] = Field(default_factory=list)


class OrderSummaryOut(BaseModel):
    order_id: str
    latest_version_number: int
    status: OrderStatus
    form_version_id: str
    user_name: str
    timestamp: str


class OrderListOut(BaseModel):
    items: List[OrderSummaryOut]
    total: int
