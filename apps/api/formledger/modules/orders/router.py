from __future__ import annotations

from typing import List

from fastapi import APIRouter, Path, Request

from .schemas import OrderCreateIn, OrderHistoryOut, OrderListOut, OrderVersionOut
from .service import OrderVersionService

router = APIRouter(prefix="/v1/orders", tags=["orders"])


def _svc(request: Request) -> OrderVersionService:
    return request.app.state.order_service


@router.get("", response_model=OrderListOut)
def api_list_orders(request: Request) -> OrderListOut:
    items = _svc(request).list_orders()
    return OrderListOut(items=items, total=len(items))


@router.post("", response_model=OrderVersionOut, status_code=201)
def api_create_order_version(body: OrderCreateIn, request: Request) -> OrderVersionOut:
    user_name = body.user_name or request.headers.get("X-User-Name") or "anonymous"
    out = _svc(request).create_version(
        order_id=body.order_id,
        form_version_id=body.form_version_id,
        payload=body.data,
        user_name=user_name,
        final_save=body.final_save,
        change_description=body.change_description,
    )
    return OrderVersionOut(**out)


@router.get("/{order_id}", response_model=OrderVersionOut)
def api_get_latest(order_id: str, request: Request) -> OrderVersionOut:
    return OrderVersionOut(**_svc(request).get_latest(order_id))


@router.get("/{order_id}/versions", response_model=OrderHistoryOut)
def api_get_history(order_id: str, request: Request) -> OrderHistoryOut:
    return OrderHistoryOut(**_svc(request).get_history(order_id))


@router.get("/{order_id}/versions/{version_number}", response_model=OrderVersionOut)
def api_get_version(request: Request, order_id: str, version_number: int = Path(..., ge=1)) -> OrderVersionOut:
    return OrderVersionOut(**_svc(request).get_version(order_id, version_number))


@router.get("/{order_id}/committed-versions", response_model=List[OrderVersionOut])
def api_list_committed(order_id: str, request: Request) -> List[OrderVersionOut]:
    return [OrderVersionOut(**v) for v in _svc(request).list_committed(order_id)]


@router.post("/{order_id}/versions/{version_number}/promote", response_model=OrderVersionOut)
def api_promote(request: Request, order_id: str, version_number: int = Path(..., ge=1)) -> OrderVersionOut:
    return OrderVersionOut(**_svc(request).promote(order_id, version_number))
