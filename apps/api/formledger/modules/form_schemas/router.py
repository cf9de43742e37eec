from __future__ import annotations

from fastapi import APIRouter, Request, Response

from .schemas import SchemaCreateIn, SchemaListOut, SchemaOut
from .service import SchemaActivationService

router = APIRouter(prefix="/v1/schemas", tags=["schemas"])


def _svc(request: Request) -> SchemaActivationService:
    return request.app.state.schema_service


@router.get("", response_model=SchemaListOut)
def api_list_schemas(request: Request) -> SchemaListOut:
    items = _svc(request).list_schemas()
    return SchemaListOut(items=items, total=len(items))


# declared before /{form_version_id} so "active" is not read as an id
@router.get("/active", response_model=SchemaOut)
def api_get_active_schema(request: Request) -> SchemaOut:
    return SchemaOut(**_svc(request).get_active())


@router.get("/{form_version_id}", response_model=SchemaOut)
def api_get_schema(form_version_id: str, request: Request) -> SchemaOut:
    return SchemaOut(**_svc(request).get_schema(form_version_id))


@router.post("", response_model=SchemaOut, status_code=201)
def api_create_schema(body: SchemaCreateIn, request: Request) -> SchemaOut:
    created_by = body.created_by or request.headers.get("X-User-Name") or "anonymous"
    out = _svc(request).create_schema(
        form_version_id=body.form_version_id,
        form_name=body.form_name,
        description=body.description,
        field_definitions=body.field_definitions,
        created_by=created_by,
    )
    return SchemaOut(**out)


@router.put("/{form_version_id}/activate", response_model=SchemaOut)
def api_activate_schema(form_version_id: str, request: Request) -> SchemaOut:
    return SchemaOut(**_svc(request).activate(form_version_id))


@router.delete("/{form_version_id}", status_code=204)
def api_deprecate_schema(form_version_id: str, request: Request) -> Response:
    _svc(request).deprecate(form_version_id)
    return Response(status_code=204)
