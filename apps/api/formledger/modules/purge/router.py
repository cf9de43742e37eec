from fastapi import APIRouter, Query, Request

from .schemas import PurgeAuditListOut, PurgeRunOut

router = APIRouter(prefix="/v1/purge", tags=["purge"])


@router.post("/run", response_model=PurgeRunOut)
def purge_run(request: Request):
    rid = getattr(getattr(request, "state", None), "request_id", None)
    # same engine and lock as the scheduled trigger; 409 if a run is in flight
    return request.app.state.purge_scheduler.trigger_now(request_id=rid)


@router.get("/runs", response_model=PurgeAuditListOut)
def purge_runs(request: Request, limit: int = Query(20, ge=1, le=200)):
    return PurgeAuditListOut(items=request.app.state.purge_audit.list_runs(limit=limit))
