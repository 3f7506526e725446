from fastapi import APIRouter, Depends

from mcqgen.routes.deps import require_admin
from mcqgen.services.observability import observability


router = APIRouter(prefix="/internal", tags=["internal"], dependencies=[Depends(require_admin)])


@router.get("/metrics", summary="Internal metrics", description="Returns in-memory counters, call timers, and recent generation runs.")
def get_metrics():
    return observability.snapshot()


@router.post("/metrics/reset", summary="Reset internal metrics", description="Clears in-memory counters and run traces (admin-protected when ADMIN_TOKEN is set).")
def reset_metrics():
    observability.reset()
    return {"status": "ok"}
