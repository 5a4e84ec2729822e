"""Status API endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from trustsync.api.dependencies import get_status_service
from trustsync.services.status_service import StatusService

router = APIRouter(prefix="/api/status", tags=["Status"])


@router.get("")
def get_status(status: StatusService = Depends(get_status_service)):
    """
    Get reconciliation status.

    Returns the run mode, which triggers are running, recent passes and the
    last convergence outcome of every target.
    """
    return status.snapshot()


@router.get("/targets/{target_id}")
def get_target_status(target_id: str, status: StatusService = Depends(get_status_service)):
    """Get the last convergence outcome of one target."""
    outcome = status.last_outcome(target_id)
    if outcome is None:
        raise HTTPException(status_code=404, detail=f"No convergence recorded for target {target_id}")
    return outcome
