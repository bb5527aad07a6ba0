"""
FastAPI router for the Feegow patient import.

Implements POST /sync/feegow (run one sync batch) and GET /sync/feegow/status
(recent sync-log rows). The POST is called by the scheduler every few minutes
and requires the x-cron-secret header when CRON_SECRET is configured.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, HTTPException, Query

from clinic_crm.core.dependencies import CronAuthDep
from clinic_crm.models.schemas import SyncRequest, SyncSummary
from clinic_crm.services.patient_sync import get_recent_sync_logs, run_patient_sync


logger = logging.getLogger(__name__)


router = APIRouter()


@router.post("/feegow", response_model=SyncSummary)
async def sync_feegow(
    _: CronAuthDep,
    request: Optional[SyncRequest] = Body(default=None),
) -> SyncSummary:
    """
    Run one batch of the Feegow patient import.

    Without a body the run resumes from the last recorded cursor. A run that
    fails part way still answers 200 with status=failed; the sync log keeps
    the page to retry.
    """
    request = request or SyncRequest()
    try:
        return await run_patient_sync(
            full_sync=request.full_sync,
            max_pages=request.max_pages,
            triggered_by='api',
        )
    except Exception as e:
        logger.exception("Error running Feegow sync")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to run Feegow sync: {str(e)}"
        )


@router.get("/feegow/status")
async def sync_feegow_status(
    limit: int = Query(default=10, ge=1, le=100, description="Number of sync-log rows to return"),
) -> Dict[str, Any]:
    """Most recent sync runs, newest first."""
    try:
        logs = await get_recent_sync_logs(limit)
        return {'logs': logs, 'last': logs[0] if logs else None}
    except Exception as e:
        logger.exception("Error reading Feegow sync status")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to read sync status: {str(e)}"
        )
