"""
FastAPI router for the daily sales digest.

POST /digest/sales posts the Slack digest for a day (default yesterday) unless
it was already sent; force=true re-sends. GET /digest/sales/status reports
recent sends.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, HTTPException

from clinic_crm.core.dependencies import CronAuthDep
from clinic_crm.jobs.sales_digest import get_digest_status, send_sales_digest
from clinic_crm.models.schemas import DigestRequest


logger = logging.getLogger(__name__)


router = APIRouter()


@router.post("/sales")
async def post_sales_digest(
    _: CronAuthDep,
    request: Optional[DigestRequest] = Body(default=None),
) -> Dict[str, Any]:
    """
    Send the sales digest.

    Returns the job result dict. A missing webhook or a Slack error is
    reported with success=false and a 200 status, matching the job contract.
    """
    request = request or DigestRequest()
    try:
        return await send_sales_digest(digest_date=request.digest_date, force=request.force)
    except Exception as e:
        logger.exception("Error sending sales digest")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to send sales digest: {str(e)}"
        )


@router.get("/sales/status")
async def sales_digest_status() -> Dict[str, Any]:
    try:
        return await get_digest_status()
    except Exception as e:
        logger.exception("Error reading sales digest status")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to read digest status: {str(e)}"
        )
