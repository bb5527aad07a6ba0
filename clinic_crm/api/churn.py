"""
FastAPI router for the churn prediction batch.

POST /churn/predict scores every active lead, writes the churn probability,
risk level and help score, and raises alerts for leads above the threshold.
Called by the scheduler; requires the x-cron-secret header when configured.
"""

import logging

from fastapi import APIRouter, HTTPException

from clinic_crm.core.dependencies import CronAuthDep
from clinic_crm.models.schemas import ChurnRunResult
from clinic_crm.services.churn import run_churn_prediction


logger = logging.getLogger(__name__)


router = APIRouter()


@router.post("/predict", response_model=ChurnRunResult)
async def predict_churn(_: CronAuthDep) -> ChurnRunResult:
    try:
        result = await run_churn_prediction()
        logger.info(
            f"Churn prediction: {result.leads_processed} leads, "
            f"{result.critical_alerts_created} alerts, {result.errors} errors"
        )
        return result
    except Exception as e:
        logger.exception("Error running churn prediction")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to run churn prediction: {str(e)}"
        )
