"""
API package initialization.

FastAPI router modules for the Clinic CRM backend:
- sync: Feegow patient import and its status
- scoring: team points and champions
- churn: churn prediction batch
- automations: scheduled notification/task handlers
- digest: daily Slack sales digest
- alexa: voice-assistant webhook
"""

from fastapi import APIRouter

from clinic_crm.api.sync import router as sync_router
from clinic_crm.api.scoring import router as scoring_router
from clinic_crm.api.churn import router as churn_router
from clinic_crm.api.automations import router as automations_router
from clinic_crm.api.digest import router as digest_router
from clinic_crm.api.alexa import router as alexa_router

# Create main API router
api_router = APIRouter()

api_router.include_router(sync_router, prefix="/sync", tags=["sync"])
api_router.include_router(scoring_router, prefix="/scoring", tags=["scoring"])
api_router.include_router(churn_router, prefix="/churn", tags=["churn"])
api_router.include_router(automations_router, prefix="/automations", tags=["automations"])
api_router.include_router(digest_router, prefix="/digest", tags=["digest"])
api_router.include_router(alexa_router, prefix="/alexa", tags=["alexa"])

__all__ = [
    "api_router",
    "sync_router",
    "scoring_router",
    "churn_router",
    "automations_router",
    "digest_router",
    "alexa_router",
]
