"""
FastAPI router for the Alexa skill webhook.

POST /alexa answers every request with a spoken pt-BR result. Alexa always
expects the speech envelope, so a failure still answers with an apology in
that shape (status 500, plus an error key).
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from clinic_crm.models.schemas import AlexaRequest, AlexaResponse
from clinic_crm.services.voice_reports import ERROR_TEXT, handle_alexa_request


logger = logging.getLogger(__name__)


router = APIRouter()


@router.post("", response_model=AlexaResponse)
async def alexa_webhook(request: AlexaRequest):
    try:
        return await handle_alexa_request(request)
    except Exception as e:
        logger.error(f"Alexa request failed: {e}", exc_info=True)
        content = AlexaResponse.speak(ERROR_TEXT).model_dump()
        content['error'] = str(e)
        return JSONResponse(status_code=500, content=content)
