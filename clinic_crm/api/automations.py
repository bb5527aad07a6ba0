"""
FastAPI router for the scheduled automation handlers.

GET /automations lists the registered handlers with the parameters each one
accepts. POST /automations/{name} runs one handler; the JSON body (optional)
is passed to it as keyword arguments, e.g.

    POST /automations/stale-referral-leads  {"interval": "2h"}
    POST /automations/nps  {"action": "process_response", "lead_id": "...", "nps_score": 10}

Unknown names answer 404, arguments the handler does not take answer 422 and
arguments the handler rejects (ValueError) answer 400.
"""

import inspect
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, HTTPException

from clinic_crm.core.dependencies import CronAuthDep
from clinic_crm.jobs import AUTOMATIONS


logger = logging.getLogger(__name__)


router = APIRouter()


# Handler parameters that only exist for tests
_INTERNAL_PARAMS = {'now'}


def _public_params(handler) -> List[str]:
    return [
        name for name in inspect.signature(handler).parameters
        if name not in _INTERNAL_PARAMS
    ]


@router.get("")
async def list_automations() -> Dict[str, Any]:
    return {
        'automations': [
            {'name': name, 'params': _public_params(handler)}
            for name, handler in AUTOMATIONS.items()
        ]
    }


@router.post("/{name}")
async def run_automation(
    name: str,
    _: CronAuthDep,
    params: Optional[Dict[str, Any]] = Body(default=None),
) -> Dict[str, Any]:
    """
    Run one automation handler.

    Raises:
        HTTPException 404: Unknown automation name.
        HTTPException 422: Body keys the handler does not accept.
        HTTPException 400: Handler rejected the argument values.
        HTTPException 500: Handler failed.
    """
    handler = AUTOMATIONS.get(name)
    if handler is None:
        raise HTTPException(status_code=404, detail=f"Automation '{name}' not found")

    params = params or {}
    unknown = set(params) - set(_public_params(handler))
    if unknown:
        raise HTTPException(
            status_code=422,
            detail=f"Unsupported parameters for '{name}': {', '.join(sorted(unknown))}"
        )

    try:
        inspect.signature(handler).bind(**params)
    except TypeError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        logger.info(f"Running automation {name} with {params}")
        return await handler(**params)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"Error running automation {name}")
        raise HTTPException(
            status_code=500,
            detail=f"Automation '{name}' failed: {str(e)}"
        )
