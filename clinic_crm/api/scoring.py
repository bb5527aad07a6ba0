"""
FastAPI router for team scoring.

Implements GET /scoring/teams/{team_id} (point breakdown over a date range)
and GET /scoring/champions (month, semester and year leaders plus the
monthly champion history).
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from clinic_crm.models.schemas import ChampionsSummary, TeamScoreBreakdown
from clinic_crm.services.scoring import get_champions, get_team_score


logger = logging.getLogger(__name__)


router = APIRouter()


@router.get("/teams/{team_id}", response_model=TeamScoreBreakdown)
async def team_score(
    team_id: str,
    start: date = Query(..., description="First day of the range (inclusive)"),
    end: date = Query(..., description="Last day of the range (inclusive)"),
) -> TeamScoreBreakdown:
    """
    Point breakdown for one team between two dates.

    Raises:
        HTTPException 400: If start is after end.
    """
    if start > end:
        raise HTTPException(status_code=400, detail="start must be on or before end")

    try:
        return await get_team_score(team_id, start, end)
    except Exception as e:
        logger.exception(f"Error computing score for team {team_id}")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to compute team score: {str(e)}"
        )


@router.get("/champions", response_model=ChampionsSummary)
async def champions(
    as_of: Optional[date] = Query(default=None, description="Reference day, defaults to today"),
) -> ChampionsSummary:
    try:
        return await get_champions(as_of)
    except Exception as e:
        logger.exception("Error computing champions")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to compute champions: {str(e)}"
        )
