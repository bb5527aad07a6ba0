"""
Pydantic request/response models for the Clinic CRM backend.

This module provides type-safe validation and serialization for the API
contracts of the scoring, sync, churn, digest and voice endpoints, plus the
mapped lead record produced by the Feegow import.

All models use Pydantic v2 syntax.
"""

from datetime import datetime, date as DateType
from typing import Dict, List, Optional, Any

from pydantic import BaseModel, Field, ConfigDict

from clinic_crm.models.enums import ChurnRiskLevel, ScoringPeriod, SyncStatus


# =============================================================================
# Team Scoring Models
# =============================================================================

class TeamScoreBreakdown(BaseModel):
    """
    Points earned by one team inside an inclusive date window.

    The total is always the sum of the five subtotals.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "team_id": "6f1c2e9a-1b4e-4d7a-9a55-0c0b7b1f6b10",
                "team_name": "Equipe Lipo",
                "start_date": "2026-03-01",
                "end_date": "2026-03-31",
                "revenue_total": 2000.0,
                "revenue_points": 2,
                "satisfaction_points": 5,
                "referral_points": 0,
                "indicator_points": 0,
                "card_points": -10,
                "total_points": -3
            }
        }
    )

    team_id: str = Field(..., description="Team identifier")
    team_name: Optional[str] = Field(default=None, description="Team display name")
    start_date: DateType = Field(..., description="Window start (inclusive)")
    end_date: DateType = Field(..., description="Window end (inclusive)")
    revenue_total: float = Field(default=0.0, description="Sum of revenue amounts in the window")
    revenue_points: int = Field(default=0, description="floor(revenue_total / 1000) x weight")
    satisfaction_points: int = Field(default=0, description="NPS promoters plus testimonial bonuses")
    referral_points: int = Field(default=0, description="Referral funnel points")
    indicator_points: int = Field(default=0, description="Ambassadors, unilovers and mentions")
    card_points: int = Field(default=0, description="Sum of card points, negative for penalties")
    total_points: int = Field(default=0, description="Sum of the five subtotals")


class PeriodLeader(BaseModel):
    """Team with the most points over a scoring period."""
    period: ScoringPeriod
    start_date: DateType
    end_date: DateType
    team_id: str
    team_name: Optional[str] = None
    points: int


class MonthlyChampion(BaseModel):
    """Champion of one month of the year; only months with a positive best total appear."""
    month: int = Field(..., ge=1, le=12)
    team_id: str
    team_name: Optional[str] = None
    points: int


class ChampionsSummary(BaseModel):
    """Leaders of the current month, semester and year plus the monthly champion history."""
    as_of: DateType
    month_leader: Optional[PeriodLeader] = None
    semester_leader: Optional[PeriodLeader] = None
    year_leader: Optional[PeriodLeader] = None
    monthly_history: List[MonthlyChampion] = Field(default_factory=list)
    standings: List[TeamScoreBreakdown] = Field(
        default_factory=list,
        description="Every team's breakdown for the current month, best first"
    )


# =============================================================================
# Feegow Sync Models
# =============================================================================

class LeadUpsert(BaseModel):
    """
    A Feegow patient mapped onto the local lead schema.

    Keyed by feegow_id; created on first sight and updated on later runs.
    """
    feegow_id: str = Field(..., min_length=1)
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    cpf: Optional[str] = None
    prontuario: Optional[str] = None
    feegow_data: Dict[str, Any] = Field(default_factory=dict)
    last_feegow_sync: datetime
    source: str = "feegow"


class SyncRequest(BaseModel):
    """Body of POST /sync/feegow."""
    model_config = ConfigDict(
        json_schema_extra={"example": {"full_sync": False, "max_pages": 5}}
    )

    full_sync: bool = Field(
        default=False,
        description="Start from the first page instead of resuming from the last cursor"
    )
    max_pages: Optional[int] = Field(
        default=None,
        ge=1,
        description="Override of the page ceiling for this run"
    )


class SyncSummary(BaseModel):
    """Totals and resumption state of one sync run."""
    log_id: Optional[str] = None
    status: SyncStatus
    full_sync: bool = False
    start_page: int = 0
    next_page: Optional[int] = Field(
        default=None,
        description="Page the next run resumes from, None when the walk finished"
    )
    pages_processed: int = 0
    total_fetched: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    has_more: bool = False
    error: Optional[str] = None


# =============================================================================
# Churn Models
# =============================================================================

class ChurnPrediction(BaseModel):
    """Scores computed for one active lead."""
    lead_id: str
    name: Optional[str] = None
    churn_probability: float = Field(..., ge=0.0, le=1.0)
    risk_level: ChurnRiskLevel
    help_score: int = Field(..., ge=0, le=100)
    days_without_contact: int


class ChurnRunResult(BaseModel):
    """Outcome of a churn prediction batch."""
    leads_processed: int = 0
    high_risk_leads: int = 0
    critical_alerts_created: int = 0
    errors: int = 0
    avg_churn_probability: float = 0.0
    details: List[ChurnPrediction] = Field(default_factory=list)


# =============================================================================
# Digest Models
# =============================================================================

class DigestRequest(BaseModel):
    """Body of POST /digest/sales."""
    digest_date: Optional[DateType] = Field(
        default=None,
        description="Day to report on, defaults to yesterday"
    )
    force: bool = Field(default=False, description="Send even if already sent for the date")


# =============================================================================
# Alexa Models
# =============================================================================

class AlexaIntent(BaseModel):
    model_config = ConfigDict(extra='allow')

    name: str
    slots: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


class AlexaRequestBody(BaseModel):
    model_config = ConfigDict(extra='allow')

    type: str
    intent: Optional[AlexaIntent] = None
    locale: Optional[str] = None


class AlexaRequest(BaseModel):
    """
    Incoming Alexa skill envelope.

    Only the request part is read; session and context are accepted and ignored.
    """
    model_config = ConfigDict(extra='allow')

    version: Optional[str] = None
    request: AlexaRequestBody


class OutputSpeech(BaseModel):
    type: str = "PlainText"
    text: str


class AlexaResponseBody(BaseModel):
    outputSpeech: OutputSpeech
    shouldEndSession: bool = True


class AlexaResponse(BaseModel):
    """Fixed-shape speech response returned to Alexa."""
    version: str = "1.0"
    response: AlexaResponseBody

    @classmethod
    def speak(cls, text: str) -> "AlexaResponse":
        return cls(response=AlexaResponseBody(outputSpeech=OutputSpeech(text=text)))
