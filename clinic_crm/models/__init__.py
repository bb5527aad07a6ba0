"""
Data models for the Clinic CRM backend.

Re-exports enums and Pydantic schemas so callers can write:

    from clinic_crm.models import ChurnRiskLevel, TeamScoreBreakdown
"""

from clinic_crm.models.enums import (
    ScoringPeriod,
    ReviewTier,
    LeadTemperature,
    ChurnRiskLevel,
    SyncStatus,
    TaskPriority,
    NpsCategory,
    NotificationType,
)

from clinic_crm.models.schemas import (
    # Team scoring
    TeamScoreBreakdown,
    PeriodLeader,
    MonthlyChampion,
    ChampionsSummary,
    # Feegow sync
    LeadUpsert,
    SyncRequest,
    SyncSummary,
    # Churn
    ChurnPrediction,
    ChurnRunResult,
    # Digest
    DigestRequest,
    # Alexa
    AlexaIntent,
    AlexaRequestBody,
    AlexaRequest,
    OutputSpeech,
    AlexaResponseBody,
    AlexaResponse,
)

__all__ = [
    # Enums
    'ScoringPeriod',
    'ReviewTier',
    'LeadTemperature',
    'ChurnRiskLevel',
    'SyncStatus',
    'TaskPriority',
    'NpsCategory',
    'NotificationType',
    # Team scoring
    'TeamScoreBreakdown',
    'PeriodLeader',
    'MonthlyChampion',
    'ChampionsSummary',
    # Feegow sync
    'LeadUpsert',
    'SyncRequest',
    'SyncSummary',
    # Churn
    'ChurnPrediction',
    'ChurnRunResult',
    # Digest
    'DigestRequest',
    # Alexa
    'AlexaIntent',
    'AlexaRequestBody',
    'AlexaRequest',
    'OutputSpeech',
    'AlexaResponseBody',
    'AlexaResponse',
]
