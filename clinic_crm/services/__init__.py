"""
Business logic services for the Clinic CRM backend.

Services:
- feegow_client: async HTTP client for the Feegow patient API
- patient_sync: paged, resumable import of Feegow patients as CRM leads
- scoring: team points per period and the champions summary
- churn: churn probability / help score heuristic for active leads
- notifications: notification and task writers shared by the automations
- voice_reports: Alexa webhook speech for sales results

Pure calculation functions (scoring formulas, churn heuristic, patient
mapping, speech builders) take plain values so they can be tested without a
database; the async entry points own their connection handling.
"""

# =============================================================================
# Feegow Patient Import
# =============================================================================

from clinic_crm.services.feegow_client import FeegowAPIError, FeegowClient
from clinic_crm.services.patient_sync import (
    SyncSetupError,
    map_patient,
    partition_patients,
    run_patient_sync,
    get_recent_sync_logs,
)

# =============================================================================
# Team Scoring
# =============================================================================

from clinic_crm.services.scoring import (
    ScoringWeights,
    PointRecords,
    calculate_team_points,
    get_period_window,
    find_period_leader,
    compute_champions,
    get_team_score,
    get_champions,
)

# =============================================================================
# Churn Heuristic
# =============================================================================

from clinic_crm.services.churn import (
    LeadSignals,
    calculate_churn_probability,
    calculate_help_score,
    classify_risk_level,
    score_lead,
    run_churn_prediction,
)

# =============================================================================
# Notifications and Voice Reports
# =============================================================================

from clinic_crm.services.notifications import (
    notification_exists,
    create_notification,
    open_task_exists,
    create_task,
)
from clinic_crm.services.voice_reports import handle_alexa_request


__all__ = [
    # Feegow
    'FeegowAPIError',
    'FeegowClient',
    'SyncSetupError',
    'map_patient',
    'partition_patients',
    'run_patient_sync',
    'get_recent_sync_logs',
    # Scoring
    'ScoringWeights',
    'PointRecords',
    'calculate_team_points',
    'get_period_window',
    'find_period_leader',
    'compute_champions',
    'get_team_score',
    'get_champions',
    # Churn
    'LeadSignals',
    'calculate_churn_probability',
    'calculate_help_score',
    'classify_risk_level',
    'score_lead',
    'run_churn_prediction',
    # Notifications
    'notification_exists',
    'create_notification',
    'open_task_exists',
    'create_task',
    # Voice
    'handle_alexa_request',
]
