"""
Enumeration definitions for the Clinic CRM backend.

All enums inherit from both `str` and `Enum` so they serialize as plain strings
in Pydantic models and can be passed straight into SQL parameters via `.value`.
"""

from enum import Enum


class ScoringPeriod(str, Enum):
    """
    Calendar windows over which team points are totalled.

    Semesters are January-June and July-December.
    """
    MONTH = "month"
    SEMESTER = "semester"
    YEAR = "year"


class ReviewTier(str, Enum):
    """Testimonial tiers, each worth a fixed bonus."""
    GOOGLE = "google"
    VIDEO = "video"
    GOLD = "gold"


class LeadTemperature(str, Enum):
    HOT = "hot"
    WARM = "warm"
    COLD = "cold"


class ChurnRiskLevel(str, Enum):
    """
    Risk label derived from the churn probability.

    - critical: probability >= 0.7
    - high: probability >= 0.5
    - medium: probability >= 0.3
    - low: anything below
    """
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SyncStatus(str, Enum):
    """
    Lifecycle of a Feegow sync-log row.

    RUNNING is written when a run starts. IN_PROGRESS marks a run that hit its
    page ceiling with pages left; the next run resumes from its next_page.
    FAILED runs also carry next_page so the failed page is retried.
    """
    RUNNING = "running"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskPriority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class NpsCategory(str, Enum):
    """
    NPS respondent category.

    - promotor: score >= 9
    - neutro: score >= 7
    - detrator: below 7
    """
    PROMOTER = "promotor"
    NEUTRAL = "neutro"
    DETRACTOR = "detrator"


class NotificationType(str, Enum):
    """Notification type tags written to the notifications table."""
    CHURN_RISK = "churn_risk"
    LEAD_REMINDER_2H = "lead_reminder_2h"
    LEAD_REMINDER_24H = "lead_reminder_24h"
    STALE_LEAD = "stale_lead"
    LEAD_ESCALATED = "lead_escalated"
    LEAD_RECEIVED = "lead_received"
    NPS_PROMOTER = "nps_promoter"
    NPS_DETRACTOR = "nps_detractor"
    SURGERY_TOMORROW = "surgery_tomorrow"
    SURGERY_TODAY = "surgery_today"
    POST_SURGERY = "post_surgery"
    CAMPAIGN_DEADLINE = "campaign_deadline"
    CAMPAIGN_STARTED = "campaign_started"
