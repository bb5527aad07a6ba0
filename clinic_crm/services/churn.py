"""
Churn probability and help score heuristic for active leads.

This is a rule table, not a trained model. Each factor adds a fixed
contribution and the sums are clamped:

Churn probability (clamped to [0, 1]):
    days since last activity   > 60: +0.40   > 30: +0.25   > 14: +0.10
    negative sentiment ratio  >= 0.5: +0.25  > 0.3: +0.15
    interaction count          < 3: +0.15    < 5: +0.08
    lead flagged stale         +0.15
    temperature cold           +0.10

Help score (clamped to [0, 100]):
    min(floor(days since creation / 3), 20)
    min(interactions x 3, 30)
    round(positive ratio x 100 x 0.25)
    min(round((estimated_value + contract_value) / 1000), 15)
    temperature hot +10, warm +5

A lead with no recorded activity is treated as last touched 90 days ago.

The batch job writes both scores and a risk label back onto each lead and
raises a churn_risk notification for the assignee when the probability
reaches the alert threshold, at most once per lead per dedup window.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, List, Mapping, Optional

import numpy as np

from clinic_crm.core.config import get_settings
from clinic_crm.core.database import get_db_pool
from clinic_crm.models.enums import ChurnRiskLevel, LeadTemperature, NotificationType
from clinic_crm.models.schemas import ChurnPrediction, ChurnRunResult
from clinic_crm.services.notifications import create_notification, notification_exists
from clinic_crm.sql.lead_queries import CHURN_CANDIDATES_QUERY, UPDATE_CHURN_SCORES_SQL


logger = logging.getLogger(__name__)


# =============================================================================
# Rule Table
# =============================================================================

MISSING_ACTIVITY_DAYS = 90

# (days strictly greater than, contribution), checked in order
DAYS_WITHOUT_CONTACT_TIERS = ((60, 0.40), (30, 0.25), (14, 0.10))

# (interactions strictly less than, contribution), checked in order
INTERACTION_COUNT_TIERS = ((3, 0.15), (5, 0.08))

NEGATIVE_RATIO_HIGH = 0.5
NEGATIVE_RATIO_HIGH_WEIGHT = 0.25
NEGATIVE_RATIO_MEDIUM = 0.3
NEGATIVE_RATIO_MEDIUM_WEIGHT = 0.15

STALE_WEIGHT = 0.15
COLD_WEIGHT = 0.10

# Probability cut-offs for the risk label, highest first
RISK_LEVEL_CUTOFFS = (
    (0.7, ChurnRiskLevel.CRITICAL),
    (0.5, ChurnRiskLevel.HIGH),
    (0.3, ChurnRiskLevel.MEDIUM),
)

HIGH_RISK_THRESHOLD = 0.5


# =============================================================================
# Input Data Classes
# =============================================================================

@dataclass
class LeadSignals:
    """
    Everything the heuristic reads about one lead.

    Built from a CHURN_CANDIDATES_QUERY row, which already carries the
    interaction sentiment counts.
    """
    lead_id: str
    name: Optional[str] = None
    assigned_to: Optional[str] = None
    temperature: Optional[str] = None
    is_stale: bool = False
    last_activity_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    estimated_value: float = 0.0
    contract_value: float = 0.0
    interactions: int = 0
    positive_interactions: int = 0
    negative_interactions: int = 0

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> "LeadSignals":
        return cls(
            lead_id=str(row['id']),
            name=row.get('name'),
            assigned_to=row.get('assigned_to'),
            temperature=row.get('temperature'),
            is_stale=bool(row.get('is_stale') or False),
            last_activity_at=row.get('last_activity_at'),
            created_at=row.get('created_at'),
            estimated_value=float(row.get('estimated_value') or 0),
            contract_value=float(row.get('contract_value') or 0),
            interactions=int(row.get('interactions') or 0),
            positive_interactions=int(row.get('positive_interactions') or 0),
            negative_interactions=int(row.get('negative_interactions') or 0),
        )


# =============================================================================
# Scoring Functions
# =============================================================================

def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def as_utc(moment: datetime) -> datetime:
    """Read a naive timestamp as UTC; aware ones pass through."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def days_between(earlier: datetime, now: datetime) -> int:
    """Whole days elapsed from earlier to now; naive datetimes are taken as UTC."""
    elapsed = as_utc(now) - as_utc(earlier)
    return math.floor(elapsed.total_seconds() / 86400)


def calculate_churn_probability(
    days_without_contact: int,
    negative_ratio: float,
    interactions: int,
    is_stale: bool,
    temperature: Optional[str]
) -> float:
    """
    Additive churn probability, clamped to [0, 1].

    Example:
        >>> calculate_churn_probability(65, 0.5, 2, True, 'cold')
        1.0
    """
    probability = 0.0

    for threshold, weight in DAYS_WITHOUT_CONTACT_TIERS:
        if days_without_contact > threshold:
            probability += weight
            break

    if negative_ratio >= NEGATIVE_RATIO_HIGH:
        probability += NEGATIVE_RATIO_HIGH_WEIGHT
    elif negative_ratio > NEGATIVE_RATIO_MEDIUM:
        probability += NEGATIVE_RATIO_MEDIUM_WEIGHT

    for threshold, weight in INTERACTION_COUNT_TIERS:
        if interactions < threshold:
            probability += weight
            break

    if is_stale:
        probability += STALE_WEIGHT

    if temperature == LeadTemperature.COLD.value:
        probability += COLD_WEIGHT

    # 0.25 + 0.15 + 0.15 + 0.15 must compare equal to the 0.7 cut-off
    return round(float(np.clip(probability, 0.0, 1.0)), 4)


def calculate_help_score(
    days_since_created: int,
    interactions: int,
    positive_ratio: float,
    total_value: float,
    temperature: Optional[str]
) -> int:
    """Additive engagement score, clamped to [0, 100]."""
    score = min(days_since_created // 3, 20)
    score += min(interactions * 3, 30)
    score += _round_half_up(positive_ratio * 100 * 0.25)
    score += min(_round_half_up(total_value / 1000), 15)

    if temperature == LeadTemperature.HOT.value:
        score += 10
    elif temperature == LeadTemperature.WARM.value:
        score += 5

    return int(np.clip(score, 0, 100))


def classify_risk_level(probability: float) -> ChurnRiskLevel:
    for cutoff, level in RISK_LEVEL_CUTOFFS:
        if probability >= cutoff:
            return level
    return ChurnRiskLevel.LOW


def score_lead(signals: LeadSignals, now: datetime) -> ChurnPrediction:
    """
    Apply both formulas to one lead.

    Args:
        signals: Lead attributes and interaction counts.
        now: Reference instant for elapsed-time factors.

    Returns:
        ChurnPrediction with probability, risk label and help score.
    """
    last_activity = signals.last_activity_at or (now - timedelta(days=MISSING_ACTIVITY_DAYS))
    days_without_contact = days_between(last_activity, now)
    days_since_created = days_between(signals.created_at, now) if signals.created_at else 0

    if signals.interactions > 0:
        negative_ratio = signals.negative_interactions / signals.interactions
        positive_ratio = signals.positive_interactions / signals.interactions
    else:
        negative_ratio = 0.0
        positive_ratio = 0.0

    probability = calculate_churn_probability(
        days_without_contact,
        negative_ratio,
        signals.interactions,
        signals.is_stale,
        signals.temperature,
    )
    help_score = calculate_help_score(
        days_since_created,
        signals.interactions,
        positive_ratio,
        signals.estimated_value + signals.contract_value,
        signals.temperature,
    )

    return ChurnPrediction(
        lead_id=signals.lead_id,
        name=signals.name,
        churn_probability=probability,
        risk_level=classify_risk_level(probability),
        help_score=help_score,
        days_without_contact=days_without_contact,
    )


# =============================================================================
# Batch Job
# =============================================================================

async def run_churn_prediction(now: Optional[datetime] = None) -> ChurnRunResult:
    """
    Score every active lead, persist the scores and raise churn alerts.

    A failure on one lead is logged and counted; the batch continues with the
    next lead. Writes already made for a lead are not rolled back.

    Args:
        now: Reference instant, defaults to the current UTC time.

    Returns:
        ChurnRunResult with counters, the average probability and per-lead details.
    """
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    dedup_since = now - timedelta(days=settings.churn_alert_dedup_days)

    result = ChurnRunResult()
    probabilities: List[float] = []

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(CHURN_CANDIDATES_QUERY)
        logger.info(f"Scoring churn for {len(rows)} active leads")

        for row in rows:
            signals = LeadSignals.from_record(row)
            try:
                prediction = score_lead(signals, now)

                await conn.execute(
                    UPDATE_CHURN_SCORES_SQL,
                    signals.lead_id,
                    prediction.churn_probability,
                    prediction.risk_level.value,
                    prediction.help_score,
                    now,
                )

                if prediction.churn_probability >= settings.churn_alert_threshold and signals.assigned_to:
                    already_alerted = await notification_exists(
                        conn,
                        NotificationType.CHURN_RISK.value,
                        signals.lead_id,
                        since=dedup_since,
                    )
                    if not already_alerted:
                        await create_notification(
                            conn,
                            notification_type=NotificationType.CHURN_RISK.value,
                            user_id=signals.assigned_to,
                            title="⚠️ Risco de churn elevado",
                            message=(
                                f"O lead {signals.name or 'sem nome'} tem "
                                f"{round(prediction.churn_probability * 100)}% de chance de esfriar. "
                                f"Entre em contato o quanto antes."
                            ),
                            metadata={
                                'lead_id': signals.lead_id,
                                'churn_probability': prediction.churn_probability,
                                'risk_level': prediction.risk_level.value,
                            },
                        )
                        result.critical_alerts_created += 1
            except Exception as e:
                result.errors += 1
                logger.error(f"Churn scoring failed for lead {signals.lead_id}: {e}", exc_info=True)
                continue

            probabilities.append(prediction.churn_probability)
            result.details.append(prediction)
            if prediction.churn_probability >= HIGH_RISK_THRESHOLD:
                result.high_risk_leads += 1

    result.leads_processed = len(result.details)
    result.avg_churn_probability = round(float(np.mean(probabilities)), 3) if probabilities else 0.0

    logger.info(
        f"Churn run finished: {result.leads_processed} processed, "
        f"{result.high_risk_leads} high risk, {result.critical_alerts_created} alerts, "
        f"{result.errors} errors"
    )
    return result
