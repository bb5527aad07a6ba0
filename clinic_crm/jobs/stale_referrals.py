"""
Reminders for referral leads nobody has contacted yet.

Referrals cost nothing to acquire, so they get escalating reminders:

    2h   lead_reminder_2h   created 2-3 hours ago, still uncontacted
    24h  lead_reminder_24h  created 24-25 hours ago, still uncontacted
    48h  stale_lead         created 48+ hours ago, no contact for 48 hours

The 2h and 24h checks only look at a one-hour creation window so an hourly
schedule hits each lead once. A reminder is skipped when one of the same type
for the same lead was written within the interval.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

from clinic_crm.core.database import get_db_pool
from clinic_crm.models.enums import NotificationType
from clinic_crm.services.churn import as_utc
from clinic_crm.services.notifications import create_notification, notification_exists


logger = logging.getLogger(__name__)


OPEN_REFERRAL_STATUSES = ['nova', 'em_contato']


@dataclass(frozen=True)
class ReminderInterval:
    key: str
    hours: int
    notification_type: NotificationType
    title: str
    urgency: str
    # 48h looks at every older lead instead of a one-hour slice
    open_ended: bool = False


REMINDER_INTERVALS: Dict[str, ReminderInterval] = {
    '2h': ReminderInterval(
        key='2h',
        hours=2,
        notification_type=NotificationType.LEAD_REMINDER_2H,
        title="🚨 URGENTE: Indicação aguardando contato",
        urgency="Já se passaram {hours}h! Entre em contato AGORA.",
    ),
    '24h': ReminderInterval(
        key='24h',
        hours=24,
        notification_type=NotificationType.LEAD_REMINDER_24H,
        title="⚠️ Lembrete: Indicação sem contato há 24h",
        urgency="Lead esfriando! {hours}h sem contato.",
    ),
    '48h': ReminderInterval(
        key='48h',
        hours=48,
        notification_type=NotificationType.STALE_LEAD,
        title="🔴 CRÍTICO: Indicação parada há 48h+",
        urgency="Risco de perder o lead! {hours}h sem resposta.",
        open_ended=True,
    ),
}

STALE_REFERRALS_QUERY = """
SELECT
    id::text AS id,
    team_id::text AS team_id,
    referred_name,
    referrer_name,
    assigned_to::text AS assigned_to,
    last_contact_at,
    created_at
FROM referral_leads
WHERE status = ANY($1::text[])
  AND (last_contact_at IS NULL OR last_contact_at < $2)
  AND created_at < $2
  AND ($3::timestamptz IS NULL OR created_at >= $3)
"""


def hours_since_activity(lead: Mapping[str, Any], now: datetime) -> int:
    last_activity = lead.get('last_contact_at') or lead['created_at']
    return math.floor((as_utc(now) - as_utc(last_activity)).total_seconds() / 3600)


def build_reminder_message(interval: ReminderInterval, lead: Mapping[str, Any], now: datetime) -> str:
    urgency = interval.urgency.format(hours=hours_since_activity(lead, now))
    return (
        f"{urgency} {lead.get('referred_name') or 'Indicação'} "
        f"(indicado por {lead.get('referrer_name') or 'não informado'}). "
        f"CAC Zero - não perca essa oportunidade!"
    )


async def check_stale_referral_leads(
    interval: str = 'all',
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Write reminders for uncontacted referral leads.

    Args:
        interval: '2h', '24h', '48h' or 'all'.
        now: Reference instant, defaults to the current UTC time.

    Returns:
        Dict with per-interval found/notified counters and the total written.

    Raises:
        ValueError: If the interval is unknown.
    """
    if interval != 'all' and interval not in REMINDER_INTERVALS:
        raise ValueError(f"Unknown interval '{interval}'. Use one of: all, {', '.join(REMINDER_INTERVALS)}")

    now = now or datetime.now(timezone.utc)
    keys: List[str] = list(REMINDER_INTERVALS) if interval == 'all' else [interval]

    results: Dict[str, Dict[str, int]] = {}
    total_created = 0
    errors = 0

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        for key in keys:
            spec = REMINDER_INTERVALS[key]
            cutoff = now - timedelta(hours=spec.hours)
            window_start = None if spec.open_ended else now - timedelta(hours=spec.hours + 1)

            leads = await conn.fetch(STALE_REFERRALS_QUERY, OPEN_REFERRAL_STATUSES, cutoff, window_start)
            results[key] = {'found': len(leads), 'notified': 0}
            logger.info(f"Stale referral check {key}: {len(leads)} leads")

            for lead in leads:
                try:
                    if await notification_exists(conn, spec.notification_type.value, lead['id'], since=cutoff):
                        continue

                    await create_notification(
                        conn,
                        notification_type=spec.notification_type.value,
                        title=spec.title,
                        message=build_reminder_message(spec, lead, now),
                        user_id=lead['assigned_to'],
                        team_id=None if lead['assigned_to'] else lead['team_id'],
                        metadata={'lead_id': lead['id'], 'interval': key},
                    )
                    results[key]['notified'] += 1
                    total_created += 1
                except Exception as e:
                    errors += 1
                    logger.error(f"Reminder {key} failed for referral lead {lead['id']}: {e}", exc_info=True)

    logger.info(f"Stale referral check done: {total_created} reminders written")
    return {
        'success': True,
        'interval': interval,
        'results': results,
        'notifications_created': total_created,
        'errors': errors,
    }
