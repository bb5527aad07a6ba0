"""
Campaign deadline and kickoff alerts.

Active, non-template campaigns that have not ended are checked daily:

- ending within alert_days_before days (default 3): one deadline_approaching
  alert per day
- starting today: one campaign_started alert, ever

Each alert is logged in campaign_alerts and fanned out as a notification to
every profile.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from asyncpg import Connection

from clinic_crm.core.config import get_settings
from clinic_crm.core.database import get_db_pool
from clinic_crm.models.enums import NotificationType
from clinic_crm.services.notifications import create_notification


logger = logging.getLogger(__name__)


DEFAULT_ALERT_DAYS_BEFORE = 3

ALERT_DEADLINE = 'deadline_approaching'
ALERT_STARTED = 'campaign_started'

ACTIVE_CAMPAIGNS_QUERY = """
SELECT id::text AS id, name, start_date, end_date, alert_days_before
FROM campaigns
WHERE is_active = true
  AND is_template = false
  AND end_date >= $1
"""

ALERT_SENT_QUERY = """
SELECT 1
FROM campaign_alerts
WHERE campaign_id = $1::uuid
  AND alert_type = $2
  AND ($3::timestamptz IS NULL OR sent_at >= $3)
LIMIT 1
"""


def _as_date(value: Any) -> date:
    return value.date() if isinstance(value, datetime) else value


def deadline_message(name: str, days_remaining: int) -> str:
    if days_remaining == 0:
        return f'Último dia da campanha "{name}"! Corra para completar suas ações.'
    return f'A campanha "{name}" termina em {days_remaining} dia(s). Verifique seu progresso!'


async def _alert_everyone(
    conn: Connection,
    campaign: Mapping[str, Any],
    alert_type: str,
    alert_message: str,
    notification_type: NotificationType,
    title: str,
    message: str
) -> int:
    await conn.execute(
        "INSERT INTO campaign_alerts (campaign_id, alert_type, message) VALUES ($1::uuid, $2, $3)",
        campaign['id'],
        alert_type,
        alert_message,
    )

    profiles = await conn.fetch("SELECT id::text AS id FROM profiles")
    for profile in profiles:
        await create_notification(
            conn,
            notification_type=notification_type.value,
            user_id=profile['id'],
            title=title,
            message=message,
            metadata={'campaign_id': campaign['id']},
        )
    return len(profiles)


async def run_campaign_alerts(now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Send the campaign alerts due today.

    Args:
        now: Reference instant, defaults to the current UTC time.

    Returns:
        Dict with the campaigns checked, the alerts sent and the notifications written.
    """
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    local_now = now.astimezone(settings.tzinfo)
    today = local_now.date()
    start_of_today = local_now.replace(hour=0, minute=0, second=0, microsecond=0)

    alerts: List[str] = []
    notifications = 0
    errors = 0

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        campaigns = await conn.fetch(ACTIVE_CAMPAIGNS_QUERY, today)
        logger.info(f"Campaign alerts: {len(campaigns)} active campaigns")

        for campaign in campaigns:
            try:
                days_remaining = (_as_date(campaign['end_date']) - today).days
                alert_days = campaign['alert_days_before'] or DEFAULT_ALERT_DAYS_BEFORE

                if 0 <= days_remaining <= alert_days:
                    sent = await conn.fetchrow(ALERT_SENT_QUERY, campaign['id'], ALERT_DEADLINE, start_of_today)
                    if sent is None:
                        notifications += await _alert_everyone(
                            conn,
                            campaign,
                            ALERT_DEADLINE,
                            f'A campanha "{campaign["name"]}" termina em {days_remaining} dia(s)!',
                            NotificationType.CAMPAIGN_DEADLINE,
                            "⏰ Prazo de Campanha",
                            deadline_message(campaign['name'], days_remaining),
                        )
                        alerts.append(f"Deadline: {campaign['name']}")

                if campaign['start_date'] is not None and _as_date(campaign['start_date']) == today:
                    sent = await conn.fetchrow(ALERT_SENT_QUERY, campaign['id'], ALERT_STARTED, None)
                    if sent is None:
                        notifications += await _alert_everyone(
                            conn,
                            campaign,
                            ALERT_STARTED,
                            f'A campanha "{campaign["name"]}" começou hoje!',
                            NotificationType.CAMPAIGN_STARTED,
                            "🚀 Nova Campanha!",
                            f'A campanha "{campaign["name"]}" começou hoje! Confira o checklist de ações.',
                        )
                        alerts.append(f"Started: {campaign['name']}")
            except Exception as e:
                errors += 1
                logger.error(f"Campaign alert failed for campaign {campaign['id']}: {e}", exc_info=True)

    logger.info(f"Campaign alerts done: {len(alerts)} alerts, {notifications} notifications")
    return {
        'success': True,
        'campaigns_checked': len(campaigns),
        'alerts_created': alerts,
        'notifications_created': notifications,
        'errors': errors,
    }
