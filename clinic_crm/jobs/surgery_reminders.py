"""
Surgery-date reminders and post-operative follow-ups.

For every open lead with a surgery date, relative to today in the clinic
timezone:

    D-1   surgery_tomorrow to the seller and coordinators (once per 24h)
    D0    surgery_today to the seller (once per 12h)
    D+N   post_surgery follow-up plus a task, N in 1, 7, 30, 90 (once ever)
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

from asyncpg import Connection

from clinic_crm.core.config import get_settings
from clinic_crm.core.database import get_db_pool
from clinic_crm.models.enums import NotificationType, TaskPriority
from clinic_crm.services.notifications import create_notification, create_task, notification_exists


logger = logging.getLogger(__name__)


COORDINATOR_POSITIONS = ['Coordenador', 'Coordenador(a)']

FOLLOW_UP_ACTIONS: Dict[int, str] = {
    1: "Ligar para verificar recuperação imediata",
    7: "Agendar retorno e verificar recuperação",
    30: "Solicitar NPS e depoimento",
    90: "Verificar oportunidades de cross-sell e indicações",
}

SURGERY_LEADS_QUERY = """
SELECT
    id::text AS id,
    name,
    assigned_to::text AS assigned_to,
    surgery_date
FROM crm_leads
WHERE surgery_date IS NOT NULL
  AND lost_at IS NULL
"""


def days_until(surgery_date: Any, today: date) -> int:
    """Whole days from today to the surgery date; negative once it has passed."""
    if isinstance(surgery_date, datetime):
        surgery_date = surgery_date.date()
    return (surgery_date - today).days


def follow_up_key(lead_id: str, day: int) -> str:
    return f"{lead_id}:d{day}"


async def _remind_tomorrow(conn: Connection, lead: Mapping[str, Any], now: datetime) -> bool:
    since = now - timedelta(hours=24)
    if await notification_exists(conn, NotificationType.SURGERY_TOMORROW.value, lead['id'], since=since):
        return False

    await create_notification(
        conn,
        notification_type=NotificationType.SURGERY_TOMORROW.value,
        user_id=lead['assigned_to'],
        title="🏥 Cirurgia AMANHÃ!",
        message=f"{lead['name']} - Confirmar checklist completo!",
        metadata={'lead_id': lead['id'], 'surgery_date': lead['surgery_date']},
    )

    coordinators = await conn.fetch(
        "SELECT id::text AS id FROM profiles WHERE position = ANY($1::text[])",
        COORDINATOR_POSITIONS,
    )
    for coordinator in coordinators:
        await create_notification(
            conn,
            notification_type=NotificationType.SURGERY_TOMORROW.value,
            user_id=coordinator['id'],
            title="🏥 Cirurgia Amanhã - Verificar",
            message=f"Paciente {lead['name']} tem cirurgia amanhã. Responsável: verificar checklist.",
            metadata={'lead_id': lead['id']},
        )
    return True


async def _remind_today(conn: Connection, lead: Mapping[str, Any], now: datetime) -> bool:
    since = now - timedelta(hours=12)
    if await notification_exists(conn, NotificationType.SURGERY_TODAY.value, lead['id'], since=since):
        return False

    await create_notification(
        conn,
        notification_type=NotificationType.SURGERY_TODAY.value,
        user_id=lead['assigned_to'],
        title="🎯 Cirurgia HOJE!",
        message=f"{lead['name']} - Acompanhar paciente no hospital",
        metadata={'lead_id': lead['id']},
    )
    return True


async def _follow_up(conn: Connection, lead: Mapping[str, Any], day: int, now: datetime) -> bool:
    key = follow_up_key(lead['id'], day)
    if await notification_exists(
        conn, NotificationType.POST_SURGERY.value, key, reference_key='follow_up_key'
    ):
        return False

    action = FOLLOW_UP_ACTIONS[day]
    await create_notification(
        conn,
        notification_type=NotificationType.POST_SURGERY.value,
        user_id=lead['assigned_to'],
        title=f"📅 D+{day}: {lead['name']}",
        message=action,
        metadata={'lead_id': lead['id'], 'days_since_surgery': day, 'follow_up_key': key},
    )
    await create_task(
        conn,
        lead_id=lead['id'],
        title=f"D+{day}: {action}",
        description=f"Follow-up pós-cirurgia - {lead['name']}",
        due_date=now,
        assigned_to=lead['assigned_to'],
        priority=TaskPriority.HIGH if day <= 7 else TaskPriority.MEDIUM,
        task_type='post_surgery_followup',
    )
    return True


async def run_surgery_reminders(now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Write the surgery reminders due today.

    Args:
        now: Reference instant, defaults to the current UTC time.

    Returns:
        Dict with the number of leads scanned and the actions triggered.
    """
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    today = now.astimezone(settings.tzinfo).date()

    actions: List[Dict[str, Any]] = []
    errors = 0

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        leads = await conn.fetch(SURGERY_LEADS_QUERY)
        logger.info(f"Surgery reminders: {len(leads)} leads with a surgery date")

        for lead in leads:
            # Reminders go to the seller; unassigned leads have no recipient
            if not lead['assigned_to']:
                continue

            offset = days_until(lead['surgery_date'], today)
            try:
                if offset == 1 and await _remind_tomorrow(conn, lead, now):
                    actions.append({'lead_id': lead['id'], 'action': 'D-1'})
                elif offset == 0 and await _remind_today(conn, lead, now):
                    actions.append({'lead_id': lead['id'], 'action': 'D0'})
                elif -offset in FOLLOW_UP_ACTIONS and await _follow_up(conn, lead, -offset, now):
                    actions.append({'lead_id': lead['id'], 'action': f'D+{-offset}'})
            except Exception as e:
                errors += 1
                logger.error(f"Surgery reminder failed for lead {lead['id']}: {e}", exc_info=True)

    logger.info(f"Surgery reminders done: {len(actions)} actions")
    return {
        'success': True,
        'processed_leads': len(leads),
        'actions_triggered': len(actions),
        'results': actions,
        'errors': errors,
    }
