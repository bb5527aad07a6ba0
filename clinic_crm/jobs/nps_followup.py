"""
NPS follow-up automation.

Three actions share one entry point:

- send_survey: queue the NPS collection task for one lead
- process_response: store a lead's score and react to its category
    promotor (>= 9)  ask for referrals and a testimonial, notify the seller
    neutro   (>= 7)  follow up to learn what could improve
    detrator (< 7)   urgent task, alert the seller and every manager
- check_pending: for leads won 30+ days ago with no score, queue the
  collection task unless an open NPS task already exists
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from asyncpg import Connection

from clinic_crm.core.database import get_db_pool
from clinic_crm.jobs.escalation import MANAGER_POSITIONS
from clinic_crm.models.enums import NotificationType, NpsCategory, TaskPriority
from clinic_crm.services.notifications import create_notification, create_task, open_task_exists


logger = logging.getLogger(__name__)


NPS_ACTIONS = ('send_survey', 'process_response', 'check_pending')
PENDING_AFTER_DAYS = 30
COLLECT_TASK_TITLE = "Coletar NPS do paciente"


@dataclass(frozen=True)
class CategoryPlaybook:
    task_title: str
    task_description: str
    task_due: timedelta
    task_priority: TaskPriority
    notification_type: Optional[NotificationType]
    notification_title: Optional[str] = None
    notification_message: Optional[str] = None
    alert_managers: bool = False


PLAYBOOKS: Dict[NpsCategory, CategoryPlaybook] = {
    NpsCategory.PROMOTER: CategoryPlaybook(
        task_title="Solicitar indicação de cliente promotor",
        task_description="{name} deu nota {score}! Aproveite para pedir indicações e depoimento.",
        task_due=timedelta(hours=24),
        task_priority=TaskPriority.HIGH,
        notification_type=NotificationType.NPS_PROMOTER,
        notification_title="🌟 Cliente Promotor!",
        notification_message="{name} deu nota {score} no NPS! Hora de pedir indicação!",
    ),
    NpsCategory.NEUTRAL: CategoryPlaybook(
        task_title="Follow-up NPS neutro",
        task_description="{name} deu nota {score}. Entender o que poderia melhorar.",
        task_due=timedelta(hours=48),
        task_priority=TaskPriority.MEDIUM,
        notification_type=None,
    ),
    NpsCategory.DETRACTOR: CategoryPlaybook(
        task_title="URGENTE: Reverter detrator",
        task_description="Cliente {name} é detrator (NPS {score}). Feedback: {feedback}. Ligar HOJE!",
        task_due=timedelta(hours=4),
        task_priority=TaskPriority.URGENT,
        notification_type=NotificationType.NPS_DETRACTOR,
        notification_title="🚨 ALERTA: Cliente Detrator!",
        notification_message="{name} deu nota {score} no NPS! Ação imediata necessária!",
        alert_managers=True,
    ),
}


def classify_nps_score(score: int) -> NpsCategory:
    """
    Map a 0-10 score to its NPS category.

    Raises:
        ValueError: If the score is outside 0-10.
    """
    if score < 0 or score > 10:
        raise ValueError(f"NPS score must be between 0 and 10, got {score}")
    if score >= 9:
        return NpsCategory.PROMOTER
    if score >= 7:
        return NpsCategory.NEUTRAL
    return NpsCategory.DETRACTOR


async def _load_lead(conn: Connection, lead_id: str):
    return await conn.fetchrow(
        "SELECT id::text AS id, name, assigned_to::text AS assigned_to FROM crm_leads WHERE id = $1::uuid",
        lead_id,
    )


async def send_survey(conn: Connection, lead_id: str, now: datetime) -> Dict[str, Any]:
    lead = await _load_lead(conn, lead_id)
    if lead is None:
        return {'survey_sent': False, 'reason': f'Lead {lead_id} not found'}

    if await open_task_exists(conn, lead['id'], 'NPS'):
        return {'survey_sent': False, 'reason': 'Open NPS task already exists'}

    await create_task(
        conn,
        lead_id=lead['id'],
        title=COLLECT_TASK_TITLE,
        description=f"Solicitar avaliação NPS de {lead['name']}",
        due_date=now + timedelta(days=3),
        assigned_to=lead['assigned_to'],
        task_type='nps',
    )
    return {'survey_sent': True, 'lead_id': lead['id'], 'lead_name': lead['name']}


async def process_response(
    conn: Connection,
    lead_id: str,
    score: int,
    feedback: Optional[str],
    now: datetime
) -> Dict[str, Any]:
    category = classify_nps_score(score)

    lead = await _load_lead(conn, lead_id)
    if lead is None:
        return {'processed': False, 'reason': f'Lead {lead_id} not found'}

    await conn.execute(
        """
        UPDATE crm_leads SET
            nps_score = $2,
            nps_category = $3,
            nps_feedback = $4,
            nps_collected_at = $5,
            tags = array_append(COALESCE(tags, '{}'::text[]), $6)
        WHERE id = $1::uuid
        """,
        lead['id'],
        score,
        category.value,
        feedback,
        now,
        f"nps:{category.value}",
    )

    playbook = PLAYBOOKS[category]
    fields = {'name': lead['name'], 'score': score, 'feedback': feedback or 'Não informado'}
    actions = []

    await create_task(
        conn,
        lead_id=lead['id'],
        title=playbook.task_title,
        description=playbook.task_description.format(**fields),
        due_date=now + playbook.task_due,
        assigned_to=lead['assigned_to'],
        priority=playbook.task_priority,
        task_type='nps',
    )
    actions.append('task_created')

    if playbook.notification_type is not None and lead['assigned_to']:
        await create_notification(
            conn,
            notification_type=playbook.notification_type.value,
            user_id=lead['assigned_to'],
            title=playbook.notification_title,
            message=playbook.notification_message.format(**fields),
            metadata={'lead_id': lead['id'], 'score': score},
        )
        actions.append('seller_notified')

    if playbook.alert_managers:
        managers = await conn.fetch(
            "SELECT id::text AS id FROM profiles WHERE position = ANY($1::text[])",
            MANAGER_POSITIONS,
        )
        for manager in managers:
            await create_notification(
                conn,
                notification_type=NotificationType.NPS_DETRACTOR.value,
                user_id=manager['id'],
                title="🚨 Detrator Identificado",
                message=f"{lead['name']} deu NPS {score}. Feedback: {fields['feedback']}",
                metadata={'lead_id': lead['id'], 'score': score},
            )
        actions.append(f'{len(managers)}_managers_notified')

    return {
        'processed': True,
        'lead_id': lead['id'],
        'score': score,
        'category': category.value,
        'actions': actions,
    }


async def check_pending(conn: Connection, now: datetime) -> Dict[str, Any]:
    pending = await conn.fetch(
        """
        SELECT id::text AS id, name, assigned_to::text AS assigned_to
        FROM crm_leads
        WHERE won_at IS NOT NULL
          AND won_at < $1
          AND nps_score IS NULL
        """,
        now - timedelta(days=PENDING_AFTER_DAYS),
    )

    created = 0
    errors = 0
    for lead in pending:
        try:
            if await open_task_exists(conn, lead['id'], 'NPS'):
                continue
            await create_task(
                conn,
                lead_id=lead['id'],
                title=COLLECT_TASK_TITLE,
                description=f"Solicitar avaliação NPS de {lead['name']}",
                due_date=now + timedelta(days=3),
                assigned_to=lead['assigned_to'],
                task_type='nps',
            )
            created += 1
        except Exception as e:
            errors += 1
            logger.error(f"NPS collection task failed for lead {lead['id']}: {e}", exc_info=True)

    return {'pending_nps': len(pending), 'tasks_created': created, 'errors': errors}


async def run_nps_automation(
    action: str = 'check_pending',
    lead_id: Optional[str] = None,
    nps_score: Optional[int] = None,
    feedback: Optional[str] = None,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Run one NPS action.

    Args:
        action: 'send_survey', 'process_response' or 'check_pending'.
        lead_id: Required by send_survey and process_response.
        nps_score: Required by process_response.
        feedback: Optional free text stored with the response.
        now: Reference instant, defaults to the current UTC time.

    Raises:
        ValueError: On an unknown action or missing arguments.
    """
    if action not in NPS_ACTIONS:
        raise ValueError(f"Unknown NPS action '{action}'. Use one of: {', '.join(NPS_ACTIONS)}")
    if action in ('send_survey', 'process_response') and not lead_id:
        raise ValueError(f"lead_id is required for {action}")
    if action == 'process_response' and nps_score is None:
        raise ValueError("nps_score is required for process_response")

    now = now or datetime.now(timezone.utc)
    logger.info(f"NPS automation: {action}")

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        if action == 'send_survey':
            results = await send_survey(conn, lead_id, now)
        elif action == 'process_response':
            results = await process_response(conn, lead_id, int(nps_score), feedback, now)
        else:
            results = await check_pending(conn, now)

    return {'success': True, 'action': action, 'results': results}
