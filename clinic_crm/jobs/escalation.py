"""
Escalation of sales leads stuck in the same stage.

An open lead in a sales or closer pipeline whose stage has not changed for
14 days is handed to someone else for a reactivation attempt:

1. a "Comercial 3" of the same team,
2. else a manager (Gestor*, Coordenador) of the same team,
3. else any manager.

The handoff writes the new assignee and escalation tags on the lead, a
crm_lead_history row (action 'escalation'), a notification to each of the old
and new assignee, and a high-priority task due in 24 hours. A lead escalated
in the last 7 days is left alone.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from asyncpg import Connection

from clinic_crm.core.database import get_db_pool
from clinic_crm.models.enums import NotificationType, TaskPriority
from clinic_crm.services.churn import days_between
from clinic_crm.services.notifications import create_notification, create_task


logger = logging.getLogger(__name__)


ESCALATION_AFTER_DAYS = 14
ESCALATION_COOLDOWN_DAYS = 7

ESCALATION_PIPELINE_TYPES = ['sales', 'closer']
TEAM_CANDIDATE_POSITIONS = ['Closer', 'Comercial 3', 'Gestor', 'Gestor Comercial', 'Coordenador']
MANAGER_POSITIONS = ['Gestor', 'Gestor Comercial', 'Coordenador']

# Author of automated history rows
SYSTEM_USER_ID = '00000000-0000-0000-0000-000000000000'


STUCK_LEADS_QUERY = """
SELECT
    l.id::text AS id,
    l.name,
    l.assigned_to::text AS assigned_to,
    l.team_id::text AS team_id,
    l.stage_changed_at
FROM crm_leads l
JOIN crm_pipelines p ON p.id = l.pipeline_id
WHERE p.type = ANY($1::text[])
  AND l.won_at IS NULL
  AND l.lost_at IS NULL
  AND l.stage_changed_at < $2
"""

RECENT_ESCALATION_QUERY = """
SELECT 1
FROM crm_lead_history
WHERE lead_id = $1::uuid
  AND action = 'escalation'
  AND created_at >= $2
LIMIT 1
"""

TEAM_CANDIDATES_QUERY = """
SELECT id::text AS id, full_name, position
FROM profiles
WHERE team_id = $1::uuid
  AND ($2::uuid IS NULL OR id <> $2::uuid)
  AND position = ANY($3::text[])
"""

ANY_MANAGER_QUERY = """
SELECT id::text AS id, full_name, position
FROM profiles
WHERE position = ANY($1::text[])
  AND ($2::uuid IS NULL OR id <> $2::uuid)
LIMIT 1
"""


def pick_escalation_assignee(members: Sequence[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    """
    Choose who receives an escalated lead among team members.

    Returns:
        The first "Comercial 3", else the first member whose position mentions
        Gestor or Coordenador, else None.
    """
    for member in members:
        if member.get('position') == 'Comercial 3':
            return member

    for member in members:
        position = member.get('position') or ''
        if 'Gestor' in position or 'Coordenador' in position:
            return member

    return None


async def _find_assignee(conn: Connection, lead: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    if lead['team_id']:
        members = await conn.fetch(
            TEAM_CANDIDATES_QUERY, lead['team_id'], lead['assigned_to'], TEAM_CANDIDATE_POSITIONS
        )
        chosen = pick_escalation_assignee(members)
        if chosen is not None:
            return chosen

    return await conn.fetchrow(ANY_MANAGER_QUERY, MANAGER_POSITIONS, lead['assigned_to'])


async def _escalate(
    conn: Connection,
    lead: Mapping[str, Any],
    assignee: Mapping[str, Any],
    now: datetime
) -> Dict[str, Any]:
    previous_name = 'Não atribuído'
    if lead['assigned_to']:
        previous = await conn.fetchrow("SELECT full_name FROM profiles WHERE id = $1::uuid", lead['assigned_to'])
        if previous and previous['full_name']:
            previous_name = previous['full_name']

    days_stuck = days_between(lead['stage_changed_at'], now)

    await conn.execute(
        """
        UPDATE crm_leads SET
            assigned_to = $2::uuid,
            tags = array_cat(COALESCE(tags, '{}'::text[]), $3::text[]),
            updated_at = $4
        WHERE id = $1::uuid
        """,
        lead['id'],
        assignee['id'],
        ['escalonado:reativacao', f"escalonado_para:{assignee['full_name']}"],
        now,
    )

    await conn.execute(
        """
        INSERT INTO crm_lead_history (lead_id, action, details, performed_by)
        VALUES ($1::uuid, 'escalation', $2::jsonb, $3::uuid)
        """,
        lead['id'],
        json.dumps({
            'reason': f'Lead sem fechamento há {ESCALATION_AFTER_DAYS}+ dias',
            'old_assignee_id': lead['assigned_to'],
            'old_assignee_name': previous_name,
            'new_assignee_id': assignee['id'],
            'new_assignee_name': assignee['full_name'],
            'days_without_closing': days_stuck,
        }),
        SYSTEM_USER_ID,
    )

    if lead['assigned_to']:
        await create_notification(
            conn,
            notification_type=NotificationType.LEAD_ESCALATED.value,
            user_id=lead['assigned_to'],
            title="🔄 Lead Escalonado",
            message=(
                f"Lead {lead['name']} foi escalonado para {assignee['full_name']} "
                f"após {ESCALATION_AFTER_DAYS} dias sem fechamento"
            ),
            metadata={'lead_id': lead['id']},
        )

    await create_notification(
        conn,
        notification_type=NotificationType.LEAD_RECEIVED.value,
        user_id=assignee['id'],
        title="📥 Lead Recebido para Reativação",
        message=f"Você recebeu o lead {lead['name']} para reativação.",
        metadata={'lead_id': lead['id']},
    )

    await create_task(
        conn,
        lead_id=lead['id'],
        title="Reativar lead escalonado",
        description=f"Lead escalonado de {previous_name}. Tentar nova abordagem.",
        due_date=now + timedelta(days=1),
        assigned_to=assignee['id'],
        priority=TaskPriority.HIGH,
        task_type='escalation',
    )

    return {
        'lead_id': lead['id'],
        'lead_name': lead['name'],
        'old_assignee': previous_name,
        'new_assignee': assignee['full_name'],
        'days_without_closing': days_stuck,
    }


async def run_escalation(now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Escalate every lead stuck in its stage past the threshold.

    Args:
        now: Reference instant, defaults to the current UTC time.

    Returns:
        Dict with the escalations performed, skip and error counters.
    """
    now = now or datetime.now(timezone.utc)
    stuck_before = now - timedelta(days=ESCALATION_AFTER_DAYS)
    cooldown_since = now - timedelta(days=ESCALATION_COOLDOWN_DAYS)

    escalations: List[Dict[str, Any]] = []
    skipped = 0
    unassignable = 0
    errors = 0

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        leads = await conn.fetch(STUCK_LEADS_QUERY, ESCALATION_PIPELINE_TYPES, stuck_before)
        logger.info(f"Escalation check: {len(leads)} leads stuck for {ESCALATION_AFTER_DAYS}+ days")

        for lead in leads:
            try:
                if await conn.fetchrow(RECENT_ESCALATION_QUERY, lead['id'], cooldown_since):
                    skipped += 1
                    continue

                assignee = await _find_assignee(conn, lead)
                if assignee is None:
                    unassignable += 1
                    logger.warning(f"No one available to receive escalated lead {lead['id']}")
                    continue

                escalations.append(await _escalate(conn, lead, assignee, now))
            except Exception as e:
                errors += 1
                logger.error(f"Escalation failed for lead {lead['id']}: {e}", exc_info=True)

    logger.info(f"Escalation done: {len(escalations)} escalated, {skipped} in cooldown, {errors} errors")
    return {
        'success': True,
        'escalated': len(escalations),
        'escalations': escalations,
        'skipped_recently_escalated': skipped,
        'no_assignee_available': unassignable,
        'errors': errors,
    }
