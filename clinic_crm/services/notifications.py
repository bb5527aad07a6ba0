"""
Notification and task writers shared by the churn job and the automation handlers.

Every automation guards its writes with an existence check against rows it
wrote earlier, so a handler can run on any schedule without spamming users.
Notifications carry their subject in the metadata JSON (for example
{"lead_id": "..."}); the checks read it back with metadata ->> key.

All helpers take an open asyncpg connection so a handler can reuse one
connection for its whole run.
"""

import json
from datetime import datetime
from typing import Any, Dict, Optional

from asyncpg import Connection

from clinic_crm.models.enums import TaskPriority


async def notification_exists(
    conn: Connection,
    notification_type: str,
    reference_id: str,
    since: Optional[datetime] = None,
    reference_key: str = 'lead_id',
    user_id: Optional[str] = None
) -> bool:
    """
    Check whether a notification of this type about this subject was already written.

    Args:
        conn: Open database connection.
        notification_type: Value of notifications.type.
        reference_id: Subject id stored under metadata[reference_key].
        since: Only count notifications created at or after this instant.
            None means "ever".
        reference_key: Metadata key holding the subject id.
        user_id: Restrict the check to one recipient.

    Returns:
        True if a matching notification exists.
    """
    query = """
        SELECT 1
        FROM notifications
        WHERE type = $1
          AND metadata ->> $2 = $3
    """
    args: list = [notification_type, reference_key, str(reference_id)]

    if since is not None:
        args.append(since)
        query += f" AND created_at >= ${len(args)}"

    if user_id is not None:
        args.append(user_id)
        query += f" AND user_id = ${len(args)}::uuid"

    row = await conn.fetchrow(query + " LIMIT 1", *args)
    return row is not None


async def create_notification(
    conn: Connection,
    *,
    notification_type: str,
    title: str,
    message: str,
    user_id: Optional[str] = None,
    team_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> None:
    """Insert one notification addressed to a user or, when user_id is None, a team."""
    await conn.execute(
        """
        INSERT INTO notifications (user_id, team_id, type, title, message, metadata)
        VALUES ($1::uuid, $2::uuid, $3, $4, $5, $6::jsonb)
        """,
        user_id,
        team_id,
        notification_type,
        title,
        message,
        json.dumps(metadata or {}, default=str),
    )


async def open_task_exists(conn: Connection, lead_id: str, title_fragment: str) -> bool:
    """True if the lead has a task that is not completed and whose title contains the fragment."""
    row = await conn.fetchrow(
        """
        SELECT 1
        FROM crm_tasks
        WHERE lead_id = $1::uuid
          AND status <> 'completed'
          AND title ILIKE '%' || $2 || '%'
        LIMIT 1
        """,
        str(lead_id),
        title_fragment,
    )
    return row is not None


async def create_task(
    conn: Connection,
    *,
    lead_id: str,
    title: str,
    description: str,
    due_date: datetime,
    assigned_to: Optional[str],
    priority: TaskPriority = TaskPriority.MEDIUM,
    task_type: Optional[str] = None
) -> None:
    """Insert one pending CRM task for a lead."""
    await conn.execute(
        """
        INSERT INTO crm_tasks (lead_id, title, description, due_date, priority, assigned_to, task_type, status)
        VALUES ($1::uuid, $2, $3, $4, $5, $6::uuid, $7, 'pending')
        """,
        str(lead_id),
        title,
        description,
        due_date,
        priority.value,
        assigned_to,
        task_type,
    )
