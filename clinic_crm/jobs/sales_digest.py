"""
Daily sales digest posted to Slack.

Summarizes one business day for the sales floor using the WebhookClient from
slack-sdk:

- revenue sold that day and month to date against the month goal
- pace: month revenue against what the goal expects by that day
- leads created and won that day
- top teams by month revenue
- active leads currently at critical churn risk

Idempotency:
- A digest is sent at most once per date, tracked in job_digest_state under
  job_type 'sales_digest'
- force=True re-sends and bumps digest_count

Environment Requirements:
- SLACK_WEBHOOK_URL: Slack incoming webhook URL
  Format: https://hooks.slack.com/services/xxx/yyy/zzz

Usage:
    # Digest for yesterday (default)
    result = await send_sales_digest()

    # Specific date, even if it was already sent
    result = await send_sales_digest(digest_date=date(2026, 3, 2), force=True)
"""

import asyncio
import calendar
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from slack_sdk.webhook import WebhookClient

from clinic_crm.core.config import get_settings
from clinic_crm.core.database import get_db_pool
from clinic_crm.models.enums import ChurnRiskLevel
from clinic_crm.services.voice_reports import format_brl, format_percent, goal_progress


logger = logging.getLogger(__name__)


DIGEST_JOB_TYPE = 'sales_digest'
TOP_TEAMS = 5
TOP_CHURN_LEADS = 5


# =============================================================================
# Idempotency
# =============================================================================

async def check_already_sent(digest_date: date) -> bool:
    """
    Check if the sales digest was already sent for the date.

    Args:
        digest_date: The business day the digest covers.

    Returns:
        True if a job_digest_state row exists for the date.
    """
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            """
            SELECT digest_date, sent_at
            FROM job_digest_state
            WHERE job_type = $1
              AND digest_date = $2
            """,
            DIGEST_JOB_TYPE,
            digest_date
        )

        return row is not None


async def mark_digest_sent(digest_date: date) -> None:
    """Record a successful send; a forced re-send bumps digest_count."""
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        await conn.execute(
            """
            INSERT INTO job_digest_state (job_type, digest_date, sent_at, digest_count)
            VALUES ($1, $2, $3, 1)
            ON CONFLICT (job_type, digest_date)
            DO UPDATE SET
                sent_at = EXCLUDED.sent_at,
                digest_count = job_digest_state.digest_count + 1
            """,
            DIGEST_JOB_TYPE,
            digest_date,
            datetime.now(timezone.utc)
        )


# =============================================================================
# Data Fetching
# =============================================================================

def calculate_pace(month_total: float, goal: float, day: date) -> float:
    """
    Month revenue as a percentage of what the goal expects by this day.

    The goal is spread evenly across the days of the month. Without a goal the
    pace is reported as 100.
    """
    days_in_month = calendar.monthrange(day.year, day.month)[1]
    expected = goal / days_in_month * day.day
    if expected <= 0:
        return 100.0
    return round(month_total / expected * 100, 1)


async def fetch_sales_summary(target_date: date, timezone_name: str) -> Dict[str, Any]:
    """
    Fetch the figures shown in the digest for one business day.

    Args:
        target_date: Business day to summarize.
        timezone_name: Clinic timezone used to bucket lead timestamps by day.

    Returns:
        Dict with today_revenue, month_revenue, goal, goal_progress, pace,
        new_leads, won_leads, won_value, top_teams, critical_churn and
        critical_churn_leads.
    """
    month_start = target_date.replace(day=1)
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        revenue = await conn.fetchrow(
            """
            SELECT
                COALESCE(SUM(amount) FILTER (WHERE date = $2), 0) AS today_total,
                COALESCE(SUM(amount), 0) AS month_total
            FROM revenue_records
            WHERE date >= $1 AND date <= $2
            """,
            month_start,
            target_date
        )

        goal_row = await conn.fetchrow(
            "SELECT COALESCE(SUM(monthly_goal), 0) AS goal FROM predefined_goals WHERE year = $1 AND month = $2",
            target_date.year,
            target_date.month
        )

        leads = await conn.fetchrow(
            """
            SELECT
                COUNT(*) FILTER (WHERE (created_at AT TIME ZONE $2)::date = $1) AS new_leads,
                COUNT(*) FILTER (WHERE (won_at AT TIME ZONE $2)::date = $1) AS won_leads,
                COALESCE(SUM(COALESCE(contract_value, estimated_value, 0))
                    FILTER (WHERE (won_at AT TIME ZONE $2)::date = $1), 0) AS won_value
            FROM crm_leads
            """,
            target_date,
            timezone_name
        )

        teams = await conn.fetch(
            """
            SELECT t.name, COALESCE(SUM(r.amount), 0) AS month_total
            FROM revenue_records r
            JOIN teams t ON t.id = r.team_id
            WHERE r.date >= $1 AND r.date <= $2
            GROUP BY t.name
            ORDER BY month_total DESC
            LIMIT $3
            """,
            month_start,
            target_date,
            TOP_TEAMS
        )

        churn = await conn.fetch(
            """
            SELECT name, ai_churn_probability
            FROM crm_leads
            WHERE won_at IS NULL
              AND lost_at IS NULL
              AND churn_risk_level = $1
            ORDER BY ai_churn_probability DESC NULLS LAST
            """,
            ChurnRiskLevel.CRITICAL.value
        )

    today_total = float(revenue['today_total']) if revenue else 0.0
    month_total = float(revenue['month_total']) if revenue else 0.0
    goal = float(goal_row['goal']) if goal_row else 0.0

    return {
        'today_revenue': today_total,
        'month_revenue': month_total,
        'goal': goal,
        'goal_progress': round(goal_progress(month_total, goal), 1),
        'pace': calculate_pace(month_total, goal, target_date),
        'new_leads': int(leads['new_leads']) if leads else 0,
        'won_leads': int(leads['won_leads']) if leads else 0,
        'won_value': float(leads['won_value']) if leads else 0.0,
        'top_teams': [
            {'name': row['name'], 'month_total': float(row['month_total'])}
            for row in teams
        ],
        'critical_churn': len(churn),
        'critical_churn_leads': [
            {'name': row['name'], 'probability': float(row['ai_churn_probability'] or 0)}
            for row in churn[:TOP_CHURN_LEADS]
        ],
    }


# =============================================================================
# Message Formatting
# =============================================================================

def _section(text: str) -> Dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def pace_emoji(pace: float) -> str:
    if pace >= 100:
        return "🚀"
    if pace >= 80:
        return "📈"
    return "⚠️"


def format_slack_message(target_date: date, summary: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Build the Block Kit blocks for the digest.

    Args:
        target_date: Business day the digest covers.
        summary: Output of fetch_sales_summary().

    Returns:
        List of Block Kit block dicts ready for WebhookClient.send().
    """
    blocks: List[Dict[str, Any]] = []

    blocks.append({
        "type": "header",
        "text": {
            "type": "plain_text",
            "text": f"{pace_emoji(summary['pace'])} Resumo do Dia {target_date.strftime('%d/%m/%Y')}",
            "emoji": True
        }
    })
    blocks.append({"type": "divider"})

    goal_line = (
        f"Mês: *R$ {format_brl(summary['month_revenue'])}* "
        f"({format_percent(summary['goal_progress'])}% da meta de R$ {format_brl(summary['goal'])})"
        if summary['goal'] > 0
        else f"Mês: *R$ {format_brl(summary['month_revenue'])}* (sem meta cadastrada)"
    )
    blocks.append(_section(
        f"*💰 Faturamento*\n\n"
        f"Hoje: *R$ {format_brl(summary['today_revenue'])}*\n"
        f"{goal_line}\n"
        f"Ritmo: *{format_percent(summary['pace'])}%*"
    ))

    blocks.append(_section(
        f"*👥 Leads*\n\n"
        f"Novos: *{summary['new_leads']}*  |  "
        f"Vendas ganhas: *{summary['won_leads']}* (R$ {format_brl(summary['won_value'])})"
    ))

    if summary['top_teams']:
        lines = [
            f"{i}. {team['name']}: R$ {format_brl(team['month_total'])}"
            for i, team in enumerate(summary['top_teams'], 1)
        ]
        blocks.append(_section("*🏆 Equipes no Mês*\n\n" + "\n".join(lines)))

    blocks.append({"type": "divider"})

    if summary['critical_churn']:
        lines = [
            f"• {lead['name']} ({format_percent(lead['probability'] * 100)}%)"
            for lead in summary['critical_churn_leads']
        ]
        blocks.append(_section(
            f"*🚨 Risco Crítico de Churn: {summary['critical_churn']} leads*\n\n" + "\n".join(lines)
        ))
    else:
        blocks.append(_section("*✅ Nenhum lead em risco crítico de churn*"))

    blocks.append({"type": "divider"})

    timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
    blocks.append({
        "type": "context",
        "elements": [
            {"type": "mrkdwn", "text": f"📅 Gerado em {timestamp} | Clinic CRM"}
        ]
    })

    return blocks


# =============================================================================
# Main Entry Points
# =============================================================================

async def send_sales_digest(
    digest_date: Optional[date] = None,
    force: bool = False
) -> Dict[str, Any]:
    """
    Send the daily sales digest to Slack.

    Args:
        digest_date: Business day to report (default: yesterday in the clinic timezone).
        force: Send even if a digest for this date was already sent.

    Returns:
        Dict with:
        - success: True if the digest was sent or skipped appropriately
        - skipped / reason: Set when the date was already sent
        - date: The digest date as string
        - error: Error message (if failed)
    """
    settings = get_settings()

    if not settings.slack_webhook_url:
        return {
            'success': False,
            'error': 'SLACK_WEBHOOK_URL not configured. Set this environment variable to enable the sales digest.'
        }

    target_date = digest_date or (settings.today() - timedelta(days=1))

    if not force and await check_already_sent(target_date):
        logger.info(f"Sales digest for {target_date} already sent, skipping")
        return {
            'success': True,
            'skipped': True,
            'reason': f'Digest already sent for {target_date}',
            'date': str(target_date)
        }

    try:
        summary = await fetch_sales_summary(target_date, settings.clinic_timezone)
    except Exception as e:
        logger.error(f"Failed to fetch sales summary for {target_date}: {e}", exc_info=True)
        return {
            'success': False,
            'error': f'Failed to fetch sales summary: {str(e)}',
            'date': str(target_date)
        }

    blocks = format_slack_message(target_date, summary)

    try:
        client = WebhookClient(settings.slack_webhook_url)
        response = await asyncio.to_thread(
            client.send, text=f"Resumo do Dia {target_date.strftime('%d/%m/%Y')}", blocks=blocks
        )
    except Exception as e:
        logger.error(f"Failed to send sales digest: {e}", exc_info=True)
        return {
            'success': False,
            'error': f'Failed to send Slack message: {str(e)}',
            'date': str(target_date)
        }

    if response.status_code != 200:
        logger.error(f"Slack returned {response.status_code} for sales digest: {response.body}")
        return {
            'success': False,
            'error': f'Slack API returned status {response.status_code}: {response.body}',
            'date': str(target_date)
        }

    await mark_digest_sent(target_date)
    logger.info(f"Sales digest sent for {target_date}")

    return {
        'success': True,
        'date': str(target_date),
        'today_revenue': summary['today_revenue'],
        'month_revenue': summary['month_revenue'],
        'pace': summary['pace'],
        'critical_churn': summary['critical_churn']
    }


async def get_digest_status() -> Dict[str, Any]:
    """
    Report recent sales digest sends.

    Returns:
        Dict with last_successful_date, total_digest_count, recent_dates
        (up to 7) and configured (whether SLACK_WEBHOOK_URL is set).
    """
    settings = get_settings()
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        recent = await conn.fetch(
            """
            SELECT digest_date, sent_at
            FROM job_digest_state
            WHERE job_type = $1
            ORDER BY digest_date DESC
            LIMIT 7
            """,
            DIGEST_JOB_TYPE
        )

        count_row = await conn.fetchrow(
            """
            SELECT COALESCE(SUM(digest_count), 0) AS total
            FROM job_digest_state
            WHERE job_type = $1
            """,
            DIGEST_JOB_TYPE
        )

    return {
        'last_successful_date': str(recent[0]['digest_date']) if recent else None,
        'total_digest_count': int(count_row['total']) if count_row else 0,
        'recent_dates': [
            {
                'date': str(row['digest_date']),
                'sent_at': row['sent_at'].isoformat() if row['sent_at'] else None
            }
            for row in recent
        ],
        'configured': bool(settings.slack_webhook_url)
    }
