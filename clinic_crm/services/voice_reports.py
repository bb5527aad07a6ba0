"""
Alexa voice reports.

The skill is a lookup table from intent name to a query branch that returns
one sentence of pt-BR speech. There is no dialogue state: every request is
answered and the session ends.

Supported intents:
    TodayRevenueIntent    revenue sold today
    MonthRevenueIntent    today + month + goal progress (also the launch answer)
    GoalProgressIntent    month goal progress and what is left to sell
    MonthLeaderIntent     team leading the current month
    YearLeaderIntent      team leading the year
    TeamPointsIntent      points of the team named in the "team" slot this month
    ChurnRiskIntent       active leads at critical / high churn risk
    NewLeadsTodayIntent   leads created today
    AMAZON.HelpIntent, AMAZON.StopIntent, AMAZON.CancelIntent

Unknown intents fall back to the month results summary.
"""

import calendar
import logging
import unicodedata
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from clinic_crm.core.config import get_settings
from clinic_crm.core.database import execute_query_one
from clinic_crm.models.enums import ChurnRiskLevel, ScoringPeriod
from clinic_crm.models.schemas import AlexaRequest, AlexaResponse, PeriodLeader
from clinic_crm.services.scoring import (
    ScoringWeights,
    calculate_team_points,
    fetch_point_records,
    fetch_teams,
    find_period_leader,
    get_period_window,
)


logger = logging.getLogger(__name__)


HELP_TEXT = (
    "Você pode perguntar quanto vendemos hoje, o resultado do mês, o progresso da meta, "
    "qual equipe lidera o mês ou o ano, os pontos de uma equipe, os leads em risco "
    "ou quantos leads entraram hoje."
)
GOODBYE_TEXT = "Até logo!"
ERROR_TEXT = "Desculpe, não foi possível obter os resultados no momento."


# =============================================================================
# Speech Formatting
# =============================================================================

def format_brl(value: float) -> str:
    """Whole reais with pt-BR thousands separators: 1234567.8 -> '1.234.568'."""
    return f"{value:,.0f}".replace(",", ".")


def format_percent(value: float) -> str:
    """One decimal with a pt-BR decimal comma: 45.26 -> '45,3'."""
    return f"{value:.1f}".replace(".", ",")


def goal_progress(month_total: float, goal: float) -> float:
    return (month_total / goal * 100) if goal > 0 else 0.0


def build_results_speech(today_total: float, month_total: float, goal: float) -> str:
    return (
        f"Hoje foram vendidos {format_brl(today_total)} reais. "
        f"No mês, o total é de {format_brl(month_total)} reais, representando "
        f"{format_percent(goal_progress(month_total, goal))} por cento da meta."
    )


def build_goal_speech(month_total: float, goal: float, today: date) -> str:
    if goal <= 0:
        return "Ainda não há meta cadastrada para este mês."

    remaining = goal - month_total
    if remaining <= 0:
        return (
            f"Meta batida! Já vendemos {format_brl(month_total)} reais, "
            f"{format_percent(goal_progress(month_total, goal))} por cento da meta."
        )

    days_in_month = calendar.monthrange(today.year, today.month)[1]
    days_left = days_in_month - today.day + 1
    return (
        f"Estamos em {format_percent(goal_progress(month_total, goal))} por cento da meta. "
        f"Faltam {format_brl(remaining)} reais em {days_left} dias, "
        f"cerca de {format_brl(remaining / days_left)} reais por dia."
    )


def build_leader_speech(leader: Optional[PeriodLeader], period_label: str) -> str:
    if leader is None:
        return "Ainda não há equipes cadastradas."
    return f"A equipe {leader.team_name or 'sem nome'} lidera {period_label} com {leader.points} pontos."


def build_churn_speech(critical: int, high: int) -> str:
    if critical == 0 and high == 0:
        return "Nenhum lead ativo está em risco alto de churn."
    return f"Há {critical} leads em risco crítico e {high} em risco alto de churn."


def build_new_leads_speech(count: int) -> str:
    if count == 0:
        return "Nenhum lead novo entrou hoje."
    if count == 1:
        return "Entrou um lead novo hoje."
    return f"Entraram {count} leads novos hoje."


def _normalize(text: str) -> str:
    stripped = unicodedata.normalize('NFKD', text).encode('ascii', 'ignore').decode('ascii')
    return stripped.casefold().strip()


# =============================================================================
# Data Queries
# =============================================================================

async def fetch_revenue_total(start: date, end: date) -> float:
    row = await execute_query_one(
        "SELECT COALESCE(SUM(amount), 0) AS total FROM revenue_records WHERE date >= $1 AND date <= $2",
        start,
        end,
    )
    return float(row['total']) if row else 0.0


async def fetch_month_goal(year: int, month: int) -> float:
    row = await execute_query_one(
        "SELECT COALESCE(SUM(monthly_goal), 0) AS goal FROM predefined_goals WHERE year = $1 AND month = $2",
        year,
        month,
    )
    return float(row['goal']) if row else 0.0


async def fetch_churn_risk_counts() -> Tuple[int, int]:
    row = await execute_query_one(
        """
        SELECT
            COUNT(*) FILTER (WHERE churn_risk_level = $1) AS critical,
            COUNT(*) FILTER (WHERE churn_risk_level = $2) AS high
        FROM crm_leads
        WHERE won_at IS NULL AND lost_at IS NULL
        """,
        ChurnRiskLevel.CRITICAL.value,
        ChurnRiskLevel.HIGH.value,
    )
    if row is None:
        return 0, 0
    return int(row['critical'] or 0), int(row['high'] or 0)


async def fetch_new_leads_count(day: date, timezone_name: str) -> int:
    row = await execute_query_one(
        "SELECT COUNT(*) AS total FROM crm_leads WHERE (created_at AT TIME ZONE $2)::date = $1",
        day,
        timezone_name,
    )
    return int(row['total']) if row else 0


# =============================================================================
# Intent Handlers
# =============================================================================

@dataclass
class VoiceContext:
    today: date
    timezone_name: str
    slots: Dict[str, Any] = field(default_factory=dict)

    def slot(self, name: str) -> Optional[str]:
        value = (self.slots.get(name) or {}).get('value')
        return str(value) if value else None


async def _results_summary(ctx: VoiceContext) -> str:
    month_start = ctx.today.replace(day=1)
    today_total = await fetch_revenue_total(ctx.today, ctx.today)
    month_total = await fetch_revenue_total(month_start, ctx.today)
    goal = await fetch_month_goal(ctx.today.year, ctx.today.month)
    return build_results_speech(today_total, month_total, goal)


async def _today_revenue(ctx: VoiceContext) -> str:
    total = await fetch_revenue_total(ctx.today, ctx.today)
    return f"Hoje foram vendidos {format_brl(total)} reais."


async def _goal_progress(ctx: VoiceContext) -> str:
    month_total = await fetch_revenue_total(ctx.today.replace(day=1), ctx.today)
    goal = await fetch_month_goal(ctx.today.year, ctx.today.month)
    return build_goal_speech(month_total, goal, ctx.today)


async def _period_leader(ctx: VoiceContext, period: ScoringPeriod) -> Optional[PeriodLeader]:
    start, end = get_period_window(period, ctx.today)
    teams = await fetch_teams()
    records = await fetch_point_records(start, end)
    weights = ScoringWeights.from_settings(get_settings())
    return find_period_leader(records, teams, period, ctx.today, weights)


async def _month_leader(ctx: VoiceContext) -> str:
    return build_leader_speech(await _period_leader(ctx, ScoringPeriod.MONTH), "o mês")


async def _year_leader(ctx: VoiceContext) -> str:
    return build_leader_speech(await _period_leader(ctx, ScoringPeriod.YEAR), "o ano")


async def _team_points(ctx: VoiceContext) -> str:
    wanted = ctx.slot('team')
    needle = _normalize(wanted or '')
    if not needle:
        return "Qual equipe você quer consultar?"

    teams = await fetch_teams()
    match = next(
        (team for team in teams if needle in _normalize(team.get('name') or '')),
        None,
    )
    if match is None:
        return f"Não encontrei a equipe {wanted}."

    start, end = get_period_window(ScoringPeriod.MONTH, ctx.today)
    records = await fetch_point_records(start, end)
    weights = ScoringWeights.from_settings(get_settings())
    score = calculate_team_points(records, match['id'], start, end, weights, match.get('name'))
    return f"A equipe {score.team_name} tem {score.total_points} pontos neste mês."


async def _churn_risk(ctx: VoiceContext) -> str:
    critical, high = await fetch_churn_risk_counts()
    return build_churn_speech(critical, high)


async def _new_leads_today(ctx: VoiceContext) -> str:
    return build_new_leads_speech(await fetch_new_leads_count(ctx.today, ctx.timezone_name))


IntentHandler = Callable[[VoiceContext], Awaitable[str]]

INTENT_HANDLERS: Dict[str, IntentHandler] = {
    'TodayRevenueIntent': _today_revenue,
    'MonthRevenueIntent': _results_summary,
    'GoalProgressIntent': _goal_progress,
    'MonthLeaderIntent': _month_leader,
    'YearLeaderIntent': _year_leader,
    'TeamPointsIntent': _team_points,
    'ChurnRiskIntent': _churn_risk,
    'NewLeadsTodayIntent': _new_leads_today,
}

STATIC_INTENTS: Dict[str, str] = {
    'AMAZON.HelpIntent': HELP_TEXT,
    'AMAZON.StopIntent': GOODBYE_TEXT,
    'AMAZON.CancelIntent': GOODBYE_TEXT,
}


# =============================================================================
# Main Entry Point
# =============================================================================

async def handle_alexa_request(request: AlexaRequest, today: Optional[date] = None) -> AlexaResponse:
    """
    Answer one Alexa request.

    Args:
        request: Parsed Alexa envelope.
        today: Reference date, defaults to today in the clinic timezone.

    Returns:
        AlexaResponse with the speech text; the session always ends.

    Raises:
        Database errors propagate; the endpoint turns them into the apology speech.
    """
    settings = get_settings()
    body = request.request

    if body.type == 'SessionEndedRequest':
        return AlexaResponse.speak(GOODBYE_TEXT)

    intent_name = body.intent.name if body.type == 'IntentRequest' and body.intent else None

    if intent_name in STATIC_INTENTS:
        return AlexaResponse.speak(STATIC_INTENTS[intent_name])

    handler = INTENT_HANDLERS.get(intent_name or '', _results_summary)
    if intent_name and intent_name not in INTENT_HANDLERS:
        logger.warning(f"Unknown Alexa intent {intent_name}, answering with the results summary")

    ctx = VoiceContext(
        today=today or settings.today(),
        timezone_name=settings.clinic_timezone,
        slots=body.intent.slots if body.intent else {},
    )
    text = await handler(ctx)
    logger.info(f"Alexa {body.type} {intent_name or ''}: {text}")
    return AlexaResponse.speak(text)
