"""
Team scoring aggregator for the sales gamification board.

Teams earn points from five independent sources and lose points through
penalty cards. For a team and an inclusive date window:

    revenue:      floor(sum(amount) / 1000) x points_per_thousand_revenue
    satisfaction: each NPS >= 9 scores 10 when the team member was cited, 5 otherwise;
                  testimonials add google 10, video 30, gold 50
    referrals:    collected x 5 + to_consultation x 15 + to_surgery x 30
    indicators:   ambassadors x 50 + unilovers x 30 + instagram_mentions x 5
    cards:        sum(points), negative for penalties

    total = revenue + satisfaction + referrals + indicators + cards

Every point source is loaded once per invocation into a pandas DataFrame and
filtered per team in memory, so ranking N teams over several periods costs six
queries, not 6 x N. The computation is read-only and deterministic: the same
rows always produce the same totals regardless of row order.

Key Functions:
- calculate_team_points: Breakdown for one team over one window (pure)
- get_period_window: Month / semester / year boundaries around a date
- find_period_leader: Team with the most points over a window (first wins ties)
- build_monthly_history: Monthly champions of the year so far
- compute_champions: Leaders and history in one summary (pure)
- get_team_score / get_champions: Database-backed entry points
"""

import calendar
import logging
import math
from dataclasses import dataclass, fields
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from clinic_crm.core.config import Settings, get_settings
from clinic_crm.core.database import execute_query, get_db_pool
from clinic_crm.models.enums import ReviewTier, ScoringPeriod
from clinic_crm.models.schemas import (
    ChampionsSummary,
    MonthlyChampion,
    PeriodLeader,
    TeamScoreBreakdown,
)
from clinic_crm.sql.scoring_queries import POINT_SOURCES, TEAMS_QUERY, get_point_records_query


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Data Classes
# =============================================================================

@dataclass(frozen=True)
class ScoringWeights:
    """
    Point weights for every source.

    Defaults mirror the values used by the sales board; production values come
    from Settings so the product owner can tune them without a deploy.
    """
    points_per_thousand_revenue: int = 1
    nps_promoter_points: int = 5
    nps_promoter_cited_points: int = 10
    testimonial_google_points: int = 10
    testimonial_video_points: int = 30
    testimonial_gold_points: int = 50
    referral_collected_points: int = 5
    referral_consultation_points: int = 15
    referral_surgery_points: int = 30
    ambassador_points: int = 50
    unilover_points: int = 30
    instagram_mention_points: int = 5

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScoringWeights":
        return cls(**{f.name: getattr(settings, f.name) for f in fields(cls)})

    @property
    def testimonial_points(self) -> Dict[str, int]:
        return {
            ReviewTier.GOOGLE.value: self.testimonial_google_points,
            ReviewTier.VIDEO.value: self.testimonial_video_points,
            ReviewTier.GOLD.value: self.testimonial_gold_points,
        }


# Column kinds per point source; anything not listed here is numeric
_FLAG_COLUMNS = {'cited_member'}
_LABEL_COLUMNS = {'type'}


def _as_number(value: Any) -> float:
    if value is None or pd.isna(value):
        return 0.0
    return float(value)


def _as_flag(value: Any) -> bool:
    if value is None or pd.isna(value):
        return False
    return bool(value)


def _to_frame(rows: Iterable[Mapping[str, Any]], columns: Sequence[str]) -> pd.DataFrame:
    """
    Normalize raw rows of one point source into a typed DataFrame.

    team_id becomes a string, date a naive midnight Timestamp, magnitude
    columns floats (None counts as 0), cited_member a bool.
    """
    frame = pd.DataFrame([dict(row) for row in rows], columns=['team_id', 'date', *columns])

    frame['team_id'] = frame['team_id'].astype(str)
    frame['date'] = pd.to_datetime(frame['date'], utc=True).dt.tz_localize(None).dt.normalize()

    for column in columns:
        if column in _FLAG_COLUMNS:
            frame[column] = frame[column].map(_as_flag)
        elif column in _LABEL_COLUMNS:
            frame[column] = frame[column].astype(str).str.lower()
        else:
            frame[column] = frame[column].map(_as_number)

    return frame


@dataclass
class PointRecords:
    """
    All point-bearing rows loaded for one invocation, one DataFrame per source.

    Example:
        records = PointRecords.from_rows({
            'revenue': [{'team_id': 't1', 'date': date(2026, 3, 2), 'amount': 1200}],
            'cards': [{'team_id': 't1', 'date': date(2026, 3, 9), 'points': -10}],
        })
    """
    revenue: pd.DataFrame
    nps: pd.DataFrame
    testimonials: pd.DataFrame
    referrals: pd.DataFrame
    indicators: pd.DataFrame
    cards: pd.DataFrame

    @classmethod
    def from_rows(cls, rows_by_source: Mapping[str, Iterable[Mapping[str, Any]]]) -> "PointRecords":
        """Build the frames; sources missing from the mapping are empty."""
        frames = {
            source: _to_frame(rows_by_source.get(source, []), spec['columns'])  # type: ignore[arg-type]
            for source, spec in POINT_SOURCES.items()
        }
        return cls(**frames)


def _window(frame: pd.DataFrame, team_id: str, start: date, end: date) -> pd.DataFrame:
    """Rows of one team whose date falls inside [start, end]."""
    if frame.empty:
        return frame

    mask = (
        (frame['team_id'] == str(team_id))
        & (frame['date'] >= pd.Timestamp(start))
        & (frame['date'] <= pd.Timestamp(end))
    )
    return frame[mask]


# =============================================================================
# Per-Source Formulas
# =============================================================================

def calculate_revenue_points(revenue: pd.DataFrame, weights: ScoringWeights) -> Tuple[float, int]:
    """
    Revenue subtotal.

    Returns:
        Tuple of (summed revenue amount, points). Points use the summed amount,
        so three sales of 500, 1200 and 300 give floor(2000 / 1000) = 2.
    """
    total = float(revenue['amount'].sum()) if not revenue.empty else 0.0
    points = math.floor(total / 1000) * weights.points_per_thousand_revenue
    return total, int(points)


def calculate_satisfaction_points(
    nps: pd.DataFrame,
    testimonials: pd.DataFrame,
    weights: ScoringWeights
) -> int:
    """NPS promoters (score >= 9) plus the fixed bonus of each testimonial tier."""
    points = 0

    if not nps.empty:
        promoters = nps[nps['score'] >= 9]
        cited = int(promoters['cited_member'].sum())
        uncited = len(promoters) - cited
        points += cited * weights.nps_promoter_cited_points
        points += uncited * weights.nps_promoter_points

    if not testimonials.empty:
        bonuses = testimonials['type'].map(weights.testimonial_points).fillna(0)
        points += int(bonuses.sum())

    return points


def calculate_referral_points(referrals: pd.DataFrame, weights: ScoringWeights) -> int:
    if referrals.empty:
        return 0

    return int(
        referrals['collected'].sum() * weights.referral_collected_points
        + referrals['to_consultation'].sum() * weights.referral_consultation_points
        + referrals['to_surgery'].sum() * weights.referral_surgery_points
    )


def calculate_indicator_points(indicators: pd.DataFrame, weights: ScoringWeights) -> int:
    if indicators.empty:
        return 0

    return int(
        indicators['ambassadors'].sum() * weights.ambassador_points
        + indicators['unilovers'].sum() * weights.unilover_points
        + indicators['instagram_mentions'].sum() * weights.instagram_mention_points
    )


def calculate_card_points(cards: pd.DataFrame) -> int:
    """Cards add their points verbatim; penalty cards carry negative values."""
    if cards.empty:
        return 0
    return int(cards['points'].sum())


# =============================================================================
# Aggregation
# =============================================================================

def calculate_team_points(
    records: PointRecords,
    team_id: str,
    start: date,
    end: date,
    weights: Optional[ScoringWeights] = None,
    team_name: Optional[str] = None
) -> TeamScoreBreakdown:
    """
    Compute the points one team earned inside an inclusive date window.

    Args:
        records: Point-bearing rows loaded for this invocation.
        team_id: Team to score.
        start: First day of the window (inclusive).
        end: Last day of the window (inclusive).
        weights: Point weights, defaults to ScoringWeights().
        team_name: Optional display name copied into the result.

    Returns:
        TeamScoreBreakdown with the five subtotals and their sum.

    Example:
        >>> breakdown = calculate_team_points(records, 't1', date(2026, 3, 1), date(2026, 3, 31))
        >>> breakdown.total_points
        -3
    """
    weights = weights or ScoringWeights()

    revenue_total, revenue_points = calculate_revenue_points(
        _window(records.revenue, team_id, start, end), weights
    )
    satisfaction_points = calculate_satisfaction_points(
        _window(records.nps, team_id, start, end),
        _window(records.testimonials, team_id, start, end),
        weights,
    )
    referral_points = calculate_referral_points(
        _window(records.referrals, team_id, start, end), weights
    )
    indicator_points = calculate_indicator_points(
        _window(records.indicators, team_id, start, end), weights
    )
    card_points = calculate_card_points(_window(records.cards, team_id, start, end))

    return TeamScoreBreakdown(
        team_id=str(team_id),
        team_name=team_name,
        start_date=start,
        end_date=end,
        revenue_total=revenue_total,
        revenue_points=revenue_points,
        satisfaction_points=satisfaction_points,
        referral_points=referral_points,
        indicator_points=indicator_points,
        card_points=card_points,
        total_points=(
            revenue_points + satisfaction_points + referral_points
            + indicator_points + card_points
        ),
    )


def _month_window(year: int, month: int) -> Tuple[date, date]:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def get_period_window(period: ScoringPeriod, as_of: date) -> Tuple[date, date]:
    """
    Calendar window of the period containing as_of.

    Semesters run January-June and July-December.
    """
    if period == ScoringPeriod.MONTH:
        return _month_window(as_of.year, as_of.month)

    if period == ScoringPeriod.SEMESTER:
        if as_of.month <= 6:
            return date(as_of.year, 1, 1), date(as_of.year, 6, 30)
        return date(as_of.year, 7, 1), date(as_of.year, 12, 31)

    return date(as_of.year, 1, 1), date(as_of.year, 12, 31)


def _rank_teams(
    records: PointRecords,
    teams: Sequence[Mapping[str, Any]],
    start: date,
    end: date,
    weights: ScoringWeights
) -> List[TeamScoreBreakdown]:
    return [
        calculate_team_points(records, team['id'], start, end, weights, team.get('name'))
        for team in teams
    ]


def _best(scores: Sequence[TeamScoreBreakdown]) -> Optional[TeamScoreBreakdown]:
    # Strict comparison: on a tie the team listed first keeps the lead
    best: Optional[TeamScoreBreakdown] = None
    for score in scores:
        if best is None or score.total_points > best.total_points:
            best = score
    return best


def find_period_leader(
    records: PointRecords,
    teams: Sequence[Mapping[str, Any]],
    period: ScoringPeriod,
    as_of: date,
    weights: Optional[ScoringWeights] = None
) -> Optional[PeriodLeader]:
    """
    Team with the most points over the period containing as_of.

    A leader exists whenever there is at least one team, even with zero or
    negative points. Returns None only when teams is empty.
    """
    weights = weights or ScoringWeights()
    start, end = get_period_window(period, as_of)

    best = _best(_rank_teams(records, teams, start, end, weights))
    if best is None:
        return None

    return PeriodLeader(
        period=period,
        start_date=start,
        end_date=end,
        team_id=best.team_id,
        team_name=best.team_name,
        points=best.total_points,
    )


def build_monthly_history(
    records: PointRecords,
    teams: Sequence[Mapping[str, Any]],
    as_of: date,
    weights: Optional[ScoringWeights] = None
) -> List[MonthlyChampion]:
    """
    Champions of every month from January up to the month of as_of.

    A month only has a champion when its best total is positive.
    """
    weights = weights or ScoringWeights()
    history: List[MonthlyChampion] = []

    for month in range(1, as_of.month + 1):
        start, end = _month_window(as_of.year, month)
        best = _best(_rank_teams(records, teams, start, end, weights))

        if best is not None and best.total_points > 0:
            history.append(MonthlyChampion(
                month=month,
                team_id=best.team_id,
                team_name=best.team_name,
                points=best.total_points,
            ))

    return history


def compute_champions(
    records: PointRecords,
    teams: Sequence[Mapping[str, Any]],
    as_of: date,
    weights: Optional[ScoringWeights] = None
) -> ChampionsSummary:
    """Leaders for the current month, semester and year plus the month-by-month history."""
    weights = weights or ScoringWeights()

    month_start, month_end = get_period_window(ScoringPeriod.MONTH, as_of)
    standings = sorted(
        _rank_teams(records, teams, month_start, month_end, weights),
        key=lambda score: score.total_points,
        reverse=True,
    )

    return ChampionsSummary(
        as_of=as_of,
        month_leader=find_period_leader(records, teams, ScoringPeriod.MONTH, as_of, weights),
        semester_leader=find_period_leader(records, teams, ScoringPeriod.SEMESTER, as_of, weights),
        year_leader=find_period_leader(records, teams, ScoringPeriod.YEAR, as_of, weights),
        monthly_history=build_monthly_history(records, teams, as_of, weights),
        standings=standings,
    )


# =============================================================================
# Database-Backed Entry Points
# =============================================================================

async def fetch_teams() -> List[Dict[str, Any]]:
    rows = await execute_query(TEAMS_QUERY)
    return [dict(row) for row in rows]


async def fetch_point_records(start: date, end: date) -> PointRecords:
    """
    Load every point source inside [start, end] with one query per source.

    Args:
        start: First day to load (inclusive).
        end: Last day to load (inclusive).

    Returns:
        PointRecords ready for in-memory filtering.
    """
    pool = await get_db_pool()
    rows_by_source: Dict[str, List[Dict[str, Any]]] = {}

    async with pool.acquire() as conn:
        for source in POINT_SOURCES:
            rows = await conn.fetch(get_point_records_query(source), start, end)
            rows_by_source[source] = [dict(row) for row in rows]

    logger.info(
        f"Loaded point records {start} -> {end}: "
        + ", ".join(f"{source}={len(rows)}" for source, rows in rows_by_source.items())
    )

    return PointRecords.from_rows(rows_by_source)


async def get_team_score(team_id: str, start: date, end: date) -> TeamScoreBreakdown:
    """Score one team over [start, end] using the configured weights."""
    weights = ScoringWeights.from_settings(get_settings())
    records = await fetch_point_records(start, end)

    teams = {team['id']: team.get('name') for team in await fetch_teams()}

    return calculate_team_points(records, team_id, start, end, weights, teams.get(str(team_id)))


async def get_champions(as_of: Optional[date] = None) -> ChampionsSummary:
    """
    Compute the champions summary for the year containing as_of (default today).

    One load covers the whole calendar year, which spans every window used.
    """
    settings = get_settings()
    as_of = as_of or settings.today()
    weights = ScoringWeights.from_settings(settings)

    teams = await fetch_teams()
    records = await fetch_point_records(date(as_of.year, 1, 1), date(as_of.year, 12, 31))

    summary = compute_champions(records, teams, as_of, weights)
    logger.info(
        f"Champions as of {as_of}: month leader "
        f"{summary.month_leader.team_name if summary.month_leader else None}"
    )
    return summary
