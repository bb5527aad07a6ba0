"""
Parameterized SQL for the team scoring aggregator.

Each point source is a table with a team reference, a date and the magnitude
columns its formula needs. The aggregator loads every source once for the
widest window it needs and filters per team in memory.
"""

from typing import Dict, List


# Point-bearing tables and the magnitude columns read from each
POINT_SOURCES: Dict[str, Dict[str, object]] = {
    'revenue': {
        'table': 'revenue_records',
        'columns': ['amount'],
    },
    'nps': {
        'table': 'nps_records',
        'columns': ['score', 'cited_member'],
    },
    'testimonials': {
        'table': 'testimonial_records',
        'columns': ['type'],
    },
    'referrals': {
        'table': 'referral_records',
        'columns': ['collected', 'to_consultation', 'to_surgery'],
    },
    'indicators': {
        'table': 'other_indicators',
        'columns': ['ambassadors', 'unilovers', 'instagram_mentions'],
    },
    'cards': {
        'table': 'cards',
        'columns': ['points'],
    },
}

TEAMS_QUERY = """
SELECT id::text AS id, name
FROM teams
ORDER BY name
"""


def get_point_records_query(source: str) -> str:
    """
    Build the query loading one point source inside a date window.

    The query takes two parameters: $1 window start and $2 window end, both
    inclusive dates.

    Args:
        source: Key of POINT_SOURCES ('revenue', 'nps', 'testimonials',
            'referrals', 'indicators' or 'cards').

    Returns:
        str: PostgreSQL query returning team_id, date and the source columns.

    Raises:
        KeyError: If the source is unknown.

    Example:
        >>> sql = get_point_records_query('cards')
        >>> rows = await conn.fetch(sql, date(2026, 1, 1), date(2026, 12, 31))
    """
    spec = POINT_SOURCES[source]
    columns: List[str] = list(spec['columns'])  # type: ignore[arg-type]
    column_list = ", ".join(columns)

    return f"""
SELECT team_id::text AS team_id, date, {column_list}
FROM {spec['table']}
WHERE date >= $1
  AND date <= $2
"""
