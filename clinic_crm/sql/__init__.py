"""
SQL Query Module for the Clinic CRM backend.

Keeps raw SQL out of the business logic:

    scoring_queries: Point-source loading for the team scoring aggregator.
    lead_queries: Feegow import upserts, sync-log bookkeeping and churn
                  candidate selection.

Example usage:
    from clinic_crm.sql import get_point_records_query, CHURN_CANDIDATES_QUERY
"""

from clinic_crm.sql.scoring_queries import (
    POINT_SOURCES,
    TEAMS_QUERY,
    get_point_records_query,
)

from clinic_crm.sql.lead_queries import (
    ENTRY_STAGE_QUERY,
    EXISTING_FEEGOW_LEADS_QUERY,
    INSERT_FEEGOW_LEAD_SQL,
    UPDATE_FEEGOW_LEAD_SQL,
    LATEST_SYNC_LOG_QUERY,
    START_SYNC_LOG_SQL,
    FINISH_SYNC_LOG_SQL,
    RECENT_SYNC_LOGS_QUERY,
    CHURN_CANDIDATES_QUERY,
    UPDATE_CHURN_SCORES_SQL,
)

__all__ = [
    # Scoring
    'POINT_SOURCES',
    'TEAMS_QUERY',
    'get_point_records_query',
    # Feegow import
    'ENTRY_STAGE_QUERY',
    'EXISTING_FEEGOW_LEADS_QUERY',
    'INSERT_FEEGOW_LEAD_SQL',
    'UPDATE_FEEGOW_LEAD_SQL',
    'LATEST_SYNC_LOG_QUERY',
    'START_SYNC_LOG_SQL',
    'FINISH_SYNC_LOG_SQL',
    'RECENT_SYNC_LOGS_QUERY',
    # Churn
    'CHURN_CANDIDATES_QUERY',
    'UPDATE_CHURN_SCORES_SQL',
]
