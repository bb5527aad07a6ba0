"""
Parameterized SQL for lead-centric jobs: the Feegow import and the churn heuristic.

Queries use asyncpg positional placeholders ($1, $2, ...). Lead ids are cast
to text on the way out so callers never handle UUID objects.
"""


# =============================================================================
# Feegow Import
# =============================================================================

# $1 pipeline name
ENTRY_STAGE_QUERY = """
SELECT p.id::text AS pipeline_id, s.id::text AS stage_id
FROM crm_pipelines p
JOIN crm_stages s ON s.pipeline_id = p.id
WHERE p.name = $1
ORDER BY s.order_index ASC
LIMIT 1
"""

# $1 text[] of feegow ids
EXISTING_FEEGOW_LEADS_QUERY = """
SELECT id::text AS id, feegow_id
FROM crm_leads
WHERE feegow_id = ANY($1::text[])
"""

# Upsert keyed by feegow_id so overlapping runs never duplicate a patient.
# $1 name, $2 email, $3 phone, $4 whatsapp, $5 cpf, $6 prontuario,
# $7 feegow_id, $8 feegow_data (json text), $9 last_feegow_sync,
# $10 source, $11 pipeline_id, $12 stage_id
INSERT_FEEGOW_LEAD_SQL = """
INSERT INTO crm_leads (
    name, email, phone, whatsapp, cpf, prontuario,
    feegow_id, feegow_data, last_feegow_sync, source,
    pipeline_id, stage_id
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9, $10, $11::uuid, $12::uuid)
ON CONFLICT (feegow_id) DO UPDATE SET
    email = COALESCE(EXCLUDED.email, crm_leads.email),
    phone = COALESCE(EXCLUDED.phone, crm_leads.phone),
    whatsapp = COALESCE(EXCLUDED.whatsapp, crm_leads.whatsapp),
    cpf = COALESCE(EXCLUDED.cpf, crm_leads.cpf),
    feegow_data = EXCLUDED.feegow_data,
    last_feegow_sync = EXCLUDED.last_feegow_sync
"""

# Contact fields are only overwritten when Feegow has a value.
# $1 lead id, $2 email, $3 phone, $4 whatsapp, $5 cpf, $6 feegow_data, $7 last_feegow_sync
UPDATE_FEEGOW_LEAD_SQL = """
UPDATE crm_leads SET
    email = COALESCE($2, email),
    phone = COALESCE($3, phone),
    whatsapp = COALESCE($4, whatsapp),
    cpf = COALESCE($5, cpf),
    feegow_data = $6::jsonb,
    last_feegow_sync = $7
WHERE id = $1::uuid
"""


# =============================================================================
# Sync Log
# =============================================================================

# Latest finished run; a row still 'running' belongs to a concurrent or crashed run
LATEST_SYNC_LOG_QUERY = """
SELECT id::text AS id, status, next_page, started_at
FROM feegow_sync_logs
WHERE status <> 'running'
ORDER BY started_at DESC
LIMIT 1
"""

# $1 sync_type, $2 triggered_by, $3 start_page, $4 started_at
START_SYNC_LOG_SQL = """
INSERT INTO feegow_sync_logs (sync_type, status, triggered_by, start_page, started_at)
VALUES ($1, 'running', $2, $3, $4)
RETURNING id::text AS id
"""

# $1 id, $2 status, $3 next_page, $4 total_fetched, $5 total_created,
# $6 total_updated, $7 total_skipped, $8 total_errors, $9 error_message, $10 completed_at
FINISH_SYNC_LOG_SQL = """
UPDATE feegow_sync_logs SET
    status = $2,
    next_page = $3,
    total_fetched = $4,
    total_created = $5,
    total_updated = $6,
    total_skipped = $7,
    total_errors = $8,
    error_message = $9,
    completed_at = $10
WHERE id = $1::uuid
"""

# $1 limit
RECENT_SYNC_LOGS_QUERY = """
SELECT
    id::text AS id, sync_type, status, triggered_by, started_at, completed_at,
    start_page, next_page, total_fetched, total_created, total_updated,
    total_skipped, total_errors, error_message
FROM feegow_sync_logs
ORDER BY started_at DESC
LIMIT $1
"""


# =============================================================================
# Churn Heuristic
# =============================================================================

# Active leads with their interaction sentiment counts in a single pass
CHURN_CANDIDATES_QUERY = """
SELECT
    l.id::text AS id,
    l.name,
    l.assigned_to::text AS assigned_to,
    l.temperature,
    COALESCE(l.is_stale, false) AS is_stale,
    l.last_activity_at,
    l.created_at,
    COALESCE(l.estimated_value, 0) AS estimated_value,
    COALESCE(l.contract_value, 0) AS contract_value,
    COALESCE(i.total, 0) AS interactions,
    COALESCE(i.positive, 0) AS positive_interactions,
    COALESCE(i.negative, 0) AS negative_interactions
FROM crm_leads l
LEFT JOIN (
    SELECT
        lead_id,
        COUNT(*) AS total,
        COUNT(*) FILTER (WHERE sentiment = 'positive') AS positive,
        COUNT(*) FILTER (WHERE sentiment = 'negative') AS negative
    FROM crm_lead_interactions
    GROUP BY lead_id
) i ON i.lead_id = l.id
WHERE l.won_at IS NULL
  AND l.lost_at IS NULL
"""

# $1 lead id, $2 churn probability, $3 risk level, $4 help score, $5 analyzed at
UPDATE_CHURN_SCORES_SQL = """
UPDATE crm_leads SET
    ai_churn_probability = $2,
    churn_risk_level = $3,
    churn_analyzed_at = $5,
    help_score = $4,
    help_score_updated_at = $5
WHERE id = $1::uuid
"""
