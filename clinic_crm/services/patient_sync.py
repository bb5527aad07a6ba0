"""
Feegow patient import into the CRM lead table.

Walks the Feegow patient list page by page, maps each patient onto the lead
schema and upserts it keyed by feegow_id:

    fetch page -> empty? stop
               -> map fields (patients without an id are skipped)
               -> split into to-create / to-update using the ids already in crm_leads
               -> bulk insert (upsert) / bulk update
               -> advance cursor
    until a short page (end of list) or the page ceiling for this run.

Pages are fetched serially with a small fixed delay so the Feegow API is not
hammered. A run that hits its ceiling records the next page in its
feegow_sync_logs row (status in_progress) and the next run resumes there.

Failure handling: any fetch or write error stops the run. The error and the
page that failed are recorded in the sync log (status failed) and the next
run retries from that page. Pages already written stay written; every write
is an upsert by feegow_id so replaying them is harmless.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from asyncpg import Connection

from clinic_crm.core.config import get_settings
from clinic_crm.core.database import execute_query, get_db_pool
from clinic_crm.models.enums import SyncStatus
from clinic_crm.models.schemas import LeadUpsert, SyncSummary
from clinic_crm.services.feegow_client import FeegowClient
from clinic_crm.sql.lead_queries import (
    ENTRY_STAGE_QUERY,
    EXISTING_FEEGOW_LEADS_QUERY,
    FINISH_SYNC_LOG_SQL,
    INSERT_FEEGOW_LEAD_SQL,
    LATEST_SYNC_LOG_QUERY,
    RECENT_SYNC_LOGS_QUERY,
    START_SYNC_LOG_SQL,
    UPDATE_FEEGOW_LEAD_SQL,
)


logger = logging.getLogger(__name__)


SYNC_TYPE_FULL = 'full'
SYNC_TYPE_INCREMENTAL = 'incremental'

# Statuses whose next_page is a valid resumption point
RESUMABLE_STATUSES = {SyncStatus.IN_PROGRESS.value, SyncStatus.FAILED.value}


class SyncSetupError(Exception):
    """Raised when the CRM is missing what the import needs (pipeline or stage)."""


# =============================================================================
# Mapping
# =============================================================================

def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def map_patient(raw: Mapping[str, Any], synced_at: datetime) -> Optional[LeadUpsert]:
    """
    Map one Feegow patient onto the lead schema.

    Feegow is inconsistent about the id key, so both patient_id and
    paciente_id are accepted.

    Args:
        raw: Patient dict as returned by the Feegow list endpoint.
        synced_at: Timestamp written to last_feegow_sync.

    Returns:
        LeadUpsert, or None when the patient has no id.

    Example:
        >>> lead = map_patient({'patient_id': 42, 'nome': 'Ana', 'celular': '11999990000'}, now)
        >>> (lead.feegow_id, lead.phone, lead.whatsapp, lead.prontuario)
        ('42', '11999990000', '11999990000', '42')
    """
    patient_id = raw.get('patient_id') or raw.get('paciente_id')
    feegow_id = _clean(patient_id)
    if feegow_id is None:
        return None

    telefone = _clean(raw.get('telefone'))
    celular = _clean(raw.get('celular'))

    return LeadUpsert(
        feegow_id=feegow_id,
        name=_clean(raw.get('nome')) or 'Sem nome',
        email=_clean(raw.get('email')),
        phone=telefone or celular,
        whatsapp=celular or telefone,
        cpf=_clean(raw.get('cpf')),
        prontuario=_clean(raw.get('prontuario')) or feegow_id,
        feegow_data=dict(raw),
        last_feegow_sync=synced_at,
    )


def partition_patients(
    leads: Sequence[LeadUpsert],
    existing: Mapping[str, str]
) -> Tuple[List[LeadUpsert], List[Tuple[str, LeadUpsert]]]:
    """
    Split mapped patients into new leads and updates of existing leads.

    Args:
        leads: Mapped patients of one page.
        existing: feegow_id -> local lead id for patients already imported.

    Returns:
        Tuple of (to_create, to_update) where to_update pairs the local lead id
        with the fresh data. A patient repeated within the page is kept once,
        last occurrence wins.
    """
    unique: Dict[str, LeadUpsert] = {}
    for lead in leads:
        unique[lead.feegow_id] = lead

    to_create: List[LeadUpsert] = []
    to_update: List[Tuple[str, LeadUpsert]] = []

    for feegow_id, lead in unique.items():
        lead_id = existing.get(feegow_id)
        if lead_id is None:
            to_create.append(lead)
        else:
            to_update.append((lead_id, lead))

    return to_create, to_update


def _chunks(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for index in range(0, len(items), size):
        yield items[index:index + size]


# =============================================================================
# Database Helpers
# =============================================================================

async def resolve_entry_stage(conn: Connection, pipeline_name: str) -> Tuple[str, str]:
    """
    Find the pipeline and first stage that receive imported patients.

    Raises:
        SyncSetupError: If the pipeline does not exist or has no stages.
    """
    row = await conn.fetchrow(ENTRY_STAGE_QUERY, pipeline_name)
    if row is None:
        raise SyncSetupError(f"Pipeline '{pipeline_name}' not found or has no stages")
    return row['pipeline_id'], row['stage_id']


async def load_resume_page(conn: Connection) -> int:
    """Page the previous run asked to resume from, or 0 when it finished the list."""
    row = await conn.fetchrow(LATEST_SYNC_LOG_QUERY)
    if row is None:
        return 0
    if row['status'] in RESUMABLE_STATUSES and row['next_page'] is not None:
        return int(row['next_page'])
    return 0


async def start_sync_log(
    conn: Connection,
    sync_type: str,
    triggered_by: str,
    start_page: int,
    started_at: datetime
) -> str:
    row = await conn.fetchrow(START_SYNC_LOG_SQL, sync_type, triggered_by, start_page, started_at)
    return row['id']


async def finish_sync_log(
    conn: Connection,
    log_id: str,
    summary: SyncSummary,
    completed_at: datetime
) -> None:
    await conn.execute(
        FINISH_SYNC_LOG_SQL,
        log_id,
        summary.status.value,
        summary.next_page,
        summary.total_fetched,
        summary.created,
        summary.updated,
        summary.skipped,
        summary.errors,
        summary.error,
        completed_at,
    )


async def fetch_existing_lead_ids(conn: Connection, feegow_ids: Sequence[str]) -> Dict[str, str]:
    """Build the feegow_id -> lead id lookup for one page."""
    if not feegow_ids:
        return {}
    rows = await conn.fetch(EXISTING_FEEGOW_LEADS_QUERY, list(feegow_ids))
    return {row['feegow_id']: row['id'] for row in rows}


async def insert_leads(
    conn: Connection,
    leads: Sequence[LeadUpsert],
    pipeline_id: str,
    stage_id: str,
    batch_size: int,
    summary: SyncSummary
) -> None:
    """
    Bulk upsert new leads into the entry stage, one transaction per batch.

    summary.created grows as each batch commits, so a failure part way
    through a page still reports the rows already written.
    """
    for batch in _chunks(leads, batch_size):
        args = [
            (
                lead.name, lead.email, lead.phone, lead.whatsapp, lead.cpf, lead.prontuario,
                lead.feegow_id, json.dumps(lead.feegow_data, default=str), lead.last_feegow_sync,
                lead.source, pipeline_id, stage_id,
            )
            for lead in batch
        ]
        async with conn.transaction():
            await conn.executemany(INSERT_FEEGOW_LEAD_SQL, args)
        summary.created += len(batch)


async def update_leads(
    conn: Connection,
    updates: Sequence[Tuple[str, LeadUpsert]],
    batch_size: int,
    summary: SyncSummary
) -> None:
    """Refresh contact fields, payload and last_feegow_sync of already imported leads."""
    for batch in _chunks(updates, batch_size):
        args = [
            (
                lead_id, lead.email, lead.phone, lead.whatsapp, lead.cpf,
                json.dumps(lead.feegow_data, default=str), lead.last_feegow_sync,
            )
            for lead_id, lead in batch
        ]
        async with conn.transaction():
            await conn.executemany(UPDATE_FEEGOW_LEAD_SQL, args)
        summary.updated += len(batch)


# =============================================================================
# Main Entry Points
# =============================================================================

async def run_patient_sync(
    full_sync: bool = False,
    max_pages: Optional[int] = None,
    triggered_by: str = 'cron',
    client: Optional[FeegowClient] = None
) -> SyncSummary:
    """
    Import Feegow patients into crm_leads.

    Args:
        full_sync: Start from page 0 with the full-sync page ceiling instead of
            resuming from the last recorded cursor.
        max_pages: Override of the page ceiling for this run.
        triggered_by: Free-text origin recorded in the sync log.
        client: Feegow client to use; one is built from settings when None.

    Returns:
        SyncSummary mirroring the sync-log row. A failed run returns
        status=failed with the error message rather than raising.
    """
    settings = get_settings()
    page_size = settings.feegow_page_size
    ceiling = max_pages or (
        settings.feegow_full_sync_max_pages if full_sync else settings.feegow_max_pages
    )
    sync_type = SYNC_TYPE_FULL if full_sync else SYNC_TYPE_INCREMENTAL
    owns_client = client is None

    pool = await get_db_pool()
    async with pool.acquire() as conn:
        start_page = 0 if full_sync else await load_resume_page(conn)
        log_id = await start_sync_log(
            conn, sync_type, triggered_by, start_page, datetime.now(timezone.utc)
        )

        summary = SyncSummary(
            log_id=log_id,
            status=SyncStatus.RUNNING,
            full_sync=full_sync,
            start_page=start_page,
            next_page=start_page,
        )
        logger.info(
            f"Feegow sync {log_id} started ({sync_type}, page {start_page}, up to {ceiling} pages)"
        )

        page = start_page
        try:
            if client is None:
                client = FeegowClient.from_settings(settings)

            pipeline_id, stage_id = await resolve_entry_stage(conn, settings.feegow_pipeline_name)

            while summary.pages_processed < ceiling:
                patients = await client.list_patients(page, page_size)
                if not patients:
                    summary.has_more = False
                    break

                synced_at = datetime.now(timezone.utc)
                mapped: List[LeadUpsert] = []
                for raw in patients:
                    lead = map_patient(raw, synced_at)
                    if lead is None:
                        summary.skipped += 1
                    else:
                        mapped.append(lead)

                existing = await fetch_existing_lead_ids(conn, [lead.feegow_id for lead in mapped])
                to_create, to_update = partition_patients(mapped, existing)

                await insert_leads(
                    conn, to_create, pipeline_id, stage_id, settings.feegow_insert_batch_size, summary
                )
                await update_leads(conn, to_update, settings.feegow_insert_batch_size, summary)

                summary.total_fetched += len(patients)
                summary.pages_processed += 1
                page += 1

                logger.info(
                    f"Feegow page {page - 1}: {len(patients)} fetched, "
                    f"{len(to_create)} new, {len(to_update)} updated"
                )

                if len(patients) < page_size:
                    summary.has_more = False
                    break

                summary.has_more = True
                if summary.pages_processed < ceiling:
                    await asyncio.sleep(settings.feegow_page_delay_seconds)

            summary.next_page = page if summary.has_more else None
            summary.status = SyncStatus.IN_PROGRESS if summary.has_more else SyncStatus.COMPLETED

        except Exception as e:
            logger.error(f"Feegow sync {log_id} failed on page {page}: {e}", exc_info=True)
            summary.status = SyncStatus.FAILED
            summary.error = str(e)
            summary.errors += 1
            summary.next_page = page

        finally:
            if owns_client and client is not None:
                await client.aclose()
            await finish_sync_log(conn, log_id, summary, datetime.now(timezone.utc))

    logger.info(
        f"Feegow sync {log_id} {summary.status.value}: {summary.total_fetched} fetched, "
        f"{summary.created} created, {summary.updated} updated, {summary.skipped} skipped"
    )
    return summary


async def get_recent_sync_logs(limit: int = 10) -> List[Dict[str, Any]]:
    """Most recent sync-log rows, newest first."""
    rows = await execute_query(RECENT_SYNC_LOGS_QUERY, limit)
    return [dict(row) for row in rows]
