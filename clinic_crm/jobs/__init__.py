"""
Scheduled automation jobs for the Clinic CRM.

Each automation is an async callable returning a dict with a success flag and
its own counters. They are safe to run on any schedule: every write is
guarded by an existence check against rows an earlier run wrote.

- stale-referral-leads: reminders for uncontacted referral leads (2h/24h/48h)
- escalation: hand leads stuck 14+ days in a stage to someone else
- nps: NPS survey tasks and reactions to NPS responses
- surgery-reminders: D-1/D0 surgery alerts and post-op follow-ups
- campaign-alerts: campaign deadline and kickoff alerts

The daily sales digest (Slack) lives in sales_digest and is exposed on its own
endpoint because it has a date and a force flag rather than handler params.

Usage:
    from clinic_crm.jobs import AUTOMATIONS

    result = await AUTOMATIONS['escalation']()
"""

from typing import Any, Awaitable, Callable, Dict

from clinic_crm.jobs.campaign_alerts import run_campaign_alerts
from clinic_crm.jobs.escalation import run_escalation
from clinic_crm.jobs.nps_followup import classify_nps_score, run_nps_automation
from clinic_crm.jobs.sales_digest import (
    check_already_sent,
    get_digest_status,
    mark_digest_sent,
    send_sales_digest,
)
from clinic_crm.jobs.stale_referrals import check_stale_referral_leads
from clinic_crm.jobs.surgery_reminders import run_surgery_reminders


AUTOMATIONS: Dict[str, Callable[..., Awaitable[Dict[str, Any]]]] = {
    'stale-referral-leads': check_stale_referral_leads,
    'escalation': run_escalation,
    'nps': run_nps_automation,
    'surgery-reminders': run_surgery_reminders,
    'campaign-alerts': run_campaign_alerts,
}


__all__ = [
    'AUTOMATIONS',
    'check_stale_referral_leads',
    'run_escalation',
    'run_nps_automation',
    'classify_nps_score',
    'run_surgery_reminders',
    'run_campaign_alerts',
    'send_sales_digest',
    'check_already_sent',
    'mark_digest_sent',
    'get_digest_status',
]
