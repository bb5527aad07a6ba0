'''
Clinic CRM Backend Test Suite

Test Modules:
-------------
- test_patient_sync.py: Feegow client, patient mapping, resumable sync runs
- test_scoring.py: Team point formulas, period leaders, champion history
- test_churn.py: Churn probability, help score, risk levels, batch alerts
- test_automations.py: Referral reminders, escalation, NPS, surgery, campaigns
- test_sales_digest.py: Slack digest formatting and once-per-day sends
- test_voice_reports.py: Alexa speech and intent routing
- test_api.py: Routes, cron secret, error status codes

Running Tests:
--------------
    pip install -e ".[test]"
    pytest -v

Configuration:
--------------
See conftest.py for shared fixtures and test configuration.
'''

__all__ = []
