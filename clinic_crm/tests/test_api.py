"""
Tests for the HTTP layer.

Route handlers are exercised through FastAPI's TestClient with the service
functions patched where each router imports them. The client is not entered
as a context manager, so the lifespan (database pool) never runs.
"""

from datetime import date
from typing import Optional
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from clinic_crm.core.dependencies import get_settings_dependency
from clinic_crm.main import app
from clinic_crm.models.enums import SyncStatus
from clinic_crm.models.schemas import AlexaResponse, ChurnRunResult, SyncSummary, TeamScoreBreakdown
from clinic_crm.services.voice_reports import ERROR_TEXT


@pytest.fixture
def client(settings):
    app.dependency_overrides[get_settings_dependency] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()


# =============================================================================
# Application
# =============================================================================

class TestApplication:

    def test_health(self, client) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_root_reports_version(self, client) -> None:
        body = client.get("/").json()

        assert body['name'] == "Clinic CRM API"
        assert body['version']


class TestCronSecret:

    def test_missing_header_is_rejected(self, client, settings) -> None:
        settings.cron_secret = 's3cret'

        with patch('clinic_crm.api.churn.run_churn_prediction', new=AsyncMock(return_value=ChurnRunResult())) as run:
            response = client.post("/churn/predict")

        assert response.status_code == 401
        run.assert_not_awaited()

    def test_wrong_header_is_rejected(self, client, settings) -> None:
        settings.cron_secret = 's3cret'

        response = client.post("/churn/predict", headers={'x-cron-secret': 'guess'})

        assert response.status_code == 401

    def test_matching_header_is_accepted(self, client, settings) -> None:
        settings.cron_secret = 's3cret'
        result = ChurnRunResult(leads_processed=4, high_risk_leads=1, avg_churn_probability=0.31)

        with patch('clinic_crm.api.churn.run_churn_prediction', new=AsyncMock(return_value=result)):
            response = client.post("/churn/predict", headers={'x-cron-secret': 's3cret'})

        assert response.status_code == 200
        assert response.json()['leads_processed'] == 4

    def test_no_secret_configured_accepts_everyone(self, client) -> None:
        with patch('clinic_crm.api.churn.run_churn_prediction', new=AsyncMock(return_value=ChurnRunResult())):
            response = client.post("/churn/predict")

        assert response.status_code == 200


# =============================================================================
# Sync
# =============================================================================

class TestSyncRoutes:

    def test_run_passes_request_options(self, client) -> None:
        summary = SyncSummary(status=SyncStatus.IN_PROGRESS, start_page=0, next_page=3, pages_processed=3, has_more=True)
        run = AsyncMock(return_value=summary)

        with patch('clinic_crm.api.sync.run_patient_sync', new=run):
            response = client.post("/sync/feegow", json={'full_sync': True, 'max_pages': 3})

        assert response.status_code == 200
        assert response.json()['status'] == 'in_progress'
        assert response.json()['next_page'] == 3
        run.assert_awaited_once_with(full_sync=True, max_pages=3, triggered_by='api')

    def test_run_without_body_resumes(self, client) -> None:
        run = AsyncMock(return_value=SyncSummary(status=SyncStatus.COMPLETED))

        with patch('clinic_crm.api.sync.run_patient_sync', new=run):
            response = client.post("/sync/feegow")

        assert response.status_code == 200
        run.assert_awaited_once_with(full_sync=False, max_pages=None, triggered_by='api')

    def test_invalid_page_ceiling(self, client) -> None:
        response = client.post("/sync/feegow", json={'max_pages': 0})

        assert response.status_code == 422

    def test_unexpected_error_is_500(self, client) -> None:
        with patch('clinic_crm.api.sync.run_patient_sync', new=AsyncMock(side_effect=RuntimeError("pool closed"))):
            response = client.post("/sync/feegow")

        assert response.status_code == 500
        assert 'pool closed' in response.json()['detail']

    def test_status(self, client) -> None:
        logs = [{'id': 'log-2', 'status': 'completed'}, {'id': 'log-1', 'status': 'failed'}]
        recent = AsyncMock(return_value=logs)

        with patch('clinic_crm.api.sync.get_recent_sync_logs', new=recent):
            response = client.get("/sync/feegow/status?limit=2")

        assert response.json() == {'logs': logs, 'last': logs[0]}
        recent.assert_awaited_once_with(2)

    def test_status_without_runs(self, client) -> None:
        with patch('clinic_crm.api.sync.get_recent_sync_logs', new=AsyncMock(return_value=[])):
            response = client.get("/sync/feegow/status")

        assert response.json() == {'logs': [], 'last': None}


# =============================================================================
# Scoring
# =============================================================================

class TestScoringRoutes:

    def test_inverted_range_is_400(self, client) -> None:
        response = client.get("/scoring/teams/t1?start=2026-03-31&end=2026-03-01")

        assert response.status_code == 400

    def test_team_score(self, client) -> None:
        breakdown = TeamScoreBreakdown(
            team_id='t1', start_date=date(2026, 3, 1), end_date=date(2026, 3, 31),
            revenue_total=2000.0, revenue_points=2, satisfaction_points=5, card_points=-10, total_points=-3,
        )
        score = AsyncMock(return_value=breakdown)

        with patch('clinic_crm.api.scoring.get_team_score', new=score):
            response = client.get("/scoring/teams/t1?start=2026-03-01&end=2026-03-31")

        assert response.status_code == 200
        assert response.json()['total_points'] == -3
        score.assert_awaited_once_with('t1', date(2026, 3, 1), date(2026, 3, 31))

    def test_champions_failure_is_500(self, client) -> None:
        with patch('clinic_crm.api.scoring.get_champions', new=AsyncMock(side_effect=RuntimeError("boom"))):
            response = client.get("/scoring/champions?as_of=2026-03-15")

        assert response.status_code == 500
        assert response.json()['detail'] == "Failed to compute champions: boom"


# =============================================================================
# Automations
# =============================================================================

async def _needs_lead(lead_id: str, now=None):
    return {'success': True, 'lead_id': lead_id}


async def _rejects(interval: str = 'all', now=None):
    raise ValueError(f"Unknown interval '{interval}'")


async def _crashes(now=None):
    raise RuntimeError("database is down")


class TestAutomationRoutes:

    def test_list_hides_internal_params(self, client) -> None:
        body = client.get("/automations").json()

        by_name = {item['name']: item['params'] for item in body['automations']}
        assert by_name['nps'] == ['action', 'lead_id', 'nps_score', 'feedback']
        assert by_name['escalation'] == []
        assert by_name['stale-referral-leads'] == ['interval']

    def test_unknown_automation_is_404(self, client) -> None:
        response = client.post("/automations/does-not-exist")

        assert response.status_code == 404

    def test_runs_handler_with_body(self, client) -> None:
        with patch.dict('clinic_crm.jobs.AUTOMATIONS', {'needs-lead': _needs_lead}):
            response = client.post("/automations/needs-lead", json={'lead_id': 'lead-9'})

        assert response.status_code == 200
        assert response.json() == {'success': True, 'lead_id': 'lead-9'}

    def test_unsupported_parameter_is_422(self, client) -> None:
        response = client.post("/automations/escalation", json={'dry_run': True})

        assert response.status_code == 422
        assert 'dry_run' in response.json()['detail']

    def test_internal_parameter_is_not_accepted(self, client) -> None:
        response = client.post("/automations/escalation", json={'now': '2025-01-01T00:00:00Z'})

        assert response.status_code == 422

    def test_missing_required_parameter_is_422(self, client) -> None:
        with patch.dict('clinic_crm.jobs.AUTOMATIONS', {'needs-lead': _needs_lead}):
            response = client.post("/automations/needs-lead")

        assert response.status_code == 422

    def test_rejected_value_is_400(self, client) -> None:
        with patch.dict('clinic_crm.jobs.AUTOMATIONS', {'rejects': _rejects}):
            response = client.post("/automations/rejects", json={'interval': '6h'})

        assert response.status_code == 400
        assert "Unknown interval '6h'" in response.json()['detail']

    def test_handler_failure_is_500(self, client) -> None:
        with patch.dict('clinic_crm.jobs.AUTOMATIONS', {'crashes': _crashes}):
            response = client.post("/automations/crashes")

        assert response.status_code == 500
        assert 'database is down' in response.json()['detail']


# =============================================================================
# Digest
# =============================================================================

class TestDigestRoutes:

    def test_send_with_date_and_force(self, client) -> None:
        send = AsyncMock(return_value={'success': True, 'date': '2025-03-14'})

        with patch('clinic_crm.api.digest.send_sales_digest', new=send):
            response = client.post("/digest/sales", json={'digest_date': '2025-03-14', 'force': True})

        assert response.status_code == 200
        send.assert_awaited_once_with(digest_date=date(2025, 3, 14), force=True)

    def test_send_defaults(self, client) -> None:
        send = AsyncMock(return_value={'success': False, 'error': 'SLACK_WEBHOOK_URL not configured.'})

        with patch('clinic_crm.api.digest.send_sales_digest', new=send):
            response = client.post("/digest/sales")

        # Job-level failures are reported in the body, not the status
        assert response.status_code == 200
        assert response.json()['success'] is False
        send.assert_awaited_once_with(digest_date=None, force=False)

    def test_status(self, client) -> None:
        status = {'last_successful_date': None, 'total_digest_count': 0, 'recent_dates': [], 'configured': True}

        with patch('clinic_crm.api.digest.get_digest_status', new=AsyncMock(return_value=status)):
            response = client.get("/digest/sales/status")

        assert response.json() == status


# =============================================================================
# Alexa
# =============================================================================

def _alexa_body(intent: Optional[str] = None) -> dict:
    request = {'type': 'IntentRequest' if intent else 'LaunchRequest', 'requestId': 'r-1'}
    if intent:
        request['intent'] = {'name': intent, 'confirmationStatus': 'NONE'}
    return {
        'version': '1.0',
        'session': {'new': True, 'sessionId': 's-1'},
        'context': {'System': {}},
        'request': request,
    }


class TestAlexaRoute:

    def test_speech_envelope(self, client) -> None:
        handle = AsyncMock(return_value=AlexaResponse.speak("Hoje foram vendidos 10 reais."))

        with patch('clinic_crm.api.alexa.handle_alexa_request', new=handle):
            response = client.post("/alexa", json=_alexa_body('TodayRevenueIntent'))

        assert response.status_code == 200
        assert response.json() == {
            'version': '1.0',
            'response': {
                'outputSpeech': {'type': 'PlainText', 'text': "Hoje foram vendidos 10 reais."},
                'shouldEndSession': True,
            },
        }
        assert handle.await_args.args[0].request.intent.name == 'TodayRevenueIntent'

    def test_failure_still_speaks(self, client) -> None:
        handle = AsyncMock(side_effect=RuntimeError("connection refused"))

        with patch('clinic_crm.api.alexa.handle_alexa_request', new=handle):
            response = client.post("/alexa", json=_alexa_body())

        assert response.status_code == 500
        body = response.json()
        assert body['response']['outputSpeech']['text'] == ERROR_TEXT
        assert body['response']['shouldEndSession'] is True
        assert body['error'] == 'connection refused'

    def test_envelope_without_request_is_422(self, client) -> None:
        response = client.post("/alexa", json={'version': '1.0'})

        assert response.status_code == 422
