"""
Tests for the Alexa voice reports.

Speech builders are checked directly; handle_alexa_request is run with the
data-access functions patched in the voice_reports namespace.
"""

from datetime import date
from unittest.mock import AsyncMock, patch

import pytest

from clinic_crm.models.schemas import AlexaRequest
from clinic_crm.services.scoring import PointRecords
from clinic_crm.services.voice_reports import (
    GOODBYE_TEXT,
    HELP_TEXT,
    build_churn_speech,
    build_goal_speech,
    build_new_leads_speech,
    build_results_speech,
    format_brl,
    format_percent,
    handle_alexa_request,
)


TODAY = date(2025, 3, 15)

TEAMS = [
    {'id': 't1', 'name': 'Lótus'},
    {'id': 't2', 'name': 'Orquídea'},
]


def alexa_request(request_type: str = 'IntentRequest', intent: str = None, slots: dict = None) -> AlexaRequest:
    body = {'type': request_type, 'locale': 'pt-BR'}
    if intent:
        body['intent'] = {'name': intent, 'slots': slots or {}}
    return AlexaRequest.model_validate({'version': '1.0', 'session': {'new': True}, 'request': body})


def speech(response) -> str:
    return response.response.outputSpeech.text


# =============================================================================
# Speech Builders
# =============================================================================

class TestSpeechFormatting:

    def test_brl_uses_dot_thousands(self) -> None:
        assert format_brl(1234567.8) == '1.234.568'
        assert format_brl(0) == '0'

    def test_percent_uses_decimal_comma(self) -> None:
        assert format_percent(45.26) == '45,3'

    def test_results_speech(self) -> None:
        assert build_results_speech(1500, 45000, 100000) == (
            "Hoje foram vendidos 1.500 reais. "
            "No mês, o total é de 45.000 reais, representando 45,0 por cento da meta."
        )

    def test_results_speech_without_goal(self) -> None:
        assert 'representando 0,0 por cento' in build_results_speech(0, 1000, 0)

    def test_goal_speech_spreads_the_rest_over_remaining_days(self) -> None:
        # 17 days left in March counting the 15th
        assert build_goal_speech(60000, 100000, TODAY) == (
            "Estamos em 60,0 por cento da meta. "
            "Faltam 40.000 reais em 17 dias, cerca de 2.353 reais por dia."
        )

    def test_goal_speech_when_goal_met(self) -> None:
        assert build_goal_speech(120000, 100000, TODAY).startswith("Meta batida! Já vendemos 120.000 reais")

    def test_goal_speech_without_goal(self) -> None:
        assert build_goal_speech(5000, 0, TODAY) == "Ainda não há meta cadastrada para este mês."

    def test_churn_speech(self) -> None:
        assert build_churn_speech(0, 0) == "Nenhum lead ativo está em risco alto de churn."
        assert build_churn_speech(2, 5) == "Há 2 leads em risco crítico e 5 em risco alto de churn."

    @pytest.mark.parametrize(
        "count,text",
        [(0, "Nenhum lead novo entrou hoje."), (1, "Entrou um lead novo hoje."), (4, "Entraram 4 leads novos hoje.")],
    )
    def test_new_leads_speech(self, count: int, text: str) -> None:
        assert build_new_leads_speech(count) == text


# =============================================================================
# Request Handling
# =============================================================================

@pytest.mark.asyncio
class TestHandleAlexaRequest:

    async def test_launch_answers_with_month_summary(self, patch_settings) -> None:
        # Arrange: today's revenue, month revenue, month goal
        query = AsyncMock(side_effect=[{'total': 1500}, {'total': 45000}, {'goal': 100000}])

        # Act
        with patch('clinic_crm.services.voice_reports.execute_query_one', new=query):
            response = await handle_alexa_request(alexa_request('LaunchRequest'), today=TODAY)

        # Assert
        assert speech(response).startswith("Hoje foram vendidos 1.500 reais.")
        assert response.response.shouldEndSession is True
        assert response.version == '1.0'
        assert query.await_args_list[0].args[1:] == (TODAY, TODAY)
        assert query.await_args_list[1].args[1:] == (date(2025, 3, 1), TODAY)
        assert query.await_args_list[2].args[1:] == (2025, 3)

    async def test_session_ended_says_goodbye_without_queries(self, patch_settings) -> None:
        query = AsyncMock()

        with patch('clinic_crm.services.voice_reports.execute_query_one', new=query):
            response = await handle_alexa_request(alexa_request('SessionEndedRequest'), today=TODAY)

        assert speech(response) == GOODBYE_TEXT
        query.assert_not_awaited()

    @pytest.mark.parametrize(
        "intent,text",
        [('AMAZON.HelpIntent', HELP_TEXT), ('AMAZON.StopIntent', GOODBYE_TEXT), ('AMAZON.CancelIntent', GOODBYE_TEXT)],
    )
    async def test_builtin_intents(self, patch_settings, intent: str, text: str) -> None:
        response = await handle_alexa_request(alexa_request(intent=intent), today=TODAY)

        assert speech(response) == text

    async def test_unknown_intent_falls_back_to_summary(self, patch_settings) -> None:
        query = AsyncMock(side_effect=[{'total': 0}, {'total': 0}, {'goal': 0}])

        with patch('clinic_crm.services.voice_reports.execute_query_one', new=query):
            response = await handle_alexa_request(alexa_request(intent='WeatherIntent'), today=TODAY)

        assert speech(response).startswith("Hoje foram vendidos 0 reais.")

    async def test_today_revenue(self, patch_settings) -> None:
        query = AsyncMock(return_value={'total': 8250.4})

        with patch('clinic_crm.services.voice_reports.execute_query_one', new=query):
            response = await handle_alexa_request(alexa_request(intent='TodayRevenueIntent'), today=TODAY)

        assert speech(response) == "Hoje foram vendidos 8.250 reais."

    async def test_churn_risk_counts(self, patch_settings) -> None:
        query = AsyncMock(return_value={'critical': 2, 'high': 5})

        with patch('clinic_crm.services.voice_reports.execute_query_one', new=query):
            response = await handle_alexa_request(alexa_request(intent='ChurnRiskIntent'), today=TODAY)

        assert speech(response) == "Há 2 leads em risco crítico e 5 em risco alto de churn."
        assert query.await_args.args[1:] == ('critical', 'high')

    async def test_new_leads_use_clinic_timezone(self, patch_settings) -> None:
        query = AsyncMock(return_value={'total': 3})

        with patch('clinic_crm.services.voice_reports.execute_query_one', new=query):
            response = await handle_alexa_request(alexa_request(intent='NewLeadsTodayIntent'), today=TODAY)

        assert speech(response) == "Entraram 3 leads novos hoje."
        assert query.await_args.args[1:] == (TODAY, patch_settings.clinic_timezone)

    async def test_month_leader(self, patch_settings) -> None:
        # Arrange
        records = PointRecords.from_rows({'cards': [
            {'team_id': 't1', 'date': date(2025, 3, 2), 'points': 10},
            {'team_id': 't2', 'date': date(2025, 3, 3), 'points': 25},
        ]})

        # Act
        with patch('clinic_crm.services.voice_reports.fetch_teams', new=AsyncMock(return_value=TEAMS)), \
                patch('clinic_crm.services.voice_reports.fetch_point_records', new=AsyncMock(return_value=records)):
            response = await handle_alexa_request(alexa_request(intent='MonthLeaderIntent'), today=TODAY)

        # Assert
        assert speech(response) == "A equipe Orquídea lidera o mês com 25 pontos."

    async def test_year_leader_without_teams(self, patch_settings) -> None:
        with patch('clinic_crm.services.voice_reports.fetch_teams', new=AsyncMock(return_value=[])), \
                patch('clinic_crm.services.voice_reports.fetch_point_records',
                      new=AsyncMock(return_value=PointRecords.from_rows({}))):
            response = await handle_alexa_request(alexa_request(intent='YearLeaderIntent'), today=TODAY)

        assert speech(response) == "Ainda não há equipes cadastradas."

    async def test_team_points_matches_without_accents(self, patch_settings) -> None:
        records = PointRecords.from_rows({'cards': [{'team_id': 't2', 'date': date(2025, 3, 3), 'points': 12}]})
        slots = {'team': {'name': 'team', 'value': 'orquidea'}}

        with patch('clinic_crm.services.voice_reports.fetch_teams', new=AsyncMock(return_value=TEAMS)), \
                patch('clinic_crm.services.voice_reports.fetch_point_records', new=AsyncMock(return_value=records)):
            response = await handle_alexa_request(
                alexa_request(intent='TeamPointsIntent', slots=slots), today=TODAY
            )

        assert speech(response) == "A equipe Orquídea tem 12 pontos neste mês."

    async def test_team_points_without_slot_asks_back(self, patch_settings) -> None:
        response = await handle_alexa_request(alexa_request(intent='TeamPointsIntent'), today=TODAY)

        assert speech(response) == "Qual equipe você quer consultar?"

    async def test_blank_team_slot_asks_back(self, patch_settings) -> None:
        slots = {'team': {'name': 'team', 'value': '  '}}
        teams = AsyncMock(return_value=TEAMS)

        with patch('clinic_crm.services.voice_reports.fetch_teams', new=teams):
            response = await handle_alexa_request(
                alexa_request(intent='TeamPointsIntent', slots=slots), today=TODAY
            )

        assert speech(response) == "Qual equipe você quer consultar?"
        teams.assert_not_awaited()

    async def test_team_points_unknown_team(self, patch_settings) -> None:
        slots = {'team': {'name': 'team', 'value': 'Girassol'}}

        with patch('clinic_crm.services.voice_reports.fetch_teams', new=AsyncMock(return_value=TEAMS)):
            response = await handle_alexa_request(
                alexa_request(intent='TeamPointsIntent', slots=slots), today=TODAY
            )

        assert speech(response) == "Não encontrei a equipe Girassol."

    async def test_database_errors_propagate(self, patch_settings) -> None:
        query = AsyncMock(side_effect=RuntimeError("connection refused"))

        with patch('clinic_crm.services.voice_reports.execute_query_one', new=query):
            with pytest.raises(RuntimeError):
                await handle_alexa_request(alexa_request(intent='TodayRevenueIntent'), today=TODAY)
