"""
Tests for the churn probability / help score heuristic.

Covers:
- Additive churn probability tiers and clamping
- Help score components and caps
- Risk level cut-offs
- The batch job: score persistence, alert threshold, alert dedup window,
  per-lead error isolation
"""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from clinic_crm.models.enums import ChurnRiskLevel
from clinic_crm.services.churn import (
    LeadSignals,
    calculate_churn_probability,
    calculate_help_score,
    classify_risk_level,
    days_between,
    run_churn_prediction,
    score_lead,
)


# =============================================================================
# Churn Probability
# =============================================================================

class TestCalculateChurnProbability:

    def test_every_factor_clamps_to_one(self) -> None:
        # 0.40 + 0.25 + 0.15 + 0.15 + 0.10 = 1.05
        assert calculate_churn_probability(65, 0.5, 2, True, 'cold') == 1.0

    def test_extreme_inputs_clamp_to_one(self) -> None:
        assert calculate_churn_probability(10000, 1.0, 0, True, 'cold') == 1.0

    def test_engaged_lead_scores_zero(self) -> None:
        assert calculate_churn_probability(10, 0.0, 10, False, 'warm') == 0.0

    def test_middle_tiers_add_up(self) -> None:
        # 31 days -> 0.25, ratio 0.4 -> 0.15, 4 interactions -> 0.08
        assert calculate_churn_probability(31, 0.4, 4, False, 'hot') == pytest.approx(0.48)

    @pytest.mark.parametrize(
        "days,expected",
        [(61, 0.40), (60, 0.25), (31, 0.25), (30, 0.10), (15, 0.10), (14, 0.0)],
    )
    def test_days_without_contact_thresholds_are_strict(self, days: int, expected: float) -> None:
        assert calculate_churn_probability(days, 0.0, 10, False, None) == pytest.approx(expected)

    def test_negative_ratio_of_exactly_half_takes_the_high_tier(self) -> None:
        assert calculate_churn_probability(0, 0.5, 10, False, None) == pytest.approx(0.25)

    def test_negative_ratio_of_exactly_point_three_adds_nothing(self) -> None:
        assert calculate_churn_probability(0, 0.3, 10, False, None) == 0.0

    def test_stale_and_cold_flags(self) -> None:
        assert calculate_churn_probability(0, 0.0, 10, True, None) == pytest.approx(0.15)
        assert calculate_churn_probability(0, 0.0, 10, False, 'cold') == pytest.approx(0.10)

    def test_sum_landing_on_cutoff_is_classified_on_it(self) -> None:
        # 0.25 + 0.15 + 0.15 + 0.15
        probability = calculate_churn_probability(31, 0.4, 2, True, None)
        assert probability == 0.7
        assert classify_risk_level(probability) == ChurnRiskLevel.CRITICAL


# =============================================================================
# Help Score
# =============================================================================

class TestCalculateHelpScore:

    def test_components_are_capped(self) -> None:
        # 20 (age cap) + 30 (interaction cap) + 13 + 15 (value cap) + 10 (hot)
        assert calculate_help_score(90, 12, 0.5, 20000, 'hot') == 88

    def test_empty_lead_scores_zero(self) -> None:
        assert calculate_help_score(0, 0, 0.0, 0, None) == 0

    def test_value_rounds_half_up(self) -> None:
        # 1500 / 1000 = 1.5 -> 2, warm +5
        assert calculate_help_score(0, 0, 0.0, 1500, 'warm') == 7

    def test_maximum_is_one_hundred(self) -> None:
        assert calculate_help_score(1000, 100, 1.0, 10 ** 9, 'hot') == 100

    def test_negative_inputs_clamp_to_zero(self) -> None:
        # -10 // 3 = -4 and -5000 / 1000 = -5, no other component adds points
        assert calculate_help_score(-10, 0, 0.0, -5000, None) == 0


class TestClassifyRiskLevel:

    @pytest.mark.parametrize(
        "probability,level",
        [
            (1.0, ChurnRiskLevel.CRITICAL),
            (0.7, ChurnRiskLevel.CRITICAL),
            (0.69, ChurnRiskLevel.HIGH),
            (0.5, ChurnRiskLevel.HIGH),
            (0.3, ChurnRiskLevel.MEDIUM),
            (0.29, ChurnRiskLevel.LOW),
            (0.0, ChurnRiskLevel.LOW),
        ],
    )
    def test_cutoffs(self, probability: float, level: ChurnRiskLevel) -> None:
        assert classify_risk_level(probability) == level


# =============================================================================
# Per-lead Scoring
# =============================================================================

class TestScoreLead:

    def test_missing_activity_counts_as_ninety_days(self, fixed_now, lead_row) -> None:
        signals = LeadSignals.from_record(lead_row(last_activity_at=None, interactions=0))

        prediction = score_lead(signals, fixed_now)

        # 0.40 (90 days) + 0.15 (no interactions)
        assert prediction.days_without_contact == 90
        assert prediction.churn_probability == pytest.approx(0.55)
        assert prediction.risk_level == ChurnRiskLevel.HIGH
        assert prediction.help_score == 5

    def test_naive_timestamps_are_read_as_utc(self, fixed_now) -> None:
        earlier = fixed_now.replace(tzinfo=None) - timedelta(days=3, hours=1)
        assert days_between(earlier, fixed_now) == 3


# =============================================================================
# Batch Job
# =============================================================================

@pytest.mark.asyncio
class TestRunChurnPrediction:

    def _rows(self, fixed_now, lead_row):
        risky = lead_row(
            id='lead-risky',
            last_activity_at=fixed_now - timedelta(days=70),
            interactions=2,
            negative_interactions=1,
            is_stale=True,
            temperature='cold',
        )
        healthy = lead_row(id='lead-ok', assigned_to='user-2')
        return [risky, healthy]

    async def test_scores_persisted_and_alert_created(
        self, mock_db_pool, mock_conn, patch_settings, fixed_now, lead_row
    ) -> None:
        # Arrange
        mock_conn.fetch.return_value = self._rows(fixed_now, lead_row)

        # Act
        with patch('clinic_crm.services.churn.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            result = await run_churn_prediction(now=fixed_now)

        # Assert: two score updates and one notification insert
        assert result.leads_processed == 2
        assert result.high_risk_leads == 1
        assert result.critical_alerts_created == 1
        assert result.errors == 0
        assert result.avg_churn_probability == 0.5
        assert mock_conn.execute.await_count == 3

        notification_args = mock_conn.execute.await_args_list[1].args
        assert 'INSERT INTO notifications' in notification_args[0]
        assert notification_args[1] == 'user-1'
        assert notification_args[3] == 'churn_risk'

    async def test_recent_alert_suppresses_a_second_one(
        self, mock_db_pool, mock_conn, patch_settings, fixed_now, lead_row
    ) -> None:
        # Arrange: an alert for the lead exists inside the dedup window
        mock_conn.fetch.return_value = self._rows(fixed_now, lead_row)
        mock_conn.fetchrow.return_value = {'?column?': 1}

        # Act
        with patch('clinic_crm.services.churn.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            result = await run_churn_prediction(now=fixed_now)

        # Assert
        assert result.critical_alerts_created == 0
        assert mock_conn.execute.await_count == 2
        dedup_args = mock_conn.fetchrow.await_args.args
        assert dedup_args[1:4] == ('churn_risk', 'lead_id', 'lead-risky')
        assert dedup_args[4] == fixed_now - timedelta(days=7)

    async def test_unassigned_lead_gets_no_alert(
        self, mock_db_pool, mock_conn, patch_settings, fixed_now, lead_row
    ) -> None:
        rows = self._rows(fixed_now, lead_row)
        rows[0]['assigned_to'] = None
        mock_conn.fetch.return_value = rows

        with patch('clinic_crm.services.churn.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            result = await run_churn_prediction(now=fixed_now)

        assert result.critical_alerts_created == 0
        mock_conn.fetchrow.assert_not_awaited()

    async def test_failure_on_one_lead_does_not_stop_the_batch(
        self, mock_db_pool, mock_conn, patch_settings, fixed_now, lead_row
    ) -> None:
        # Arrange: the first score update fails
        mock_conn.fetch.return_value = self._rows(fixed_now, lead_row)
        mock_conn.execute.side_effect = [RuntimeError("deadlock detected"), None]

        # Act
        with patch('clinic_crm.services.churn.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            result = await run_churn_prediction(now=fixed_now)

        # Assert
        assert result.errors == 1
        assert result.leads_processed == 1
        assert result.details[0].lead_id == 'lead-ok'

    async def test_no_active_leads(self, mock_db_pool, mock_conn, patch_settings, fixed_now) -> None:
        with patch('clinic_crm.services.churn.get_db_pool', new=AsyncMock(return_value=mock_db_pool)):
            result = await run_churn_prediction(now=fixed_now)

        assert result.leads_processed == 0
        assert result.avg_churn_probability == 0.0
