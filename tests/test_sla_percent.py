"""
Tests for SLA percent-of-target calculations and threshold crossings.
"""
from datetime import datetime, time, timedelta, timezone

import pytest

from serviflow.config import NotificationType, Severity, SLAPhase, SLAThreshold
from serviflow.sla.domain import (
    NOTIFICATION_SPECS,
    BusinessHoursProfile,
    SLAPercentCalculator,
    ThresholdCrossing,
    TicketSLAView,
    crossed_thresholds,
)

T = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def view(**fields) -> TicketSLAView:
    fields.setdefault("id", 7)
    fields.setdefault("status", "Open")
    fields.setdefault("created_at", T)
    return TicketSLAView(**fields)


class TestResponsePercent:

    def test_linear_in_wall_clock_time(self):
        ticket = view(response_due_at=T + timedelta(hours=4))
        assert SLAPercentCalculator.response_percent(ticket, None, T + timedelta(hours=1)) == 25.0
        assert SLAPercentCalculator.response_percent(ticket, None, T + timedelta(hours=5)) == 125.0

    def test_exact_near_boundary_is_not_rounded_below(self):
        ticket = view(response_due_at=T + timedelta(hours=4))
        percent = SLAPercentCalculator.response_percent(ticket, None, T + timedelta(hours=3, minutes=24))
        assert percent == 85.0
        assert crossed_thresholds(percent, 85.0, 120.0) == [SLAThreshold.NEAR]

    def test_zero_without_due_date(self):
        assert SLAPercentCalculator.response_percent(view(), None, T + timedelta(hours=1)) == 0.0

    @pytest.mark.parametrize("due_offset", [timedelta(0), timedelta(minutes=-30)])
    def test_zero_for_empty_window(self, due_offset):
        ticket = view(response_due_at=T + due_offset)
        assert SLAPercentCalculator.response_percent(ticket, None, T + timedelta(hours=2)) == 0.0

    def test_never_negative_before_creation(self):
        ticket = view(response_due_at=T + timedelta(hours=4))
        assert SLAPercentCalculator.response_percent(ticket, None, T - timedelta(hours=1)) == 0.0

    def test_uses_business_hours(self):
        office = BusinessHoursProfile(
            id=1, days_of_week=(1, 2, 3, 4, 5), start_time=time(9, 0), end_time=time(17, 0)
        )
        # Created Friday 15:00, due Monday 11:00: four working hours in total
        friday = datetime(2026, 3, 6, 15, 0, tzinfo=timezone.utc)
        ticket = view(created_at=friday, response_due_at=datetime(2026, 3, 9, 11, 0, tzinfo=timezone.utc))
        saturday = datetime(2026, 3, 7, 12, 0, tzinfo=timezone.utc)
        assert SLAPercentCalculator.response_percent(ticket, office, saturday) == 50.0

    def test_naive_timestamps(self):
        ticket = view(
            created_at=T.replace(tzinfo=None),
            response_due_at=(T + timedelta(hours=2)).replace(tzinfo=None),
        )
        assert SLAPercentCalculator.response_percent(ticket, None, T + timedelta(hours=1)) == 50.0


class TestResolvePercent:

    def test_zero_before_clock_starts(self):
        ticket = view(resolve_due_at=T + timedelta(hours=8))
        assert SLAPercentCalculator.resolve_percent(ticket, None, T + timedelta(hours=9)) == 0.0

    def test_measured_from_first_response(self):
        ticket = view(first_responded_at=T, resolve_due_at=T + timedelta(hours=4))
        assert SLAPercentCalculator.resolve_percent(ticket, None, T + timedelta(hours=3)) == 75.0

    def test_ownership_start_wins_over_first_response(self):
        ticket = view(
            first_responded_at=T,
            ownership_started_at=T + timedelta(hours=2),
            resolve_due_at=T + timedelta(hours=6),
        )
        assert SLAPercentCalculator.resolve_percent(ticket, None, T + timedelta(hours=4)) == 50.0

    def test_pause_time_moves_due_date(self):
        ticket = view(
            first_responded_at=T,
            resolve_due_at=T + timedelta(hours=4),
            sla_pause_total_seconds=1800,
        )
        percent = SLAPercentCalculator.resolve_percent(ticket, None, T + timedelta(hours=4))
        assert percent < 100
        assert percent == pytest.approx(240 / 270 * 100)
        assert SLAPercentCalculator.effective_resolve_due(ticket) == T + timedelta(hours=4, minutes=30)

    def test_negative_pause_total_is_ignored(self):
        ticket = view(first_responded_at=T, resolve_due_at=T + timedelta(hours=4), sla_pause_total_seconds=-60)
        assert SLAPercentCalculator.effective_resolve_due(ticket) == T + timedelta(hours=4)

    def test_is_paused(self):
        assert SLAPercentCalculator.is_paused(view(pool_status="WAITING_CUSTOMER"))
        assert SLAPercentCalculator.is_paused(view(sla_paused_at=T))
        assert not SLAPercentCalculator.is_paused(view(pool_status="IN_PROGRESS_OWNED"))


class TestThresholds:

    @pytest.mark.parametrize("percent, expected", [
        (50.0, []),
        (85.0, [SLAThreshold.NEAR]),
        (100.0, [SLAThreshold.BREACHED, SLAThreshold.NEAR]),
        (130.0, [SLAThreshold.PAST, SLAThreshold.BREACHED, SLAThreshold.NEAR]),
    ])
    def test_crossed_thresholds_most_severe_first(self, percent, expected):
        assert crossed_thresholds(percent, 85.0, 120.0) == expected

    def test_every_phase_and_threshold_has_a_notification(self):
        assert len(NOTIFICATION_SPECS) == 6
        spec = NOTIFICATION_SPECS[(SLAPhase.RESPONSE, SLAThreshold.NEAR)]
        assert spec.type == NotificationType.SLA_RESPONSE_NEAR
        assert spec.severity == Severity.WARNING
        past = NOTIFICATION_SPECS[(SLAPhase.RESOLVE, SLAThreshold.PAST)]
        assert past.type == NotificationType.SLA_RESOLVE_PAST
        assert past.severity == Severity.CRITICAL

    def test_message_and_payload(self):
        spec = NOTIFICATION_SPECS[(SLAPhase.RESOLVE, SLAThreshold.BREACHED)]
        crossing = ThresholdCrossing(spec=spec, percent=101.26, due_at=T)
        assert spec.message(42, crossing.percent) == "SLA resolution breached for Ticket #42 (101.3%)"
        assert crossing.payload("acme", 42, "Gold") == {
            "tenantCode": "acme",
            "ticketId": 42,
            "percentUsed": 101.3,
            "dueAt": T.isoformat(),
            "slaName": "Gold",
            "phase": "resolve",
        }
