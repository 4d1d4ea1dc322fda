"""
Unit tests for engagement statistics and aggregation helpers.
"""

from datetime import date, datetime

import pytest

from brazil_time import LOCAL_TZ
from conftest import MONDAY
from engagement_analyzer import (
    analyze_engagement,
    analyze_engagement_by_date,
    filter_last_n_days,
    group_by_local_date,
    group_entries_by_contest,
    top_entrants,
    unique_account_ids,
)

A, B, C, D = "1111111111", "2222222222", "3333333333", "4444444444"


class TestEngagementAnalyzer:
    """Recharger / ticket-creator overlap."""

    @pytest.fixture
    def collections(self, make_recharge, make_ticket):
        recharges = [
            make_recharge(datetime(2025, 10, 6, 9, 0), account_id=A),
            make_recharge(datetime(2025, 10, 6, 10, 0), account_id=B),
            make_recharge(datetime(2025, 10, 7, 10, 0), account_id=B),
            make_recharge(datetime(2025, 10, 7, 11, 0), account_id=C),
        ]
        tickets = [
            make_ticket(datetime(2025, 10, 6, 12, 0), MONDAY, account_id=A),
            make_ticket(datetime(2025, 10, 7, 12, 0), MONDAY, account_id=A),
            make_ticket(datetime(2025, 10, 7, 13, 0), MONDAY, account_id=D),
        ]
        return tickets, recharges

    def test_overlap_counts(self, collections):
        tickets, recharges = collections
        stats = analyze_engagement(tickets, recharges)

        assert stats.total_rechargers == 3
        assert stats.total_participants == 1
        assert stats.participant_ids == [A]
        assert stats.recharged_no_ticket == 2
        assert stats.recharged_no_ticket_ids == [B, C]
        assert stats.multi_recharge_no_ticket == 1
        assert stats.participation_rate == 33.3

    def test_no_rechargers_means_zero_rate(self, collections):
        tickets, _ = collections
        stats = analyze_engagement(tickets, [])
        assert stats.total_rechargers == 0
        assert stats.participation_rate == 0.0

    def test_unique_account_ids_ignores_blank(self, make_ticket):
        tickets = [
            make_ticket(datetime(2025, 10, 6, 12, 0), MONDAY, account_id=A),
            make_ticket(datetime(2025, 10, 6, 12, 0), MONDAY, account_id=""),
        ]
        assert unique_account_ids(tickets) == {A}

    def test_daily_breakdown(self, collections):
        tickets, recharges = collections
        daily = analyze_engagement_by_date(tickets, recharges, days=3, today=date(2025, 10, 7))

        assert [d.day for d in daily] == ["2025-10-07", "2025-10-06", "2025-10-05"]
        assert [d.display_date for d in daily] == ["07/10", "06/10", "05/10"]

        oct7, oct6, oct5 = daily
        assert oct7.total_entries == 2
        assert oct7.total_rechargers == 2
        assert oct7.total_participants == 0
        assert oct6.total_entries == 1
        assert oct6.participant_ids == [A]
        assert oct6.participation_rate == 50.0
        assert oct5.total_entries == 0
        assert oct5.total_rechargers == 0

    def test_group_by_local_date_uses_brazil_day(self, make_recharge):
        from datetime import timezone
        # 01:30 UTC on Oct 7 is still Oct 6 in Sao Paulo
        recharge = make_recharge(datetime(2025, 10, 7, 1, 30, tzinfo=timezone.utc))
        grouped = group_by_local_date([recharge], lambda r: r.occurred_at)
        assert list(grouped) == [date(2025, 10, 6)]

    def test_group_entries_by_contest(self, make_ticket):
        tickets = [
            make_ticket(datetime(2025, 10, 6, 12, 0), MONDAY, contest="6850"),
            make_ticket(datetime(2025, 10, 6, 13, 0), MONDAY, contest=""),
            make_ticket(datetime(2025, 10, 6, 14, 0), MONDAY, contest="6850"),
        ]
        grouped = group_entries_by_contest(tickets)
        assert len(grouped["6850"]) == 2
        assert len(grouped["Unknown"]) == 1

    def test_filter_last_n_days(self, collections):
        tickets, _ = collections
        now = datetime(2025, 10, 8, 9, 0, tzinfo=LOCAL_TZ)
        recent = filter_last_n_days(tickets, lambda t: t.registered_at, days=1, now=now)
        assert [t.registered_at.day for t in recent] == [7, 7]

    def test_top_entrants(self, collections):
        tickets, _ = collections
        ranking = top_entrants(tickets, limit=1)
        assert len(ranking) == 1
        assert ranking[0].account_id == A
        assert ranking[0].count == 2
        assert len(ranking[0].entries) == 2
