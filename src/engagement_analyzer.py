"""
Engagement statistics between accounts that recharged and accounts that
registered tickets, plus the grouping helpers the dashboards aggregate with.

Everything here works on account ids alone and does not use the matching engine.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, TypeVar

from brazil_time import brazil_now, format_display_date, local_date, local_midnight
from models import DailyEngagement, EngagementStats, RechargeEvent, TicketEntry, TopEntrant

T = TypeVar("T")


def unique_account_ids(events: Iterable) -> Set[str]:
    return {e.account_id for e in events if e.account_id}


def analyze_engagement(
    tickets: Sequence[TicketEntry], recharges: Sequence[RechargeEvent]
) -> EngagementStats:
    """
    Compare the set of rechargers with the set of ticket creators.

    ``participation_rate`` is the percentage of rechargers that registered at
    least one ticket, rounded to one decimal.
    """
    recharger_ids = unique_account_ids(recharges)
    creator_ids = unique_account_ids(tickets)

    participants = creator_ids & recharger_ids
    recharged_no_ticket = recharger_ids - creator_ids

    recharge_counts = Counter(r.account_id for r in recharges if r.account_id)
    multi_recharge_no_ticket = [
        account for account, count in recharge_counts.items()
        if count > 1 and account not in creator_ids
    ]

    rate = round(len(participants) / len(recharger_ids) * 100, 1) if recharger_ids else 0.0

    return EngagementStats(
        total_rechargers=len(recharger_ids),
        total_participants=len(participants),
        recharged_no_ticket=len(recharged_no_ticket),
        participation_rate=rate,
        multi_recharge_no_ticket=len(multi_recharge_no_ticket),
        recharger_ids=sorted(recharger_ids),
        participant_ids=sorted(participants),
        recharged_no_ticket_ids=sorted(recharged_no_ticket),
    )


def group_by_local_date(
    events: Iterable[T], instant: Callable[[T], Optional[datetime]]
) -> Dict[date, List[T]]:
    """Bucket events by the local calendar date of their instant; undated events are skipped."""
    grouped: Dict[date, List[T]] = defaultdict(list)
    for event in events:
        moment = instant(event)
        if moment is not None:
            grouped[local_date(moment)].append(event)
    return dict(grouped)


def analyze_engagement_by_date(
    tickets: Sequence[TicketEntry],
    recharges: Sequence[RechargeEvent],
    days: int = 7,
    today: Optional[date] = None,
) -> List[DailyEngagement]:
    """
    Engagement for each of the trailing ``days`` local dates, newest first.

    Both collections are indexed by date once and each day looks up its bucket.
    """
    if today is None:
        today = brazil_now().date()

    tickets_by_date = group_by_local_date(tickets, lambda t: t.registered_at)
    recharges_by_date = group_by_local_date(recharges, lambda r: r.occurred_at)

    daily: List[DailyEngagement] = []
    for offset in range(days):
        day = today - timedelta(days=offset)
        day_tickets = tickets_by_date.get(day, [])
        day_recharges = recharges_by_date.get(day, [])
        engagement = analyze_engagement(day_tickets, day_recharges)
        daily.append(
            DailyEngagement(
                day=day.isoformat(),
                display_date=format_display_date(day),
                total_entries=len(day_tickets),
                **engagement.model_dump(),
            )
        )
    return daily


def group_entries_by_contest(tickets: Iterable[TicketEntry]) -> Dict[str, List[TicketEntry]]:
    grouped: Dict[str, List[TicketEntry]] = defaultdict(list)
    for ticket in tickets:
        grouped[ticket.contest or "Unknown"].append(ticket)
    return dict(grouped)


def filter_last_n_days(
    events: Iterable[T],
    instant: Callable[[T], Optional[datetime]],
    days: int = 7,
    now: Optional[datetime] = None,
) -> List[T]:
    """Keep events at or after local midnight ``days`` days before ``now``."""
    if now is None:
        now = brazil_now()
    since = local_midnight(local_date(now) - timedelta(days=days))
    return [e for e in events if instant(e) is not None and instant(e) >= since]


def top_entrants(tickets: Iterable[TicketEntry], limit: int = 10) -> List[TopEntrant]:
    """Accounts with the most registered tickets, most active first."""
    by_account: Dict[str, TopEntrant] = {}
    for ticket in tickets:
        if not ticket.account_id:
            continue
        entrant = by_account.get(ticket.account_id)
        if entrant is None:
            entrant = by_account[ticket.account_id] = TopEntrant(
                account_id=ticket.account_id, whatsapp=ticket.whatsapp
            )
        entrant.count += 1
        entrant.entries.append(ticket)
    return sorted(by_account.values(), key=lambda e: e.count, reverse=True)[:limit]
