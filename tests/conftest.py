"""Shared fixtures: factories for recharge and ticket events."""

import sys
from datetime import date, datetime
from decimal import Decimal
from itertools import count
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from models import RechargeEvent, TicketEntry

ACCOUNT = "1234567890"
OTHER_ACCOUNT = "9876543210"


@pytest.fixture
def make_recharge():
    """Build RechargeEvents; instants are naive Brazil-local datetimes."""
    ids = count(1)

    def factory(occurred_at: datetime, account_id: str = ACCOUNT, platform: str = "POPN1",
                amount: str = "50.00", recharge_id: str = None) -> RechargeEvent:
        return RechargeEvent(
            platform=platform,
            account_id=account_id,
            recharge_id=recharge_id or f"ORD-{next(ids)}",
            occurred_at=occurred_at,
            amount=Decimal(amount),
        )

    return factory


@pytest.fixture
def make_ticket():
    """Build TicketEntries; instants are naive Brazil-local datetimes."""
    numbers = count(1)

    def factory(registered_at, draw_date, account_id: str = ACCOUNT, platform: str = "POPN1",
                ticket_number: str = None, source_status: str = "PENDING",
                contest: str = "6850") -> TicketEntry:
        return TicketEntry(
            platform=platform,
            account_id=account_id,
            ticket_number=ticket_number if ticket_number is not None else f"T-{next(numbers)}",
            registered_at=registered_at,
            requested_draw_date=draw_date,
            source_status=source_status,
            contest=contest,
        )

    return factory


# Reference days (2025): Oct 4 Saturday, Oct 5 Sunday, Oct 6 Monday, Oct 7 Tuesday
SATURDAY = date(2025, 10, 4)
SUNDAY = date(2025, 10, 5)
MONDAY = date(2025, 10, 6)
TUESDAY = date(2025, 10, 7)
WEDNESDAY = date(2025, 10, 8)
