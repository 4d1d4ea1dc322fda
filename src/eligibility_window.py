"""
Eligibility window calculation for a single recharge.

A recharge entitles its owner to one ticket for one of two consecutive draw
days. Recharges recorded at or after 20:00 local time start on the following
day. The claim right expires at the cutoff hour of the second draw day.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from brazil_time import at_local_hour, to_local
from draw_calendar import DEFAULT_CUTOFF_HOUR, cutoff_hour, next_valid_draw_date
from models import EligibilityWindow

# Late classification always uses the fixed 20:00 boundary, even on
# early-cutoff days. cutoff_hour() only governs expiry.
LATE_CUTOFF_HOUR = DEFAULT_CUTOFF_HOUR


def calculate_eligibility_window(recharge_time: Optional[datetime]) -> Optional[EligibilityWindow]:
    """
    Derive the eligibility window of a recharge recorded at ``recharge_time``.

    Returns None when the instant is missing.
    """
    if recharge_time is None:
        return None

    local_time = to_local(recharge_time)
    is_late_cutoff = local_time.hour >= LATE_CUTOFF_HOUR

    day1_raw = local_time.date()
    if is_late_cutoff:
        day1_raw += timedelta(days=1)

    day1 = next_valid_draw_date(day1_raw)
    day2 = next_valid_draw_date(day1 + timedelta(days=1))

    return EligibilityWindow(
        day1=day1,
        day2=day2,
        expires_at=at_local_hour(day2, cutoff_hour(day2)),
        is_late_cutoff=is_late_cutoff,
    )


def is_ticket_in_window(ticket_time: Optional[datetime], expires_at: Optional[datetime]) -> bool:
    if ticket_time is None or expires_at is None:
        return False
    return ticket_time < expires_at
