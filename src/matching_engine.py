"""
Core matching logic binding lottery tickets to the recharges that fund them.

Tickets and recharges are partitioned by composite key (platform + account) so
accounts that collide across platforms never match each other. Within a
partition each ticket claims the oldest recharge whose eligibility window is
still open, offers the ticket's draw date, and has not been claimed by an
earlier ticket.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from eligibility_window import calculate_eligibility_window
from models import (
    DEFAULT_PLATFORM,
    EligibilityWindow,
    MatchedRecharge,
    RechargeEvent,
    TicketEntry,
    ValidationResult,
    ValidationStatus,
)

logger = logging.getLogger(__name__)

CompositeKey = Tuple[str, str]
T = TypeVar("T")

VALID_SOURCE_STATUSES = {"VALID", "VALIDADO", "VALIDATED"}
INVALID_SOURCE_STATUSES = {"INVALID", "INVÁLIDO", "INVALIDO"}

REASON_PRE_VALIDATED = "Pre-validated in source data"
REASON_PRE_INVALIDATED = "Marked invalid in source data"
REASON_MISSING_ACCOUNT = "Missing account id"
REASON_INVALID_TIMESTAMP = "Invalid ticket timestamp"
REASON_BEFORE_RECHARGE = "Ticket created before any recharge"
REASON_WINDOW_EXPIRED = "Recharge window expired at cutoff on day 2"
REASON_DRAW_DATE_MISMATCH = "Draw date doesn't match eligibility"
REASON_CONSUMED = "Recharge already consumed by previous ticket"
REASON_NO_WINDOW = "No valid recharge window available"


def composite_key(platform: Optional[str], account_id: str) -> CompositeKey:
    """Partition key shared by tickets and recharges."""
    return ((platform or DEFAULT_PLATFORM).strip().upper(), account_id)


class MatchingEngine:
    """Resolves each ticket against the recharges of its own partition."""

    @staticmethod
    def build_partitions(
        items: Iterable[T],
        instant: Callable[[T], Optional[datetime]],
    ) -> Dict[CompositeKey, List[T]]:
        """
        Group events by composite key into new lists sorted oldest first.

        Events without an account id or without an instant are left out: they
        can neither be matched nor consume anything.
        """
        grouped: Dict[CompositeKey, List[T]] = defaultdict(list)
        skipped = 0
        for item in items:
            if not item.account_id or instant(item) is None:
                skipped += 1
                continue
            grouped[composite_key(item.platform, item.account_id)].append(item)
        if skipped:
            logger.debug("Left %d events without account id or instant out of partitions", skipped)
        return {key: sorted(group, key=instant) for key, group in grouped.items()}

    @staticmethod
    def _is_consumed(
        ticket: TicketEntry,
        recharge: RechargeEvent,
        window: EligibilityWindow,
        partition_tickets: List[TicketEntry],
    ) -> bool:
        """
        Whether another ticket registered between ``recharge`` and ``ticket``
        already claims this window. ``partition_tickets`` must be sorted oldest first.

        Tickets registered at the same instant are ordered by their position in
        the partition: the one sorted first is the prior claim.
        """
        for prior in partition_tickets:
            if prior is ticket:
                break
            prior_time = prior.registered_at
            if prior_time is None:
                continue
            if prior_time > ticket.registered_at:
                break
            # a repeated row of the same ticket never consumes for itself
            if ticket.ticket_number and prior.ticket_number == ticket.ticket_number:
                continue
            if prior_time <= recharge.occurred_at:
                continue
            if window.offers(prior.requested_draw_date):
                return True
        return False

    def find_match(
        self,
        ticket: TicketEntry,
        partition_recharges: List[RechargeEvent],
        partition_tickets: List[TicketEntry],
    ) -> Optional[MatchedRecharge]:
        """
        Find the recharge that funds ``ticket``, oldest eligible candidate first.

        Args:
            ticket: Ticket to resolve; must carry a registration instant
            partition_recharges: Recharges sharing the ticket's composite key
            partition_tickets: Tickets sharing the ticket's composite key, oldest first

        Returns:
            MatchedRecharge snapshot, or None if no candidate passes every check
        """
        ticket_time = ticket.registered_at
        if ticket_time is None or not partition_recharges:
            return None

        candidates = sorted(
            (r for r in partition_recharges if r.occurred_at < ticket_time),
            key=lambda r: r.occurred_at,
        )

        for recharge in candidates:
            window = calculate_eligibility_window(recharge.occurred_at)
            if window is None:
                continue
            if ticket_time >= window.expires_at:
                continue
            if not window.offers(ticket.requested_draw_date):
                continue
            if self._is_consumed(ticket, recharge, window, partition_tickets):
                logger.debug(
                    "Recharge %s already consumed before ticket %s",
                    recharge.recharge_id,
                    ticket.ticket_number,
                )
                continue

            return MatchedRecharge(
                platform=recharge.platform,
                account_id=recharge.account_id,
                recharge_id=recharge.recharge_id,
                occurred_at=recharge.occurred_at,
                amount=recharge.amount,
                day1=window.day1,
                day2=window.day2,
                expires_at=window.expires_at,
                is_day2=ticket.requested_draw_date == window.day2,
                is_late_cutoff=window.is_late_cutoff,
            )

        return None

    @staticmethod
    def _explain_no_match(ticket: TicketEntry, recharges: List[RechargeEvent]) -> str:
        """Re-derive the windows of every earlier recharge to say why none matched."""
        windows = [
            w
            for w in (
                calculate_eligibility_window(r.occurred_at)
                for r in recharges
                if r.occurred_at < ticket.registered_at
            )
            if w is not None
        ]
        if not windows:
            return REASON_NO_WINDOW

        live = [w for w in windows if ticket.registered_at < w.expires_at]
        if not live:
            return REASON_WINDOW_EXPIRED
        if not any(w.offers(ticket.requested_draw_date) for w in live):
            return REASON_DRAW_DATE_MISMATCH
        return REASON_CONSUMED

    def validate_ticket(
        self,
        ticket: TicketEntry,
        recharges_by_key: Dict[CompositeKey, List[RechargeEvent]],
        tickets_by_key: Dict[CompositeKey, List[TicketEntry]],
    ) -> ValidationResult:
        """Produce the verdict for a single ticket."""
        source_status = (ticket.source_status or "").strip().upper()
        if source_status in VALID_SOURCE_STATUSES:
            return ValidationResult(
                ticket=ticket, status=ValidationStatus.VALID, reason=REASON_PRE_VALIDATED
            )
        if source_status in INVALID_SOURCE_STATUSES:
            return ValidationResult(
                ticket=ticket, status=ValidationStatus.INVALID, reason=REASON_PRE_INVALIDATED
            )

        if not ticket.account_id:
            return ValidationResult(
                ticket=ticket, status=ValidationStatus.INVALID, reason=REASON_MISSING_ACCOUNT
            )

        key = composite_key(ticket.platform, ticket.account_id)
        recharges = recharges_by_key.get(key, [])
        if not recharges:
            return ValidationResult(
                ticket=ticket,
                status=ValidationStatus.INVALID,
                reason=f"No {ticket.platform} recharge found for account",
            )

        if ticket.registered_at is None:
            return ValidationResult(
                ticket=ticket, status=ValidationStatus.INVALID, reason=REASON_INVALID_TIMESTAMP
            )

        if not any(r.occurred_at < ticket.registered_at for r in recharges):
            return ValidationResult(
                ticket=ticket, status=ValidationStatus.INVALID, reason=REASON_BEFORE_RECHARGE
            )

        matched = self.find_match(ticket, recharges, tickets_by_key.get(key, []))
        if matched is None:
            return ValidationResult(
                ticket=ticket,
                status=ValidationStatus.INVALID,
                reason=self._explain_no_match(ticket, recharges),
            )

        reason = f"Matched recharge R${matched.amount}"
        if matched.is_day2:
            reason += " (Day 2)"
        return ValidationResult(
            ticket=ticket,
            status=ValidationStatus.VALID,
            reason=reason,
            matched_recharge=matched,
            is_day2=matched.is_day2,
        )
