"""
Batch validation of every ticket against the recharge collection.

Builds the composite-key partitions once, resolves tickets in fixed-size
batches and aggregates verdict statistics. The async variant yields to the
event loop between batches; both variants produce identical outcomes.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from matching_engine import CompositeKey, MatchingEngine
from metrics import metrics
from models import (
    RechargeEvent,
    TicketEntry,
    ValidationOutcome,
    ValidationResult,
    ValidationStats,
    ValidationStatus,
)
from result_cache import ResultCache, fingerprint

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50

Partitions = Tuple[
    Dict[CompositeKey, List[RechargeEvent]],
    Dict[CompositeKey, List[TicketEntry]],
]


class RechargeValidator:
    """Validates ticket collections and keeps run statistics."""

    def __init__(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        engine: Optional[MatchingEngine] = None,
        result_cache: Optional[ResultCache[ValidationOutcome]] = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.batch_size = batch_size
        self.engine = engine or MatchingEngine()
        self.result_cache = result_cache

    def _partition(
        self, tickets: Sequence[TicketEntry], recharges: Sequence[RechargeEvent]
    ) -> Partitions:
        recharges_by_key = self.engine.build_partitions(recharges, lambda r: r.occurred_at)
        tickets_by_key = self.engine.build_partitions(tickets, lambda t: t.registered_at)
        logger.info(
            "Partitioned %d recharges into %d keys and %d tickets into %d keys (%d keys in both)",
            len(recharges),
            len(recharges_by_key),
            len(tickets),
            len(tickets_by_key),
            len(tickets_by_key.keys() & recharges_by_key.keys()),
        )
        return recharges_by_key, tickets_by_key

    def _batches(self, tickets: Sequence[TicketEntry]) -> Iterator[Sequence[TicketEntry]]:
        for start in range(0, len(tickets), self.batch_size):
            yield tickets[start:start + self.batch_size]

    @staticmethod
    def _tally(stats: ValidationStats, result: ValidationResult) -> None:
        if result.status is ValidationStatus.VALID:
            stats.valid += 1
            if result.is_day2:
                stats.day2_valid += 1
        elif result.status is ValidationStatus.INVALID:
            stats.invalid += 1
        else:
            stats.unknown += 1

    def _validate_batch(
        self,
        batch: Sequence[TicketEntry],
        partitions: Partitions,
        results: List[ValidationResult],
        stats: ValidationStats,
    ) -> None:
        recharges_by_key, tickets_by_key = partitions
        for ticket in batch:
            result = self.engine.validate_ticket(ticket, recharges_by_key, tickets_by_key)
            results.append(result)
            self._tally(stats, result)

    def _cached(self, tickets: Sequence[TicketEntry]) -> Optional[ValidationOutcome]:
        if self.result_cache is None:
            return None
        cached = self.result_cache.get(fingerprint(tickets))
        if cached is not None and cached.entries_count == len(tickets):
            logger.info("Using cached validation results for %d tickets", len(tickets))
            metrics.record_cache_hit()
            return cached
        return None

    def _finish(
        self,
        tickets: Sequence[TicketEntry],
        recharges: Sequence[RechargeEvent],
        results: List[ValidationResult],
        stats: ValidationStats,
        started: float,
    ) -> ValidationOutcome:
        outcome = ValidationOutcome(
            results=results,
            stats=stats,
            recharge_count=len(recharges),
            entries_count=len(tickets),
        )
        duration = time.perf_counter() - started
        metrics.record_validation_run("success", duration)
        metrics.record_validation_stats(
            stats.valid, stats.invalid, stats.unknown, stats.day2_valid
        )
        logger.info(
            "Validation complete: %d tickets (valid=%d, invalid=%d, unknown=%d, day2=%d) in %.3fs",
            stats.total,
            stats.valid,
            stats.invalid,
            stats.unknown,
            stats.day2_valid,
            duration,
        )
        if self.result_cache is not None:
            self.result_cache.set(outcome, fingerprint(tickets))
        return outcome

    def validate_all(
        self, tickets: Sequence[TicketEntry], recharges: Sequence[RechargeEvent]
    ) -> ValidationOutcome:
        """
        Validate every ticket and return results in input order with run statistics.

        Args:
            tickets: Ticket registrations, in the order results should be reported
            recharges: Recharge events from all platforms

        Returns:
            ValidationOutcome with one ValidationResult per ticket

        Raises:
            DrawCalendarError: if the draw calendar cannot produce a window
        """
        cached = self._cached(tickets)
        if cached is not None:
            return cached

        started = time.perf_counter()
        try:
            partitions = self._partition(tickets, recharges)
            results: List[ValidationResult] = []
            stats = ValidationStats(total=len(tickets))
            for batch in self._batches(tickets):
                self._validate_batch(batch, partitions, results, stats)
        except Exception:
            metrics.record_validation_run("error", time.perf_counter() - started)
            raise
        return self._finish(tickets, recharges, results, stats, started)

    async def validate_all_async(
        self, tickets: Sequence[TicketEntry], recharges: Sequence[RechargeEvent]
    ) -> ValidationOutcome:
        """Same as validate_all, yielding to the event loop between batches."""
        cached = self._cached(tickets)
        if cached is not None:
            return cached

        started = time.perf_counter()
        try:
            partitions = self._partition(tickets, recharges)
            results: List[ValidationResult] = []
            stats = ValidationStats(total=len(tickets))
            for index, batch in enumerate(self._batches(tickets)):
                if index:
                    await asyncio.sleep(0)
                self._validate_batch(batch, partitions, results, stats)
        except Exception:
            metrics.record_validation_run("error", time.perf_counter() - started)
            raise
        return self._finish(tickets, recharges, results, stats, started)


def validate_all(
    tickets: Sequence[TicketEntry],
    recharges: Sequence[RechargeEvent],
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> ValidationOutcome:
    """Validate without a result cache."""
    return RechargeValidator(batch_size=batch_size).validate_all(tickets, recharges)
