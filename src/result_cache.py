"""
TTL result cache with advisory fingerprints.

A cache holds one value together with the fingerprint of the input it was
computed from and the instant it expires. Callers own the cache object and
inject it where needed; nothing here is module-level state.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Generic, Optional, Sequence, TypeVar

from structlog import get_logger

logger = get_logger()

V = TypeVar("V")


def fingerprint(items: Optional[Sequence[Any]]) -> str:
    """
    Coarse fingerprint of an event sequence: length plus first/last identifiers.

    This is an approximation, not a content hash. Two different sequences with
    the same length and the same first and last ticket numbers (or contests)
    fingerprint identically.
    """
    if items is None:
        return ""
    if not items:
        return "0--"

    def ident(item: Any) -> str:
        return str(
            getattr(item, "ticket_number", "")
            or getattr(item, "contest", "")
            or getattr(item, "recharge_id", "")
        )

    return f"{len(items)}-{ident(items[0])}-{ident(items[-1])}"


class ResultCache(Generic[V]):
    """
    Single-value cache: empty -> populated by set() -> invalidated by TTL or clear().

    A ``ttl_seconds`` of None means the entry only becomes invalid when its
    fingerprint stops matching or clear() is called.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self.value: Optional[V] = None
        self.fingerprint: Optional[str] = None
        self.stored_at: Optional[float] = None
        self.expiry: Optional[float] = None

    @property
    def is_populated(self) -> bool:
        return self.stored_at is not None

    @property
    def is_fresh(self) -> bool:
        if not self.is_populated:
            return False
        return self.expiry is None or self._clock() < self.expiry

    @property
    def age(self) -> Optional[float]:
        if self.stored_at is None:
            return None
        return self._clock() - self.stored_at

    def get(self, expected_fingerprint: Optional[str] = None) -> Optional[V]:
        """Return the cached value if fresh and, when given, the fingerprint matches."""
        if not self.is_fresh:
            return None
        if expected_fingerprint is not None and expected_fingerprint != self.fingerprint:
            logger.debug(
                "Cache fingerprint mismatch",
                cached=self.fingerprint,
                expected=expected_fingerprint,
            )
            return None
        return self.value

    def set(self, value: V, value_fingerprint: Optional[str] = None) -> None:
        now = self._clock()
        self.value = value
        self.fingerprint = value_fingerprint
        self.stored_at = now
        self.expiry = now + self.ttl_seconds if self.ttl_seconds is not None else None

    def clear(self) -> None:
        self.value = None
        self.fingerprint = None
        self.stored_at = None
        self.expiry = None
