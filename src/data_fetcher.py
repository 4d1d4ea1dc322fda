from __future__ import annotations

import io
import logging
import re
import threading
import time
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

import pandas as pd
import requests
from pydantic import ValidationError

from brazil_time import parse_brazil_datetime
from metrics import metrics
from models import RechargeEvent, TicketEntry
from result_cache import ResultCache

logger = logging.getLogger(__name__)

ENTRY_MIN_COLUMNS = 11
RECHARGE_MIN_COLUMNS = 4
ACCOUNT_ID_PATTERN = re.compile(r"^\d{10}$")
NUMBER_SEPARATORS = re.compile(r"[,;|\t]")
HEADER_MARKERS = ("member", "id", "date")


class SheetUnavailableError(Exception):
    """The export URL answered with an HTML page instead of CSV (sheet not public)."""


def detect_delimiter(header_line: str) -> str:
    """Pick the most frequent of comma, semicolon and tab in the header line."""
    counts = {sep: header_line.count(sep) for sep in (",", ";", "\t")}
    best = max(counts, key=counts.get)
    return best if counts[best] > 0 else ","


def read_csv_rows(csv_text: str) -> List[List[str]]:
    """
    Decode CSV text into string rows, header excluded.
    Blank lines are ignored, short rows are padded with empty strings and rows
    wider than the header are truncated to the header width.
    """
    lines = [line for line in csv_text.splitlines() if line.strip()]
    if len(lines) <= 1:
        return []
    sep = detect_delimiter(lines[0])
    width = lines[0].count(sep) + 1
    frame = pd.read_csv(
        io.StringIO("\n".join(lines)),
        sep=sep,
        header=None,
        dtype=str,
        keep_default_na=False,
        on_bad_lines=lambda fields: fields[:width],
        engine="python",
    ).fillna("")
    return [[str(cell) for cell in row] for row in frame.iloc[1:].values.tolist()]


def parse_numbers(raw: str) -> List[int]:
    numbers = []
    for part in NUMBER_SEPARATORS.split(raw or ""):
        part = part.strip()
        if part.isdigit() and 1 <= int(part) <= 80:
            numbers.append(int(part))
    return numbers


def parse_entry_row(row: List[str]) -> TicketEntry:
    """
    Columns: 0 DATA/HORA REGISTRO, 3 PLATFORM, 4 GAME ID, 5 WHATSAPP,
    6 NÚMEROS ESCOLHIDOS, 7 DATA SORTEIO, 8 CONCURSO, 9 BILHETE #, 10 STATUS.
    """
    timestamp = row[0].strip()
    return TicketEntry(
        platform=row[3].strip() or None,
        account_id=row[4].strip(),
        ticket_number=row[9].strip(),
        registered_at=parse_brazil_datetime(timestamp),
        requested_draw_date=row[7].strip() or None,
        source_status=(row[10].strip() or "PENDING").upper(),
        whatsapp=row[5].strip(),
        numbers=parse_numbers(row[6]),
        contest=row[8].strip(),
        raw_timestamp=timestamp,
    )


def parse_recharge_row(row: List[str], platform: str) -> Optional[RechargeEvent]:
    """
    Columns: 0 Member ID, 1 Order Number, 2 Record Time, 3 Change Amount,
    4 Balance After Change (unused).

    Returns None for header rows and rows that cannot back a ticket: account id
    not 10 digits, unparseable time, missing order number, non-positive amount.
    """
    if len(row) < RECHARGE_MIN_COLUMNS:
        return None
    first = row[0].strip().lower()
    if any(marker in first for marker in HEADER_MARKERS):
        return None

    account_id = row[0].strip()
    recharge_id = row[1].strip()
    record_time = row[2].strip()
    amount_text = row[3].strip().replace(",", "")

    if not ACCOUNT_ID_PATTERN.match(account_id) or not recharge_id:
        return None
    occurred_at = parse_brazil_datetime(record_time)
    if occurred_at is None:
        return None
    try:
        amount = Decimal(amount_text)
    except InvalidOperation:
        return None
    if not amount.is_finite() or amount <= 0:
        return None

    return RechargeEvent(
        platform=platform,
        account_id=account_id,
        recharge_id=recharge_id,
        occurred_at=occurred_at,
        amount=amount,
        raw_time=record_time,
    )


class DataFetcher:
    """
    Retrieves ticket entries and per-platform recharges from spreadsheet CSV exports.

    Each collection is cached for ``cache_ttl`` seconds. A call made while the
    same collection is already being fetched returns the current cached value
    instead of issuing a second request.
    """

    def __init__(
        self,
        entries_url: str,
        recharge_urls: Dict[str, str],
        cache_ttl: float = 180,
        timeout: int = 15,
        max_retries: int = 3,
    ) -> None:
        self.entries_url = entries_url
        self.recharge_urls = {name.upper(): url for name, url in recharge_urls.items()}
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = requests.Session()
        self.entries_cache: ResultCache[List[TicketEntry]] = ResultCache(cache_ttl)
        self.recharges_cache: ResultCache[List[RechargeEvent]] = ResultCache(cache_ttl)
        self._entries_lock = threading.Lock()
        self._recharges_lock = threading.Lock()

    def _make_request_with_retry(self, url: str) -> requests.Response:
        """
        HTTP GET with exponential backoff. A cache-busting ``t`` parameter keeps
        the export endpoint from serving stale CSV.
        """
        for attempt in range(self.max_retries):
            try:
                response = self.session.get(
                    url,
                    params={"t": int(time.time() * 1000)},
                    timeout=self.timeout,
                    allow_redirects=True,
                )
                response.raise_for_status()
                return response
            except requests.RequestException as e:
                if attempt < self.max_retries - 1:
                    wait_time = 2**attempt
                    logger.warning(
                        f"Request error (attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {wait_time}s..."
                    )
                    time.sleep(wait_time)
                else:
                    logger.error(f"Request failed after {self.max_retries} attempts: {e}")
                    raise
        raise requests.RequestException("Request failed for unknown reason")

    def fetch_csv(self, url: str, source: str) -> str:
        start = time.perf_counter()
        try:
            text = self._make_request_with_retry(url).text
            head = text.lstrip()[:20].lower()
            if head.startswith("<!doctype") or head.startswith("<html"):
                raise SheetUnavailableError(f"Sheet not publicly accessible: {source}")
        except Exception:
            metrics.record_sheet_fetch(source, "error", time.perf_counter() - start)
            raise
        metrics.record_sheet_fetch(source, "success", time.perf_counter() - start)
        return text

    def fetch_entries(self, force_refresh: bool = False) -> List[TicketEntry]:
        """
        Fetch all ticket entries, newest first.
        On failure, falls back to the last cached entries if there are any.
        """
        cached = self.entries_cache.get()
        if not force_refresh and cached is not None:
            return cached

        if not self._entries_lock.acquire(blocking=False):
            logger.debug("Entries fetch already in progress; serving cached value")
            return self.entries_cache.value or []

        try:
            rows = read_csv_rows(self.fetch_csv(self.entries_url, "entries"))
            entries: List[TicketEntry] = []
            dropped = 0
            for row in rows:
                if len(row) < ENTRY_MIN_COLUMNS or not row[4].strip():
                    dropped += 1
                    continue
                try:
                    entries.append(parse_entry_row(row))
                except ValidationError as exc:
                    logger.warning(f"Skipping invalid entry row: {exc}")
                    dropped += 1

            metrics.record_dropped_rows("entries", dropped)
            entries.sort(key=_newest_first(lambda e: e.registered_at))
            logger.info(f"Fetched {len(entries)} entries ({dropped} rows dropped)")
            self.entries_cache.set(entries)
            return entries

        except (requests.RequestException, SheetUnavailableError) as e:
            if self.entries_cache.value is not None:
                logger.error(f"Entries fetch failed, serving stale cache: {e}")
                return self.entries_cache.value
            raise
        finally:
            self._entries_lock.release()

    def fetch_platform_recharges(self, platform: str, url: str) -> List[RechargeEvent]:
        rows = read_csv_rows(self.fetch_csv(url, f"recharges_{platform.lower()}"))
        recharges: List[RechargeEvent] = []
        dropped = 0
        for row in rows:
            try:
                recharge = parse_recharge_row(row, platform)
            except ValidationError as exc:
                logger.warning(f"Skipping invalid {platform} recharge row: {exc}")
                recharge = None
            if recharge is None:
                dropped += 1
                continue
            recharges.append(recharge)
        metrics.record_dropped_rows(f"recharges_{platform.lower()}", dropped)
        return recharges

    def fetch_recharges(self, force_refresh: bool = False) -> List[RechargeEvent]:
        """
        Fetch recharges from every configured platform, newest first.

        A platform whose sheet cannot be fetched is logged and left out of the
        result; the remaining platforms are still returned.
        """
        cached = self.recharges_cache.get()
        if not force_refresh and cached is not None:
            return cached

        if not self._recharges_lock.acquire(blocking=False):
            logger.debug("Recharge fetch already in progress; serving cached value")
            return self.recharges_cache.value or []

        try:
            all_recharges: List[RechargeEvent] = []
            platform_count: Dict[str, int] = {}
            for platform, url in self.recharge_urls.items():
                try:
                    recharges = self.fetch_platform_recharges(platform, url)
                except (requests.RequestException, SheetUnavailableError) as e:
                    logger.error(f"Error fetching {platform} recharges: {e}")
                    continue
                all_recharges.extend(recharges)
                platform_count[platform] = len(recharges)
                logger.info(f"Fetched {len(recharges)} recharges from {platform}")

            if self.recharge_urls and not platform_count:
                logger.warning("No recharge platform could be fetched")

            all_recharges.sort(key=_newest_first(lambda r: r.occurred_at))
            logger.info(f"Total recharges loaded: {len(all_recharges)} {platform_count}")
            self.recharges_cache.set(all_recharges)
            return all_recharges
        finally:
            self._recharges_lock.release()

    def refresh_all(self) -> None:
        self.fetch_entries(force_refresh=True)
        self.fetch_recharges(force_refresh=True)

    def clear_cache(self) -> None:
        self.entries_cache.clear()
        self.recharges_cache.clear()

    def cache_status(self) -> Dict[str, Dict[str, object]]:
        status = {}
        for name, cache in (("entries", self.entries_cache), ("recharges", self.recharges_cache)):
            status[name] = {
                "loaded": cache.value is not None,
                "count": len(cache.value) if cache.value is not None else 0,
                "age": cache.age,
                "stale": not cache.is_fresh,
            }
        return status

    def __enter__(self) -> "DataFetcher":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit with session cleanup."""
        self.close()

    def close(self) -> None:
        """Close the requests session."""
        if getattr(self, "session", None):
            try:
                self.session.close()
            except Exception as e:
                logger.warning(f"Error closing session: {e}")


def _newest_first(instant):
    """Sort key placing undated events last."""
    def key(event):
        moment = instant(event)
        return (moment is None, -moment.timestamp() if moment is not None else 0)
    return key
