from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest
import requests

from brazil_time import LOCAL_TZ
from data_fetcher import (
    DataFetcher,
    SheetUnavailableError,
    detect_delimiter,
    parse_numbers,
    parse_recharge_row,
    read_csv_rows,
)
from models import RechargeEvent, TicketEntry

ENTRIES_URL = "https://sheets.example.com/entries.csv"
POPN1_URL = "https://sheets.example.com/popn1.csv"
POPLUZ_URL = "https://sheets.example.com/popluz.csv"

ENTRIES_CSV = "\n".join(
    [
        "DATA/HORA REGISTRO,NOME,EMAIL,PLATFORM,GAME ID,WHATSAPP,NÚMEROS ESCOLHIDOS,DATA SORTEIO,CONCURSO,BILHETE #,STATUS",
        '06/10/2025 12:00:00,,,POPN1,1234567890,5511999999999,"5,12,80",06/10/2025,6850,T-1,',
        '07/10/2025 09:30:00,,,popluz,2222222222,5511888888888,"1,2,99",07/10/2025,6851,T-2,validado',
        "",
        "06/10/2025 13:00:00,,,POPN1,,5511777777777,3,06/10/2025,6850,T-3,",
        "06/10/2025 14:00:00,,,POPN1",
    ]
)

RECHARGE_CSV = "\n".join(
    [
        "Member ID,Order Number,Record Time,Change Amount,Balance After Change",
        '1234567890,ORD-1,06/10/2025 09:00:00,"1,000.00",1500',
        "12345,ORD-2,06/10/2025 09:10:00,10,20",
        "1234567890,,06/10/2025 09:20:00,10,30",
        "1234567890,ORD-3,yesterday,10,40",
        "1234567890,ORD-4,06/10/2025 10:00:00,-5,35",
        "1234567890,ORD-5,06/10/2025 11:00:00,20.00,55",
    ]
)


def csv_response(text: str) -> Mock:
    response = Mock()
    response.text = text
    response.raise_for_status = Mock()
    return response


class TestCsvParsing:
    def test_detect_delimiter(self):
        assert detect_delimiter("a;b;c") == ";"
        assert detect_delimiter("a\tb\tc") == "\t"
        assert detect_delimiter("a,b;c,d") == ","
        assert detect_delimiter("single") == ","

    def test_read_csv_rows_skips_header_and_pads(self):
        rows = read_csv_rows("h1;h2;h3\n1;2;3\n\n4;5\n")
        assert rows == [["1", "2", "3"], ["4", "5", ""]]

    def test_read_csv_rows_keeps_rows_wider_than_header(self):
        rows = read_csv_rows("A,B,C,D\n1,2,3,4\n5,6,7,8,9\n10,11,12,13,,\n")
        assert rows == [["1", "2", "3", "4"], ["5", "6", "7", "8"], ["10", "11", "12", "13"]]

    def test_read_csv_rows_header_only(self):
        assert read_csv_rows("h1,h2\n") == []
        assert read_csv_rows("") == []

    def test_parse_numbers_keeps_range_1_to_80(self):
        assert parse_numbers("5, 12;80|81 ,x,0") == [5, 12, 80]
        assert parse_numbers("") == []

    def test_parse_recharge_row_ignores_header_like_rows(self):
        assert parse_recharge_row(["Member ID", "Order", "Time", "Amount"], "POPN1") is None
        assert parse_recharge_row(["1234567890", "ORD-1"], "POPN1") is None


class TestDataFetcher:
    @pytest.fixture
    def fetcher(self):
        fetcher = DataFetcher(
            entries_url=ENTRIES_URL,
            recharge_urls={"popn1": POPN1_URL, "POPLUZ": POPLUZ_URL},
            cache_ttl=180,
            timeout=5,
            max_retries=1,
        )
        yield fetcher
        fetcher.close()

    # ---------------------------
    # Entries
    # ---------------------------
    @patch("data_fetcher.requests.Session.get")
    def test_fetch_entries_parses_rows(self, mock_get, fetcher):
        mock_get.return_value = csv_response(ENTRIES_CSV)

        entries = fetcher.fetch_entries()

        assert all(isinstance(e, TicketEntry) for e in entries)
        # newest first; rows without an account id are dropped
        assert [e.ticket_number for e in entries] == ["T-2", "T-1"]

        popluz, popn1 = entries
        assert popluz.platform == "POPLUZ"
        assert popluz.source_status == "VALIDADO"
        assert popluz.numbers == [1, 2]
        assert popn1.registered_at == datetime(2025, 10, 6, 12, 0, tzinfo=LOCAL_TZ)
        assert popn1.requested_draw_date == date(2025, 10, 6)
        assert popn1.source_status == "PENDING"
        assert popn1.whatsapp == "5511999999999"
        assert popn1.contest == "6850"
        assert popn1.numbers == [5, 12, 80]

    @patch("data_fetcher.requests.Session.get")
    def test_fetch_entries_sends_cache_buster(self, mock_get, fetcher):
        mock_get.return_value = csv_response(ENTRIES_CSV)
        fetcher.fetch_entries()

        args, kwargs = mock_get.call_args
        assert args[0] == ENTRIES_URL
        assert "t" in kwargs["params"]
        assert kwargs["timeout"] == 5

    @patch("data_fetcher.requests.Session.get")
    def test_fetch_entries_is_cached(self, mock_get, fetcher):
        mock_get.return_value = csv_response(ENTRIES_CSV)

        first = fetcher.fetch_entries()
        second = fetcher.fetch_entries()

        assert second is first
        assert mock_get.call_count == 1

        fetcher.fetch_entries(force_refresh=True)
        assert mock_get.call_count == 2

    @patch("data_fetcher.requests.Session.get")
    def test_html_response_means_sheet_not_public(self, mock_get, fetcher):
        mock_get.return_value = csv_response("<!DOCTYPE html><html><body>Sign in</body></html>")

        with pytest.raises(SheetUnavailableError):
            fetcher.fetch_entries()

    @patch("data_fetcher.requests.Session.get")
    def test_failed_refresh_serves_stale_entries(self, mock_get, fetcher):
        mock_get.return_value = csv_response(ENTRIES_CSV)
        cached = fetcher.fetch_entries()

        mock_get.side_effect = requests.ConnectionError("network down")
        entries = fetcher.fetch_entries(force_refresh=True)

        assert entries is cached

    @patch("data_fetcher.requests.Session.get")
    def test_failure_without_cache_propagates(self, mock_get, fetcher):
        mock_get.side_effect = requests.ConnectionError("network down")

        with pytest.raises(requests.RequestException):
            fetcher.fetch_entries()

    @patch("data_fetcher.requests.Session.get")
    def test_concurrent_fetch_serves_current_value(self, mock_get, fetcher):
        fetcher._entries_lock.acquire()
        try:
            assert fetcher.fetch_entries() == []
        finally:
            fetcher._entries_lock.release()
        mock_get.assert_not_called()

    # ---------------------------
    # Retry
    # ---------------------------
    @patch("data_fetcher.time.sleep")
    @patch("data_fetcher.requests.Session.get")
    def test_retry_with_exponential_backoff(self, mock_get, mock_sleep):
        fetcher = DataFetcher(ENTRIES_URL, {}, max_retries=3)
        mock_get.side_effect = [
            requests.Timeout("slow"),
            requests.ConnectionError("reset"),
            csv_response(ENTRIES_CSV),
        ]

        entries = fetcher.fetch_entries()

        assert len(entries) == 2
        assert mock_get.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1, 2]

    @patch("data_fetcher.time.sleep")
    @patch("data_fetcher.requests.Session.get")
    def test_retry_gives_up_after_max_attempts(self, mock_get, mock_sleep):
        fetcher = DataFetcher(ENTRIES_URL, {}, max_retries=2)
        mock_get.side_effect = requests.ConnectionError("reset")

        with pytest.raises(requests.ConnectionError):
            fetcher.fetch_entries()
        assert mock_get.call_count == 2

    # ---------------------------
    # Recharges
    # ---------------------------
    @patch("data_fetcher.requests.Session.get")
    def test_fetch_recharges_drops_unusable_rows(self, mock_get, fetcher):
        fetcher.recharge_urls = {"POPN1": POPN1_URL}
        mock_get.return_value = csv_response(RECHARGE_CSV)

        recharges = fetcher.fetch_recharges()

        assert all(isinstance(r, RechargeEvent) for r in recharges)
        assert [r.recharge_id for r in recharges] == ["ORD-5", "ORD-1"]
        assert recharges[1].amount == Decimal("1000.00")
        assert recharges[1].raw_time == "06/10/2025 09:00:00"
        assert all(r.platform == "POPN1" for r in recharges)

    @patch("data_fetcher.requests.Session.get")
    def test_recharge_row_with_trailing_column_is_kept(self, mock_get, fetcher):
        fetcher.recharge_urls = {"POPN1": POPN1_URL}
        mock_get.return_value = csv_response(
            "Member ID,Order Number,Record Time,Change Amount,Balance After Change\n"
            "1234567890,ORD-1,06/10/2025 09:00:00,10.00,10,extra\n"
        )

        recharges = fetcher.fetch_recharges()

        assert [r.recharge_id for r in recharges] == ["ORD-1"]
        assert recharges[0].amount == Decimal("10.00")

    @patch("data_fetcher.requests.Session.get")
    def test_failing_platform_is_skipped(self, mock_get, fetcher):
        def fake_get(url, **kwargs):
            if url == POPLUZ_URL:
                raise requests.HTTPError("403 Forbidden")
            return csv_response(RECHARGE_CSV)

        mock_get.side_effect = fake_get

        recharges = fetcher.fetch_recharges()

        assert len(recharges) == 2
        assert {r.platform for r in recharges} == {"POPN1"}

    def test_platform_names_are_uppercased(self, fetcher):
        assert set(fetcher.recharge_urls) == {"POPN1", "POPLUZ"}

    # ---------------------------
    # Cache management
    # ---------------------------
    @patch("data_fetcher.requests.Session.get")
    def test_cache_status_and_clear(self, mock_get, fetcher):
        mock_get.return_value = csv_response(ENTRIES_CSV)
        fetcher.fetch_entries()

        status = fetcher.cache_status()
        assert status["entries"]["loaded"] is True
        assert status["entries"]["count"] == 2
        assert status["entries"]["stale"] is False
        assert status["recharges"]["loaded"] is False

        fetcher.clear_cache()
        assert fetcher.cache_status()["entries"]["loaded"] is False

    def test_context_manager_closes_session(self):
        with DataFetcher(ENTRIES_URL, {}) as fetcher:
            fetcher.session = Mock()
            session = fetcher.session
        session.close.assert_called_once()
