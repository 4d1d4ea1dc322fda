"""
Recharge/Ticket Reconciliation System - Main Entry Point

Fetches ticket entries and platform recharges, validates every ticket against
the recharge that funds it, analyzes engagement, and writes reports.
Handles CLI arguments, logging setup, and coordinates service components.
"""

from __future__ import annotations
import argparse
import logging
import sys
from datetime import date
from typing import List, Optional

import structlog
from dotenv import load_dotenv

from brazil_time import brazil_now
from data_fetcher import DataFetcher
from draw_calendar import DrawCalendarError
from engagement_analyzer import analyze_engagement, analyze_engagement_by_date
from metrics import metrics
from models import Settings, ValidationOutcome
from recharge_validator import RechargeValidator
from report_generator import ReportGenerator
from result_cache import ResultCache


logger = structlog.get_logger()


def load_settings() -> Settings:
    try:
        return Settings()
    except Exception as e:
        logger.error(
            "Failed to load environment settings. Check your .env file.", error=str(e)
        )
        sys.exit(1)


class ReconciliationSystem:
    """
    Coordinates the ticket validation workflow.

    This class orchestrates:
    - Fetching entries and recharges from the spreadsheet exports
    - Ticket validation with FIFO recharge matching
    - Engagement analysis (overall and daily)
    - Report generation in CSV, JSON and text formats

    The validation result cache lives on the instance, so repeated runs over an
    unchanged entries sheet reuse the previous outcome.
    """

    def __init__(self, settings: Settings, platforms: Optional[List[str]] = None) -> None:
        self.settings = settings
        recharge_urls = {
            name.upper(): url for name, url in settings.RECHARGE_SHEET_URLS.items()
        }
        if platforms:
            wanted = {p.upper() for p in platforms}
            recharge_urls = {k: v for k, v in recharge_urls.items() if k in wanted}

        self.settings.REPORT_OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
        self.data_fetcher = DataFetcher(
            entries_url=settings.ENTRIES_SHEET_URL,
            recharge_urls=recharge_urls,
            cache_ttl=settings.CACHE_TTL_SECONDS,
            timeout=settings.FETCH_TIMEOUT_SECONDS,
            max_retries=settings.FETCH_MAX_RETRIES,
        )
        self.validator = RechargeValidator(
            batch_size=settings.VALIDATION_BATCH_SIZE,
            result_cache=ResultCache(),
        )
        self.report_generator = ReportGenerator()

    def run(self, target_date: date, days: int) -> Optional[ValidationOutcome]:
        """
        Execute one validation run.

        Returns the outcome, or None when the data could not be fetched or the
        draw calendar aborted the run.
        """
        logger.info("Starting ticket validation", date=target_date.isoformat())
        try:
            entries = self.data_fetcher.fetch_entries()
            recharges = self.data_fetcher.fetch_recharges()
            logger.info(
                "Data fetched successfully",
                entries_count=len(entries),
                recharge_count=len(recharges),
            )

            outcome = self.validator.validate_all(entries, recharges)
            engagement = analyze_engagement(entries, recharges)
            daily = analyze_engagement_by_date(entries, recharges, days=days, today=target_date)

            csv_path, summary_text, json_path = self.report_generator.generate_all_reports(
                outcome,
                self.settings.REPORT_OUTPUT_DIR,
                target_date,
                engagement=engagement,
                daily_engagement=daily,
            )
            logger.info(
                "Reports generated locally",
                csv_path=str(csv_path.as_posix()),
                json_path=str(json_path.as_posix()),
            )
            print(summary_text)
            return outcome

        except DrawCalendarError as e:
            logger.error("Draw calendar invariant violated; run aborted", error=str(e), exc_info=True)
            return None
        except Exception as e:
            logger.error("Ticket validation failed", error=str(e)[:500], exc_info=True)
            return None
        finally:
            self.data_fetcher.close()


def setup_logging(level: str = "INFO") -> None:
    """
    Configure structured JSON logging for production observability.
    """
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
        stream=sys.stdout,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Recharge/Ticket Reconciliation System.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --date 2026-01-08
  python main.py --date 2026-01-08 --platforms POPLUZ --days 14
        """,
    )
    parser.add_argument(
        "--date",
        type=str,
        default=brazil_now().date().isoformat(),
        help="Report date and last day of the engagement breakdown (YYYY-MM-DD). Defaults to today in Sao Paulo.",
    )
    parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Trailing days in the daily engagement breakdown.",
    )
    parser.add_argument(
        "--platforms",
        type=str,
        nargs="+",
        default=None,
        help="Recharge platforms to load (e.g., POPLUZ POPN1). Defaults to all configured.",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Tickets validated per batch.",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    settings = load_settings()
    setup_logging(settings.LOG_LEVEL)

    try:
        target_date = date.fromisoformat(args.date)
    except ValueError:
        logger.error("Invalid date format. Use YYYY-MM-DD.", provided_date=args.date)
        return 1

    if args.batch_size is not None:
        if args.batch_size <= 0:
            logger.error("Batch size must be positive.", provided_batch_size=args.batch_size)
            return 1
        settings.VALIDATION_BATCH_SIZE = args.batch_size

    if settings.METRICS_ENABLED:
        metrics.port = settings.METRICS_PORT
        metrics.start_metrics_server()

    system = ReconciliationSystem(settings, platforms=args.platforms)
    outcome = system.run(target_date, days=args.days or settings.ENGAGEMENT_DAYS)
    return 0 if outcome is not None else 1


if __name__ == "__main__":
    sys.exit(main())
