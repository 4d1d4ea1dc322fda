"""
Validation reporting module for CSV, JSON, and executive summaries.
"""

from __future__ import annotations

import json
from collections import Counter
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
import structlog

from models import DailyEngagement, EngagementStats, ValidationOutcome, ValidationStatus

logger = structlog.get_logger()

CSV_COLUMNS = [
    "ticket_number",
    "platform",
    "account_id",
    "registered_at",
    "requested_draw_date",
    "contest",
    "status",
    "reason",
    "is_day2",
    "recharge_id",
    "recharge_amount",
    "recharge_time",
    "eligible_day1",
    "eligible_day2",
]


class ReportGenerator:
    """Builds CSV, JSON, and executive text summaries from validation outcomes."""

    def __init__(self, report_prefix: str = "ticket_validation_report") -> None:
        self.report_prefix = report_prefix

    def generate_all_reports(
        self,
        outcome: ValidationOutcome,
        output_dir: Path,
        run_date: date,
        engagement: Optional[EngagementStats] = None,
        daily_engagement: Optional[List[DailyEngagement]] = None,
    ) -> Tuple[Path, str, Path]:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        csv_path = self._generate_detailed_csv(outcome, output_dir, run_date)
        summary_text = self._generate_executive_summary(outcome, run_date, engagement)
        json_path = self._generate_json_report(
            outcome, output_dir, run_date, engagement, daily_engagement or []
        )
        return csv_path, summary_text, json_path

    @staticmethod
    def _result_rows(outcome: ValidationOutcome) -> List[Dict[str, Any]]:
        rows = []
        for result in outcome.results:
            ticket = result.ticket
            matched = result.matched_recharge
            rows.append(
                {
                    "ticket_number": ticket.ticket_number,
                    "platform": ticket.platform,
                    "account_id": ticket.account_id,
                    "registered_at": ticket.registered_at.isoformat() if ticket.registered_at else "",
                    "requested_draw_date": (
                        ticket.requested_draw_date.isoformat() if ticket.requested_draw_date else ""
                    ),
                    "contest": ticket.contest,
                    "status": result.status.value,
                    "reason": result.reason,
                    "is_day2": result.is_day2,
                    "recharge_id": matched.recharge_id if matched else "",
                    "recharge_amount": str(matched.amount) if matched else "",
                    "recharge_time": matched.occurred_at.isoformat() if matched else "",
                    "eligible_day1": matched.day1.isoformat() if matched else "",
                    "eligible_day2": matched.day2.isoformat() if matched else "",
                }
            )
        return rows

    def _generate_detailed_csv(
        self, outcome: ValidationOutcome, output_dir: Path, run_date: date
    ) -> Path:
        csv_path = output_dir / f"{self.report_prefix}_{run_date.isoformat()}.csv"

        rows = self._result_rows(outcome)
        df = pd.DataFrame(rows, columns=CSV_COLUMNS) if rows else pd.DataFrame(columns=CSV_COLUMNS)
        df.to_csv(csv_path, index=False)

        logger.info("Wrote detailed CSV report", path=str(csv_path), rows=len(rows))
        return csv_path

    @staticmethod
    def invalid_reason_breakdown(outcome: ValidationOutcome) -> Dict[str, int]:
        counts = Counter(
            r.reason for r in outcome.results if r.status is ValidationStatus.INVALID
        )
        return dict(counts.most_common())

    @staticmethod
    def validity_rate(outcome: ValidationOutcome) -> float:
        stats = outcome.stats
        return stats.valid / stats.total if stats.total > 0 else 0.0

    def _generate_executive_summary(
        self,
        outcome: ValidationOutcome,
        run_date: date,
        engagement: Optional[EngagementStats] = None,
    ) -> str:
        stats = outcome.stats
        breakdown = self.invalid_reason_breakdown(outcome)
        reasons = "\n".join(f"• {reason}: {count:,}" for reason, count in breakdown.items())

        report = f"""
Ticket Validation Executive Summary
===================================

Date: {run_date}
Report Generated: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')}

VALIDATION OVERVIEW
-------------------
✓ Tickets Processed: {stats.total:,}
✓ Recharges Considered: {outcome.recharge_count:,}
✓ Valid Tickets: {stats.valid:,} (Day 2 claims: {stats.day2_valid:,})
⚠ Invalid Tickets: {stats.invalid:,}
? Unknown: {stats.unknown:,}
• Validity Rate: {self.validity_rate(outcome):.2%}

INVALID REASONS
---------------
{reasons or "✓ No invalid tickets"}
"""
        if engagement is not None:
            report += f"""
ENGAGEMENT
----------
• Rechargers: {engagement.total_rechargers:,}
• Participants: {engagement.total_participants:,} ({engagement.participation_rate}%)
• Recharged Without Ticket: {engagement.recharged_no_ticket:,}
• Multiple Recharges Without Ticket: {engagement.multi_recharge_no_ticket:,}
"""
        return report.strip()

    def _generate_json_report(
        self,
        outcome: ValidationOutcome,
        output_dir: Path,
        run_date: date,
        engagement: Optional[EngagementStats],
        daily_engagement: List[DailyEngagement],
    ) -> Path:
        json_path = output_dir / f"{self.report_prefix}_{run_date.isoformat()}.json"

        report_data = {
            "report_metadata": {"generated_at": datetime.now(timezone.utc).isoformat()},
            "validation_summary": {
                "date": run_date.isoformat(),
                "entries_count": outcome.entries_count,
                "recharge_count": outcome.recharge_count,
                **outcome.stats.model_dump(),
                "validity_rate": self.validity_rate(outcome),
            },
            "invalid_reasons": self.invalid_reason_breakdown(outcome),
            "engagement": (
                engagement.model_dump(
                    exclude={"recharger_ids", "participant_ids", "recharged_no_ticket_ids"}
                )
                if engagement is not None
                else None
            ),
            "daily_engagement": [
                d.model_dump(exclude={"recharger_ids", "participant_ids", "recharged_no_ticket_ids"})
                for d in daily_engagement
            ],
            "results": self._result_rows(outcome),
        }

        with open(json_path, "w") as f:
            json.dump(report_data, f, indent=2, default=str)

        logger.info("Wrote JSON report", path=str(json_path))
        return json_path
