"""
models.py

Defines all core data models for the Recharge/Ticket Reconciliation System.
Models are built using Pydantic for robust validation, type safety, and serialization.
Event models are frozen: once the gateway constructs them they are read-only inputs.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from brazil_time import normalize_draw_date, to_local

DEFAULT_PLATFORM = "POPN1"


# -----------------------------------------------------------------------------
# 1. System Configuration Model
# -----------------------------------------------------------------------------
class Settings(BaseSettings):
    """
    Application configuration loaded from environment variables or .env files.

    This model centralizes all settings for sheet sources, caching, validation
    batching, reporting, and metrics.
    """

    # Data source configuration
    ENTRIES_SHEET_URL: str = Field(
        default="https://docs.google.com/spreadsheets/d/ENTRIES/export?format=csv&gid=0",
        description="CSV export URL for the ticket entries sheet",
    )
    RECHARGE_SHEET_URLS: Dict[str, str] = Field(
        default_factory=lambda: {
            "POPLUZ": "https://docs.google.com/spreadsheets/d/POPLUZ/export?format=csv&gid=0",
            "POPN1": "https://docs.google.com/spreadsheets/d/POPN1/export?format=csv&gid=0",
        },
        description="Platform name to recharge sheet CSV export URL",
    )
    CACHE_TTL_SECONDS: int = Field(default=180, description="Fetch cache TTL")
    FETCH_TIMEOUT_SECONDS: int = Field(default=15, description="HTTP timeout")
    FETCH_MAX_RETRIES: int = Field(default=3, description="HTTP retry attempts")

    # Validation configuration
    VALIDATION_BATCH_SIZE: int = Field(
        default=50, gt=0, description="Tickets processed between scheduler yields"
    )
    ENGAGEMENT_DAYS: int = Field(
        default=7, gt=0, description="Trailing days in the daily engagement breakdown"
    )

    # Application Configuration
    REPORT_OUTPUT_DIR: Path = Field(
        default=Path("local_reports"), description="Directory for report outputs"
    )
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    METRICS_ENABLED: bool = Field(default=False, description="Expose Prometheus metrics")
    METRICS_PORT: int = Field(default=8000, description="Prometheus metrics port")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def platforms(self) -> List[str]:
        """Return configured recharge platforms, uppercased."""
        return [name.upper() for name in self.RECHARGE_SHEET_URLS]


# -----------------------------------------------------------------------------
# 2. Core Event Models
# -----------------------------------------------------------------------------
class RechargeEvent(BaseModel):
    """
    Represents a single account top-up.

    Identity is (platform, account_id, recharge_id). Amounts use Decimal for
    precision and must be strictly positive.
    """

    model_config = ConfigDict(frozen=True)

    platform: str = Field(default=DEFAULT_PLATFORM, description="Recharge platform")
    account_id: str = Field(..., description="Player account (game) identifier")
    recharge_id: str = Field(..., description="Order number of the top-up")
    occurred_at: datetime = Field(..., description="Instant the top-up was recorded")
    amount: Decimal = Field(..., gt=0, description="Top-up amount in BRL")
    raw_time: str = Field(default="", description="Source timestamp text")

    @field_validator("platform", mode="before")
    @classmethod
    def _upper_platform(cls, value: Optional[str]) -> str:
        return (value or DEFAULT_PLATFORM).strip().upper()

    @field_validator("occurred_at")
    @classmethod
    def _localize(cls, value: datetime) -> datetime:
        return to_local(value)


class TicketEntry(BaseModel):
    """
    Represents a lottery ticket registration.

    ``registered_at`` is None when the source timestamp could not be parsed, and
    ``requested_draw_date`` is None when the draw date column is blank or
    malformed; both cases are resolved to an INVALID verdict by the validator.
    """

    model_config = ConfigDict(frozen=True)

    platform: str = Field(default=DEFAULT_PLATFORM, description="Ticket platform")
    account_id: str = Field(default="", description="Player account (game) identifier")
    ticket_number: str = Field(default="", description="Ticket number (BILHETE #)")
    registered_at: Optional[datetime] = Field(
        None, description="Instant the ticket was registered"
    )
    requested_draw_date: Optional[date] = Field(
        None, description="Draw date the ticket was registered for"
    )
    source_status: Optional[str] = Field(
        None, description="Verdict already present in the source sheet"
    )
    whatsapp: str = Field(default="", description="Contact number")
    numbers: List[int] = Field(default_factory=list, description="Chosen numbers")
    contest: str = Field(default="", description="Contest (CONCURSO) identifier")
    raw_timestamp: str = Field(default="", description="Source timestamp text")

    @field_validator("platform", mode="before")
    @classmethod
    def _upper_platform(cls, value: Optional[str]) -> str:
        return (value or DEFAULT_PLATFORM).strip().upper()

    @field_validator("registered_at")
    @classmethod
    def _localize(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_local(value) if value is not None else None

    @field_validator("requested_draw_date", mode="before")
    @classmethod
    def _normalize_draw_date(cls, value: Any) -> Optional[date]:
        if value is None or isinstance(value, date):
            return value
        return normalize_draw_date(str(value))


# -----------------------------------------------------------------------------
# 3. Validation Models
# -----------------------------------------------------------------------------
class ValidationStatus(str, Enum):
    VALID = "VALID"
    INVALID = "INVALID"
    UNKNOWN = "UNKNOWN"


class EligibilityWindow(BaseModel):
    """Days on which a ticket may claim one recharge, and when that right expires."""

    model_config = ConfigDict(frozen=True)

    day1: date
    day2: date
    expires_at: datetime
    is_late_cutoff: bool = False

    def offers(self, draw_date: Optional[date]) -> bool:
        return draw_date is not None and draw_date in (self.day1, self.day2)


class MatchedRecharge(BaseModel):
    """Snapshot of the recharge a ticket was bound to, with its window."""

    model_config = ConfigDict(frozen=True)

    platform: str
    account_id: str
    recharge_id: str
    occurred_at: datetime
    amount: Decimal
    day1: date
    day2: date
    expires_at: datetime
    is_day2: bool = False
    is_late_cutoff: bool = False

    @property
    def identity(self) -> tuple:
        return (self.platform, self.account_id, self.recharge_id)


class ValidationResult(BaseModel):
    """Verdict for one ticket in one validation run."""

    model_config = ConfigDict(frozen=True)

    ticket: TicketEntry
    status: ValidationStatus = ValidationStatus.UNKNOWN
    reason: str = ""
    matched_recharge: Optional[MatchedRecharge] = None
    is_day2: bool = False


class ValidationStats(BaseModel):
    """Aggregate counters of a validation run. ``day2_valid`` is a subset of ``valid``."""

    total: int = 0
    valid: int = 0
    invalid: int = 0
    unknown: int = 0
    day2_valid: int = 0


class ValidationOutcome(BaseModel):
    """
    Detailed output of a validation run.

    ``results`` is in the same order as the ticket sequence that was validated.
    """

    results: List[ValidationResult] = Field(default_factory=list)
    stats: ValidationStats = Field(default_factory=ValidationStats)
    recharge_count: int = 0
    entries_count: int = 0


# -----------------------------------------------------------------------------
# 4. Engagement Models
# -----------------------------------------------------------------------------
class EngagementStats(BaseModel):
    """Overlap between accounts that recharged and accounts that registered tickets."""

    total_rechargers: int = 0
    total_participants: int = 0
    recharged_no_ticket: int = 0
    participation_rate: float = 0.0
    multi_recharge_no_ticket: int = 0
    recharger_ids: List[str] = Field(default_factory=list)
    participant_ids: List[str] = Field(default_factory=list)
    recharged_no_ticket_ids: List[str] = Field(default_factory=list)


class DailyEngagement(EngagementStats):
    day: str = Field(..., description="Local calendar date (YYYY-MM-DD)")
    display_date: str = Field(..., description="Short label (DD/MM)")
    total_entries: int = 0


class TopEntrant(BaseModel):
    account_id: str
    whatsapp: str = ""
    count: int = 0
    entries: List[TicketEntry] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# 5. Report Contracts
# -----------------------------------------------------------------------------
class ReportBundle(BaseModel):
    """
    Encapsulates all generated reports for a validation run.
    """

    csv_path: Path = Field(..., description="Path to detailed CSV report")
    json_path: Path = Field(..., description="Path to JSON report")
    summary_text: str = Field(..., description="Executive summary text")
