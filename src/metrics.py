"""
Prometheus metrics for the recharge/ticket reconciliation system.
Tracks business and technical metrics for monitoring and alerting.
"""

from prometheus_client import Counter, Histogram, start_http_server
import logging

logger = logging.getLogger(__name__)

# Business Metrics
VALIDATION_RUNS_TOTAL = Counter(
    'validation_runs_total',
    'Total number of ticket validation runs',
    ['status']
)

TICKETS_VALIDATED_TOTAL = Counter(
    'tickets_validated_total',
    'Tickets validated by verdict',
    ['status']
)

DAY2_TICKETS_TOTAL = Counter(
    'day2_tickets_total',
    'Valid tickets that claimed the second eligible draw day'
)

VALIDATION_CACHE_HITS_TOTAL = Counter(
    'validation_cache_hits_total',
    'Validation runs answered from the result cache'
)

# Technical Metrics
VALIDATION_DURATION_SECONDS = Histogram(
    'validation_duration_seconds',
    'Time spent validating a ticket collection',
    buckets=[0.01, 0.05, 0.1, 0.5, 1, 5, 10, 30]
)

SHEET_FETCHES_TOTAL = Counter(
    'sheet_fetches_total',
    'Total spreadsheet export fetches',
    ['source', 'status']
)

SHEET_FETCH_DURATION_SECONDS = Histogram(
    'sheet_fetch_duration_seconds',
    'Spreadsheet export fetch duration',
    ['source'],
    buckets=[0.1, 0.5, 1, 2, 5, 10, 30]
)

ROWS_DROPPED_TOTAL = Counter(
    'sheet_rows_dropped_total',
    'Malformed sheet rows dropped during parsing',
    ['source']
)


class MetricsCollector:
    """Centralized metrics collection for the reconciliation system."""

    def __init__(self, port: int = 8000):
        self.port = port
        self.server_started = False

    def start_metrics_server(self):
        """Start Prometheus metrics server."""
        if not self.server_started:
            try:
                if not (8000 <= self.port <= 9999):
                    raise ValueError(f"Invalid port {self.port}. Must be between 8000-9999")

                start_http_server(self.port)
                self.server_started = True
                logger.info(f"Metrics server started on port {self.port}")
            except Exception as e:
                logger.error(f"Failed to start metrics server: {e}")

    def record_validation_run(self, status: str, duration: float):
        """Record validation run metrics."""
        VALIDATION_RUNS_TOTAL.labels(status=status).inc()
        VALIDATION_DURATION_SECONDS.observe(duration)

    def record_validation_stats(self, valid: int, invalid: int, unknown: int, day2_valid: int):
        """Record per-verdict ticket counts of one run."""
        TICKETS_VALIDATED_TOTAL.labels(status='VALID').inc(valid)
        TICKETS_VALIDATED_TOTAL.labels(status='INVALID').inc(invalid)
        TICKETS_VALIDATED_TOTAL.labels(status='UNKNOWN').inc(unknown)
        DAY2_TICKETS_TOTAL.inc(day2_valid)

    def record_cache_hit(self):
        VALIDATION_CACHE_HITS_TOTAL.inc()

    def record_sheet_fetch(self, source: str, status: str, duration: float):
        """Record spreadsheet fetch metrics."""
        SHEET_FETCHES_TOTAL.labels(source=source, status=status).inc()
        SHEET_FETCH_DURATION_SECONDS.labels(source=source).observe(duration)

    def record_dropped_rows(self, source: str, count: int):
        if count:
            ROWS_DROPPED_TOTAL.labels(source=source).inc(count)


# Global metrics collector instance
metrics = MetricsCollector()
