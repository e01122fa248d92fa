"""Structured logging configuration for the LQS engine.

Provides JSON-formatted logs for production and human-readable
logs for development.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from .config import get_settings

# Attributes present on every LogRecord; anything else came in via ``extra``
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Fields passed through ``extra=``
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_data[key] = value

        if record.funcName:
            log_data["function"] = record.funcName
        if record.lineno:
            log_data["line"] = record.lineno

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable log formatter for development."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logging() -> None:
    """Configure logging based on settings."""
    settings = get_settings()

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)

    if settings.log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(TextFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    # Suppress noisy loggers
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)

    logger = get_logger(__name__)
    logger.info(
        "Logging initialized",
        extra={
            "environment": settings.environment,
            "log_level": settings.log_level,
            "log_format": settings.log_format,
        },
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds context to all log messages."""

    def process(
        self, msg: str, kwargs: dict[str, Any]
    ) -> tuple[str, dict[str, Any]]:
        """Process the logging message and add extra context."""
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs


def get_context_logger(name: str, **context: Any) -> LoggerAdapter:
    """Get a logger with additional context.

    Args:
        name: Logger name
        **context: Context fields to add to all log messages

    Returns:
        Logger adapter with context

    Usage:
        logger = get_context_logger(__name__, agency_id="a1", run_id="abc123")
        logger.info("Processing row")  # Includes agency_id and run_id
    """
    return LoggerAdapter(get_logger(name), context)


# =========================
# Convenience functions
# =========================


def log_reconcile_start(
    agency_id: str, report_type: str, run_id: str, rows_total: int
) -> None:
    """Log the start of a reconciliation run."""
    logger = get_logger("lqs.ingestion")
    logger.info(
        f"Starting reconciliation of {rows_total} rows ({report_type})",
        extra={
            "agency_id": agency_id,
            "report_type": report_type,
            "run_id": run_id,
            "rows_total": rows_total,
            "event": "reconcile_start",
        },
    )


def log_reconcile_complete(
    agency_id: str,
    run_id: str,
    records_processed: int,
    error_count: int,
    duration_seconds: float,
) -> None:
    """Log the completion of a reconciliation run."""
    logger = get_logger("lqs.ingestion")
    logger.info(
        f"Completed reconciliation: {records_processed} processed, {error_count} errors",
        extra={
            "agency_id": agency_id,
            "run_id": run_id,
            "records_processed": records_processed,
            "error_count": error_count,
            "duration_seconds": duration_seconds,
            "event": "reconcile_complete",
        },
    )


def log_reconcile_batch(
    run_id: str,
    batch_number: int,
    rows_in_batch: int,
    total_processed: int,
    rows_total: int,
) -> None:
    """Log completion of a batch within a reconciliation run.

    Args:
        run_id: Reconciliation run identifier
        batch_number: Batch sequence number (1-based)
        rows_in_batch: Rows handled in this batch
        total_processed: Rows handled so far
        rows_total: Rows in the whole upload
    """
    logger = get_logger("lqs.ingestion")
    progress = (total_processed / rows_total * 100) if rows_total else 100.0
    logger.info(
        f"Completed batch {batch_number} ({progress:.1f}%)",
        extra={
            "run_id": run_id,
            "batch_number": batch_number,
            "rows_in_batch": rows_in_batch,
            "total_processed": total_processed,
            "progress_percent": progress,
            "event": "batch_complete",
        },
    )


def log_row_error(run_id: str, row_number: int, identifier: str, error: str) -> None:
    """Log a row that failed and was skipped."""
    logger = get_logger("lqs.ingestion")
    logger.warning(
        f"Row {row_number} ({identifier}) failed: {error}",
        extra={
            "run_id": run_id,
            "row_number": row_number,
            "identifier": identifier,
            "error": error,
            "event": "row_error",
        },
    )


def log_match_decision(
    sale_ref: str,
    classification: str,
    household_id: str | None,
    score: int,
    candidate_count: int,
) -> None:
    """Log how a sale was classified by the candidate scorer.

    Args:
        sale_ref: Sale natural key
        classification: auto_match, ambiguous or no_match
        household_id: Household linked (auto-match only)
        score: Top candidate score
        candidate_count: Candidates scored above zero
    """
    logger = get_logger("lqs.resolution")
    logger.debug(
        f"Sale {sale_ref}: {classification} -> {household_id or 'no household'} ({score} pts)",
        extra={
            "sale_ref": sale_ref,
            "classification": classification,
            "household_id": household_id,
            "score": score,
            "candidate_count": candidate_count,
            "event": "sale_match",
        },
    )


def log_review_decision(
    agency_id: str, sale_id: str, action: str, household_id: str | None
) -> None:
    """Log a review decision applied in the second pass."""
    logger = get_logger("lqs.review")
    logger.info(
        f"Applied review decision {action} for sale {sale_id}",
        extra={
            "agency_id": agency_id,
            "sale_id": sale_id,
            "action": action,
            "household_id": household_id,
            "event": "review_decision",
        },
    )
