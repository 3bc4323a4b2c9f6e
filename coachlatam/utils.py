"""Shared utility functions for CoachLatam."""

import logging
from datetime import datetime, UTC

logger = logging.getLogger(__name__)


def now_utc() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(UTC)


def add_months(moment: datetime, months: int) -> datetime:
    """
    Shift a datetime by whole calendar months, clamping the day.

    Args:
        moment: Starting point.
        months: Number of months to add.

    Returns:
        Datetime on the same day-of-month, or the last day of a shorter month.
    """
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    for day in (moment.day, 30, 29, 28):
        try:
            return moment.replace(year=year, month=month, day=day)
        except ValueError:
            continue
    return moment.replace(year=year, month=month, day=28)


def parse_timestamp(timestamp_str: str | None) -> datetime | None:
    """
    Parse an ISO timestamp string to datetime.

    Args:
        timestamp_str: ISO format timestamp string.

    Returns:
        Parsed datetime or None if parsing fails.
    """
    if not timestamp_str:
        return None

    try:
        return datetime.fromisoformat(timestamp_str.replace("Z", "+00:00"))
    except ValueError as e:
        logger.debug(f"Failed to parse timestamp '{timestamp_str}': {e}")
        return None


def setup_logging(level: str = "INFO", verbose: bool = False) -> None:
    """
    Configure logging for the application.

    Args:
        level: Logging level name used when not verbose.
        verbose: If True, force DEBUG level.
    """
    resolved = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
