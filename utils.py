"""Utility functions: rounding, formatting, CSV export, logging setup."""

import io
import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import pandas as pd

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def round_to_cents(value: float) -> float:
    """Round half-up to 2 decimals (money and percentages)."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def round_score(value: float) -> int:
    """Round half-up to an integer score."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def days_between(start: datetime, end: datetime) -> float:
    """Fractional days from start to end (negative if end is earlier)."""
    return (end - start).total_seconds() / SECONDS_PER_DAY


def format_currency(amount: float) -> str:
    """Format a currency amount."""
    return f"${amount:,.2f}"


def format_percent(pct: float) -> str:
    """Format a 0-100 percentage."""
    return f"{pct:.2f}%"


def dataframe_to_csv_download(df: pd.DataFrame, filename: str) -> tuple:
    """
    Serialize a DataFrame to UTF-8 CSV, floats with 2 decimals.

    Returns (csv_bytes, filename); an empty frame gives empty bytes.
    """
    if df.empty:
        logger.warning(f"Nothing to export to {filename}")
        return b"", filename

    buffer = io.StringIO()
    df.to_csv(buffer, index=False, float_format="%.2f")

    logger.info(f"Exported {len(df)} rows to {filename}")
    return buffer.getvalue().encode("utf-8"), filename


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger with a console handler and an optional file handler.

    Calling it again replaces the handlers it added before instead of
    stacking duplicates.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path

    Returns:
        The root logger
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in [h for h in root_logger.handlers if getattr(h, "_attribution_handler", False)]:
        root_logger.removeHandler(handler)
        handler.close()

    handlers = [logging.StreamHandler()]
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file))
        except OSError as e:
            logger.error(f"Cannot log to {log_file}: {e}")

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler._attribution_handler = True
        root_logger.addHandler(handler)

    logger.info(f"Logging configured at level {log_level}" + (f", file {log_file}" if log_file else ""))
    return root_logger
