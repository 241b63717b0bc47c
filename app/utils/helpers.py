"""
Helper utilities
"""
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, List, Optional
import json


def utc_now() -> datetime:
    """Current time as a naive UTC datetime (the convention for stored rows)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def calculate_date_range(days: int = 30, end: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """Calculate date range for analysis"""
    end_date = end or utc_now()
    start_date = end_date - timedelta(days=days)
    return start_date, end_date


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Inclusive start, exclusive end of a UTC calendar day."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def coerce_datetime(value: Any) -> Optional[datetime]:
    """
    Best-effort conversion of a row value into a naive UTC datetime.

    Accepts datetimes, dates, ISO-8601 strings (a trailing "Z" is allowed)
    and epoch seconds/milliseconds. Returns None for anything that does not
    describe a real point in time instead of raising.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime.combine(value, time.min)
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if abs(value) > 1e11 else value
        try:
            dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def round_half_up(value: float, places: int = 0) -> float:
    """Round like Math.round does for dashboard figures (0.5 goes up)."""
    try:
        quantum = Decimal(1).scaleb(-places)
        rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return 0.0
    return float(rounded)


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Safely divide two numbers"""
    try:
        return numerator / denominator if denominator != 0 else default
    except (TypeError, ZeroDivisionError):
        return default


def chunk_list(lst: List, chunk_size: int) -> List[List]:
    """Split list into chunks"""
    return [lst[i:i + chunk_size] for i in range(0, len(lst), chunk_size)]


def isoformat_or_none(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def dumps_compact(data: Any) -> str:
    """Stable JSON encoding used for cached columns"""
    return json.dumps(data, sort_keys=True, default=str)
