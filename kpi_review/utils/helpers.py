"""Shared parsing helpers for blueprints and services.

parse_date:      timeline dates (returns None on bad input)
parse_datetime:  meeting timestamps (raises ValueError on bad input)
parse_score:     0–100 score values (raises ValueError on bad input)
"""
import logging
import math
from datetime import date, datetime, timezone

logger = logging.getLogger(__name__)


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_datetime(value):
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Naive input is taken as UTC. A trailing "Z" is accepted.

    Raises:
        ValueError: empty or unparseable input.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value or "").strip()
        if not text:
            raise ValueError("A date/time is required.")
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"Invalid date/time '{value}'. Use ISO-8601, e.g. 2025-04-01T10:00.") from exc
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_score(value, *, low=0, high=100):
    """Coerce ``value`` to an int or float within [low, high].

    Booleans and non-finite numbers are rejected. Numeric strings (from
    multipart forms) are accepted.

    Raises:
        ValueError: missing, non-numeric or out-of-range input.
    """
    if value is None or isinstance(value, bool):
        raise ValueError("Score value is required and must be a number.")
    if isinstance(value, str):
        text = value.strip()
        try:
            value = int(text)
        except ValueError:
            try:
                value = float(text)
            except ValueError as exc:
                raise ValueError(f"Score value '{text}' is not a number.") from exc
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValueError("Score value must be a finite number.")
    if value < low or value > high:
        raise ValueError(f"Score value must be between {low} and {high}.")
    return value
