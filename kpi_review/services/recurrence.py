"""
Occurrence period labels for recurring deliverables.

This is the one place that decides "which period is now". The board read
model, the score capture service and the discrepancy detector all import it
so they agree on the label for the current period.

Label shapes per granularity:
    yearly   YYYY
    monthly  YYYY-MM              (default when the pattern is unknown)
    weekly   YYYY-MM-DD           (Monday that starts the ISO week)
    daily    YYYY-MM-DD
    hourly   YYYY-MM-DD HH:00

Usage:
    from kpi_review.services.recurrence import current_period_label

    current_period_label("Monthly", datetime(2025, 3, 14, 9, 0))   # "2025-03"
"""

import re
from datetime import datetime, timedelta

YEARLY = "yearly"
MONTHLY = "monthly"
WEEKLY = "weekly"
DAILY = "daily"
HOURLY = "hourly"

DEFAULT_GRANULARITY = MONTHLY

_PATTERN_ALIASES = {
    "yearly": YEARLY,
    "annual": YEARLY,
    "annually": YEARLY,
    "monthly": MONTHLY,
    "weekly": WEEKLY,
    "daily": DAILY,
    "hourly": HOURLY,
}

# Checked in order; first match wins.
_LABEL_SHAPES = (
    (YEARLY, re.compile(r"^\d{4}$")),
    (MONTHLY, re.compile(r"^\d{4}-\d{2}$")),
    (DAILY, re.compile(r"^\d{4}-\d{2}-\d{2}$")),
    (HOURLY, re.compile(r"^\d{4}-\d{2}-\d{2}\s\d{2}(:\d{2})?$")),
)

_STRPTIME_FORMATS = {
    YEARLY: ("%Y",),
    MONTHLY: ("%Y-%m",),
    WEEKLY: ("%Y-%m-%d",),
    DAILY: ("%Y-%m-%d",),
    HOURLY: ("%Y-%m-%d %H:%M", "%Y-%m-%d %H"),
}


def normalize_pattern(pattern: str | None) -> str | None:
    """Map a declared recurrence pattern ("Monthly", " daily ") to a granularity.

    Free-text custom patterns return None so callers fall back to inference.
    """
    if not pattern:
        return None
    return _PATTERN_ALIASES.get(pattern.strip().lower())


def infer_pattern(labels) -> str:
    """Infer the granularity from the first non-empty existing label."""
    sample = next((str(lb).strip() for lb in labels or () if lb), "")
    for granularity, shape in _LABEL_SHAPES:
        if shape.match(sample):
            return granularity
    return DEFAULT_GRANULARITY


def resolve_granularity(pattern: str | None, labels=()) -> str:
    """Declared pattern first, then inference from labels, then monthly."""
    return normalize_pattern(pattern) or infer_pattern(labels)


def current_period_label(pattern: str | None, now: datetime, labels=()) -> str:
    """Canonical label for the period containing ``now``.

    Pure function of (pattern, labels, now); the wall-clock fields of ``now``
    are used as given, so callers pick the timezone.
    """
    granularity = resolve_granularity(pattern, labels)
    if granularity == YEARLY:
        return f"{now.year:04d}"
    if granularity == DAILY:
        return now.strftime("%Y-%m-%d")
    if granularity == WEEKLY:
        monday = now - timedelta(days=now.weekday())
        return monday.strftime("%Y-%m-%d")
    if granularity == HOURLY:
        return now.strftime("%Y-%m-%d %H:00")
    return now.strftime("%Y-%m")


def label_matches(label: str, granularity: str) -> bool:
    """True if ``label`` is a real calendar period of ``granularity``."""
    for fmt in _STRPTIME_FORMATS.get(granularity, ()):
        try:
            parsed = datetime.strptime(label, fmt)
        except ValueError:
            continue
        if granularity == WEEKLY and parsed.weekday() != 0:
            return False
        return True
    return False
