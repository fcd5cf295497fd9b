"""Shared utility functions.

utcnow:            timezone-aware "now" used for every persisted timestamp
as_utc:            coerce DB values (naive on SQLite) back to aware UTC
parse_date_input:  ISO or DD/MM/YYYY → date, raises ValueError on bad input
parse_bool:        query-string / JSON flag → bool or None
truncate:          bounded message for UI summaries and DB columns
"""
import logging
from datetime import date, datetime, timezone

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value):
    """Return ``value`` as an aware UTC datetime.

    SQLite drops tzinfo on DateTime(timezone=True) columns; every timestamp
    this package writes is UTC, so a naive value read back is UTC as well.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Supports: YYYY-MM-DD, DD/MM/YYYY, DD.MM.YYYY, date objects.
    Returns None for empty input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    for fmt in ("%d/%m/%Y", "%d.%m.%Y"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError("Invalid date format. Use YYYY-MM-DD or DD/MM/YYYY.")


def parse_bool(value):
    """Interpret common truthy/falsy spellings; None when absent or unknown."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    return None


def truncate(message, limit):
    """Cut ``message`` to ``limit`` characters, marking the cut with an ellipsis."""
    if message is None:
        return None
    message = str(message)
    if len(message) <= limit:
        return message
    return message[: max(limit - 1, 0)] + "…"
