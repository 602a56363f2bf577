"""
Timestamp normalisation shared by hashing, dedup and persistence.

Stored timestamps are naive UTC, matching the ORM columns.
"""
from datetime import datetime, timezone
from typing import Optional, Union

from dateutil import parser as date_parser


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO-8601 (or looser) timestamp into naive UTC. Returns None if unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    text = str(value).strip()
    if not text:
        return None
    try:
        return to_naive_utc(date_parser.isoparse(text))
    except ValueError:
        pass
    try:
        return to_naive_utc(date_parser.parse(text))
    except (ValueError, OverflowError):
        return None


def minute_key(value: Union[str, datetime, None]) -> str:
    """
    Minute-precision key ("YYYY-MM-DDTHH:MM") for a timestamp.

    Falls back to the first 16 characters of the raw string when it cannot be parsed.
    """
    parsed = parse_timestamp(value)
    if parsed is not None:
        return parsed.strftime("%Y-%m-%dT%H:%M")
    if value is None:
        return ""
    return str(value).strip()[:16]
