from __future__ import annotations

from datetime import UTC, datetime, timedelta

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def to_iso_millis(value: datetime) -> str:
    """Render an aware datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    return to_iso_millis(datetime.now(UTC))


def parse_instant(value: str) -> datetime | None:
    """Parse an ISO-8601 instant; naive timestamps are not instants."""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return None
    return parsed


def is_iso_instant(value: object) -> bool:
    return isinstance(value, str) and parse_instant(value) is not None


def unix_nano_to_iso(value: object, fallback: str) -> str:
    if isinstance(value, bool):
        return fallback
    if isinstance(value, float) and value != value:
        return fallback
    if isinstance(value, str):
        value = value.strip()
        if not value.isdigit():
            return fallback
    if not isinstance(value, (int, float, str)):
        return fallback

    try:
        millis = int(value) // 1_000_000
        return to_iso_millis(_EPOCH + timedelta(milliseconds=millis))
    except (OverflowError, ValueError):
        return fallback
