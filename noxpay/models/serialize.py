"""Serialization helpers shared by model to_dict() methods."""

from datetime import timezone


def isoformat(value):
    """ISO-8601 string for a datetime, assuming UTC for naive values.

    SQLite hands back naive datetimes even for timezone-aware columns.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()
