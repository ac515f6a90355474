from datetime import UTC, datetime


def utcnow() -> datetime:
    """Current instant as an aware UTC datetime.

    Engine operations accept an explicit ``now`` and fall back to this, so
    scans and time-window checks can be driven deterministically in tests.
    """
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
