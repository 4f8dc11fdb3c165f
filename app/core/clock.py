from datetime import datetime, timedelta, UTC


class Clock:
    """Source of "now" for every expiry and grace-period comparison."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class FixedClock(Clock):
    """Clock pinned to a given instant; tests move it with `advance`."""

    def __init__(self, current: datetime | None = None):
        self.current = ensure_utc(current or datetime.now(UTC))

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


def ensure_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=UTC)


system_clock = Clock()


def get_clock() -> Clock:
    """Dependency returning the process clock (overridden in tests)."""
    return system_clock
