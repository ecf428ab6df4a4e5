"""Time source used by quiz windows, retake cool-downs and the session sweep.

The application reads ``app.config['CLOCK']``; tests install a ``FixedClock``
so "now" is deterministic.
"""
from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    # Naive UTC, matching what SQLite DateTime columns round-trip
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SystemClock:
    def now(self) -> datetime:
        return utcnow()


class FixedClock:
    def __init__(self, moment: datetime):
        self.moment = moment

    def now(self) -> datetime:
        return self.moment

    def advance(self, **kwargs) -> datetime:
        self.moment = self.moment + timedelta(**kwargs)
        return self.moment


def current_clock(app):
    return app.config.get('CLOCK') or SystemClock()
