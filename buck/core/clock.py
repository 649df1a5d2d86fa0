"""Injectable wall clock.

Services take a ``clock`` callable instead of calling ``datetime.now`` so that
expiry and ordering can be driven deterministically from tests.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class ManualClock:
    """A clock that only moves when told to.

    Usage::

        clock = ManualClock(datetime(2026, 1, 1, tzinfo=UTC))
        memory = ConversationMemory(clock=clock)
        clock.advance(days=31)
    """

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or utc_now()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now
