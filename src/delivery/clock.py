"""Clock used for every timestamp recorded by the delivery domain.

Defaults to the wall clock in UTC. Tests pin time with ``set_clock``.
"""

from collections.abc import Callable
from datetime import UTC, date, datetime

_clock: Callable[[], datetime] | None = None


def now() -> datetime:
    if _clock is not None:
        return _clock()
    return datetime.now(UTC)


def today() -> date:
    return now().date()


def set_clock(fn: Callable[[], datetime]) -> None:
    """Replace the clock with ``fn`` (a zero-argument callable returning a datetime)."""
    global _clock
    _clock = fn


def reset_clock() -> None:
    """Restore the wall clock."""
    global _clock
    _clock = None
