"""Daily cutover parsing and wake-up computation."""

import re
from datetime import datetime, time, timedelta

_CUTOVER_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_cutover(value: str) -> time:
    """Parse a strict 24h ``HH:MM`` string into a time of day.

    Raises:
        ValueError: If the string is not a valid ``HH:MM`` value
    """
    match = _CUTOVER_RE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValueError(f"cutover must be HH:MM (24h), got {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


def next_wake(cutover: time, now: datetime) -> datetime:
    """Return the nearest future occurrence of ``cutover``.

    Today's occurrence when ``now`` is strictly before it, otherwise
    tomorrow's. The result carries ``now``'s tzinfo.
    """
    today = datetime.combine(now.date(), cutover, tzinfo=now.tzinfo)
    if now < today:
        return today
    tomorrow = now.date() + timedelta(days=1)
    return datetime.combine(tomorrow, cutover, tzinfo=now.tzinfo)


def seconds_until(cutover: time, now: datetime) -> float:
    """Seconds to sleep from ``now`` until the next cutover."""
    return (next_wake(cutover, now) - now).total_seconds()


def has_passed_today(cutover: time, now: datetime) -> bool:
    return now.time() >= cutover
