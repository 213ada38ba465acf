"""
Time helpers shared by the query model and the backend builders.

Relative windows are kept as calendar components (years, months, days,
hours, minutes, seconds) so that each backend can render them in its own
unit vocabulary.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple, Union

from .exceptions import QueryError

DURATION_PATTERN = re.compile(r'^(\d+)([smhdwy])$')
INTERVAL_PATTERN = re.compile(r'^(\d+)([smhdw])$')

# Unit labels per component, in descending order of size
FLUX_UNITS = ('y', 'mo', 'd', 'h', 'm', 's')
PROMETHEUS_UNITS = ('y', 'mo', 'd', 'h', 'm', 's')
GRAPHITE_UNITS = ('y', 'mon', 'd', 'h', 'min', 's')


@dataclass(frozen=True)
class Duration:
    """A relative time window.

    Attributes:
        years: Number of years
        months: Number of months
        days: Number of days (weeks are folded into days)
        hours: Number of hours
        minutes: Number of minutes
        seconds: Number of seconds
    """
    years: int = 0
    months: int = 0
    days: int = 0
    hours: int = 0
    minutes: int = 0
    seconds: int = 0

    def components(self) -> Tuple[int, int, int, int, int, int]:
        """Return the components from largest to smallest."""
        return (self.years, self.months, self.days,
                self.hours, self.minutes, self.seconds)

    def total_seconds(self) -> int:
        """Convert the window to seconds (365-day years, 30-day months)."""
        return (
            self.years * 365 * 86400
            + self.months * 30 * 86400
            + self.days * 86400
            + self.hours * 3600
            + self.minutes * 60
            + self.seconds
        )

    def to_timedelta(self) -> timedelta:
        """Convert the window to a timedelta object."""
        return timedelta(seconds=self.total_seconds())

    def format(self, units: Tuple[str, ...] = FLUX_UNITS, separator: str = '') -> str:
        """Render non-zero components with the given unit labels.

        Args:
            units: Six unit labels, largest first
            separator: String placed between components

        Returns:
            Rendered duration, or '0s' for an empty window
        """
        parts = [
            f"{amount}{unit}"
            for amount, unit in zip(self.components(), units)
            if amount > 0
        ]
        return separator.join(parts) or '0s'

    def compact(self) -> str:
        """Render in the form parse_duration accepts ('1h', '14d', '5400s')."""
        parts = [
            (amount, unit)
            for amount, unit in zip(self.components(), ('y', None, 'd', 'h', 'm', 's'))
            if amount > 0
        ]
        if len(parts) == 1 and parts[0][1] is not None:
            return f"{parts[0][0]}{parts[0][1]}"
        return f"{self.total_seconds()}s"


def parse_duration(value: str) -> Duration:
    """Parse a compact duration such as '30s', '5m', '2w' or '1y'.

    Args:
        value: Duration string

    Returns:
        Parsed Duration

    Raises:
        QueryError: If the string is not a valid duration
    """
    match = DURATION_PATTERN.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise QueryError(f"Invalid duration format: {value}")

    amount = int(match.group(1))
    unit = match.group(2)
    if unit == 's':
        return Duration(seconds=amount)
    elif unit == 'm':
        return Duration(minutes=amount)
    elif unit == 'h':
        return Duration(hours=amount)
    elif unit == 'd':
        return Duration(days=amount)
    elif unit == 'w':
        return Duration(days=amount * 7)
    return Duration(years=amount)


def interval_to_seconds(interval: str) -> int:
    """Convert a grouping interval ('5m', '1h', '300') to seconds.

    Raises:
        QueryError: If the interval cannot be parsed
    """
    interval = interval.strip()
    if interval.isdigit():
        return int(interval)

    match = INTERVAL_PATTERN.match(interval)
    if not match:
        raise QueryError(f"Invalid interval format: {interval}")

    multipliers = {'s': 1, 'm': 60, 'h': 3600, 'd': 86400, 'w': 604800}
    return int(match.group(1)) * multipliers[match.group(2)]


def to_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: datetime) -> str:
    """Render a timestamp as 'YYYY-MM-DDTHH:MM:SS+00:00'."""
    return to_utc(value).isoformat(timespec='seconds')


def epoch(value: datetime) -> int:
    """Return whole seconds since the Unix epoch."""
    return int(to_utc(value).timestamp())


def parse_timestamp(value: Union[str, int, float, datetime, None]) -> Optional[datetime]:
    """Coerce ISO strings and epoch numbers into UTC datetimes.

    Args:
        value: ISO-8601 string (a trailing 'Z' is accepted), epoch seconds,
            datetime or None

    Returns:
        UTC datetime, or None when value is None
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        try:
            return to_utc(datetime.fromisoformat(value.replace('Z', '+00:00')))
        except ValueError:
            raise QueryError(f"Invalid timestamp: {value}")
    raise QueryError(f"Invalid timestamp: {value!r}")


def format_number(value: Union[int, float]) -> str:
    """Render a number without a trailing '.0' for integral floats."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return repr(value) if isinstance(value, float) else str(value)
