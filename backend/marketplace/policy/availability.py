"""Unavailable days for short-stay reservations."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Protocol

from marketplace.errors import InvalidRange, RangeOverlapsUnavailable, RangeTooShort


class BookedRange(Protocol):
    check_in_date: date
    check_out_date: date


@dataclass(frozen=True)
class DisabledDates:
    """Days that cannot be reserved.

    Every day strictly before ``cutoff`` is disabled, which keeps the past
    out of the explicit ``days`` set.
    """

    days: frozenset[date]
    cutoff: date

    def __contains__(self, value: object) -> bool:
        if not isinstance(value, (date, datetime)):
            return False
        return is_date_disabled(self, value)

    def within(self, start: date, end: date) -> list[date]:
        """Disabled days in ``[start, end)``, ascending."""
        out = []
        day = start
        while day < end:
            if day < self.cutoff or day in self.days:
                out.append(day)
            day += timedelta(days=1)
        return out


def nights_between(check_in: date, check_out: date) -> int:
    return (check_out - check_in).days


def _expand(check_in: date, check_out: date) -> Iterable[date]:
    day = check_in
    while day < check_out:
        yield day
        day += timedelta(days=1)


def to_calendar_day(value: date | datetime) -> date:
    """Normalise to a calendar day; aware datetimes are read in local time."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone()
        return value.date()
    return value


def compute_disabled_dates(
    approved_bookings: Iterable[BookedRange],
    blocked_dates: Iterable[date],
    today: date,
) -> DisabledDates:
    """Union of approved stays (check-out day excluded), blocked days and the past."""
    days: set[date] = set()
    for booking in approved_bookings:
        days.update(_expand(booking.check_in_date, booking.check_out_date))
    days.update(to_calendar_day(d) for d in blocked_dates)
    return DisabledDates(days=frozenset(d for d in days if d >= today), cutoff=today)


def is_date_disabled(disabled: DisabledDates, value: date | datetime) -> bool:
    day = to_calendar_day(value)
    return day < disabled.cutoff or day in disabled.days


def validate_range(
    check_in: date,
    check_out: date,
    minimum_stay: int,
    disabled: DisabledDates,
) -> int:
    """Validate a requested stay and return its number of nights.

    The minimum stay is checked before availability so a too-short request
    is reported as such even when it also touches a disabled day.
    """
    check_in = to_calendar_day(check_in)
    check_out = to_calendar_day(check_out)
    if check_out <= check_in:
        raise InvalidRange()

    nights = nights_between(check_in, check_out)
    if nights < max(1, minimum_stay):
        raise RangeTooShort(
            f"Minimum stay is {minimum_stay} nights",
            minimum_stay=minimum_stay,
            nights=nights,
        )

    conflicts = [d for d in _expand(check_in, check_out) if is_date_disabled(disabled, d)]
    if conflicts:
        raise RangeOverlapsUnavailable(unavailable=[d.isoformat() for d in conflicts])
    return nights
