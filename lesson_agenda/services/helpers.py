from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta

from lesson_agenda.schemas import Frequency

# Weekdays are numbered Sunday=0 .. Saturday=6 throughout the agenda,
# and a "week" runs Sunday through Saturday.
INTERVAL_DAYS = {Frequency.daily: 1, Frequency.weekly: 7, Frequency.biweekly: 14}


def day_of_week(d: date) -> int:
    return (d.weekday() + 1) % 7


def date_for_day_of_week(dow: int, reference: date) -> date:
    """Date with weekday ``dow`` in the (Sunday-based) week containing ``reference``."""
    return reference + timedelta(days=dow - day_of_week(reference))


def actual_date_in_original_week(original: date, dropped: date) -> date:
    """Same weekday as ``dropped``, forced into the week of ``original``."""
    return date_for_day_of_week(day_of_week(dropped), original)


def clamp_day(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def add_months(d: date, months: int, anchor_day: int | None = None) -> date:
    """Shift by whole months, clamping ``anchor_day`` (default ``d.day``) to the target month."""
    index = d.year * 12 + (d.month - 1) + months
    return clamp_day(index // 12, index % 12 + 1, anchor_day or d.day)


def add_interval(d: date, frequency: Frequency, steps: int = 1, anchor_day: int | None = None) -> date:
    if frequency == Frequency.monthly:
        return add_months(d, steps, anchor_day)
    return d + timedelta(days=INTERVAL_DAYS[frequency] * steps)


def occurrence_date_in_week(frequency: Frequency, dow: int, week_date: date) -> date:
    """Normalize any day of a week to the agreement's own occurrence date in it.

    Weekly and biweekly agreements are pinned to their weekday; daily and
    monthly ones are addressed by the date itself.
    """
    if frequency in (Frequency.weekly, Frequency.biweekly):
        return date_for_day_of_week(dow, week_date)
    return week_date


def first_occurrence_on_or_after(frequency: Frequency, dow: int, start_date: date, range_start: date) -> date:
    """First rule date that is on or after both ``range_start`` and ``start_date``."""
    lower = max(start_date, range_start)
    if frequency == Frequency.daily:
        return lower
    if frequency == Frequency.weekly:
        first = date_for_day_of_week(dow, lower)
        if first < lower:
            first += timedelta(days=7)
        return first
    if frequency == Frequency.biweekly:
        if range_start <= start_date:
            return start_date
        periods = -(-(range_start - start_date).days // 14)
        return start_date + timedelta(days=14 * periods)
    # monthly: same day-of-month as start_date
    first = clamp_day(lower.year, lower.month, start_date.day)
    if first < lower:
        first = add_months(first, 1, start_date.day)
    return first


def same_minute(a: time, b: time) -> bool:
    return (a.hour, a.minute) == (b.hour, b.minute)


def at(d: date, t: time) -> datetime:
    return datetime.combine(d, t.replace(second=0, microsecond=0))
