"""Calendar-aligned week partitioning for program enrollments.

A program is a run of `length_days` active days. This module lays those
days onto the real calendar from a start date and groups them into
Monday-anchored calendar weeks:

- Week 1 (`onboarding`) runs from the start date to the end of its
  calendar week and may be partial.
- Weeks 2, 3, ... (`regular`) are full calendar weeks.
- The week holding the last program day is `closing` (week number -1)
  and may be partial too.

Weekday-only programs (`include_weekends=False`) use Mon-Fri weeks and
push a Saturday/Sunday start to the following Monday.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import date, datetime, timedelta
from typing import List, NamedTuple, Optional, Union

DateLike = Union[date, datetime, str]

WEEKDAY_LABELS = ('Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun')

ONBOARDING_WEEK_NUMBER = 1
CLOSING_WEEK_NUMBER = -1


@dataclass(frozen=True)
class CalendarWeek:
    """One calendar week of a program.

    `start_date`/`end_date` are the bounds of the display week (Monday to
    Friday or Sunday). The active program days inside it run from
    `actual_start_day_of_week` to `actual_end_day_of_week` (ISO weekdays,
    1=Mon .. 7=Sun).
    """
    type: str
    label: str
    week_number: int
    start_date: date
    end_date: date
    start_day_index: int
    end_day_index: int
    day_count: int
    actual_start_day_of_week: int
    actual_end_day_of_week: int
    display_days_count: int

    @property
    def first_active_date(self) -> date:
        return self.start_date + timedelta(days=self.actual_start_day_of_week - 1)

    @property
    def last_active_date(self) -> date:
        return self.start_date + timedelta(days=self.actual_end_day_of_week - 1)


class ProgramDayLocation(NamedTuple):
    week_index: int  # 0-based position in the week list
    day_index: int  # 1-based within the week
    global_day_index: int


def parse_date(value: DateLike) -> date:
    """Coerce a date, datetime or ISO string (time part ignored) to a `date`."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).split('T')[0])


def is_weekend(d: date) -> bool:
    return d.isoweekday() >= 6


def _monday_of(d: date) -> date:
    return d - timedelta(days=d.isoweekday() - 1)


def _effective_start(start: date, include_weekends: bool) -> date:
    if not include_weekends and is_weekend(start):
        return start + timedelta(days=8 - start.isoweekday())
    return start


def _advance_active_days(start: date, count: int, include_weekends: bool) -> date:
    """Return the date `count` active days after `start`."""
    current = start
    remaining = count
    while remaining > 0:
        current += timedelta(days=1)
        if include_weekends or not is_weekend(current):
            remaining -= 1
    return current


def _count_active_days(start: date, end: date, include_weekends: bool) -> int:
    """Count active days between `start` and `end`, both inclusive."""
    if end < start:
        return 0
    if include_weekends:
        return (end - start).days + 1
    count = 0
    current = start
    while current <= end:
        if not is_weekend(current):
            count += 1
        current += timedelta(days=1)
    return count


def _make_week(week_type: str, label: str, week_number: int, first_active: date,
               start_day_index: int, day_count: int, include_weekends: bool) -> CalendarWeek:
    display_days = 7 if include_weekends else 5
    last_active = _advance_active_days(first_active, day_count - 1, include_weekends)
    monday = _monday_of(first_active)
    return CalendarWeek(
        type=week_type,
        label=label,
        week_number=week_number,
        start_date=monday,
        end_date=monday + timedelta(days=display_days - 1),
        start_day_index=start_day_index,
        end_day_index=start_day_index + day_count - 1,
        day_count=day_count,
        actual_start_day_of_week=first_active.isoweekday(),
        actual_end_day_of_week=last_active.isoweekday(),
        display_days_count=display_days,
    )


def calculate_calendar_weeks(start_date: DateLike, program_length_days: int,
                             include_weekends: bool = True) -> List[CalendarWeek]:
    """Partition `program_length_days` active days into calendar weeks.

    Example: a 15-day weekday-only program joined on a Thursday yields a
    2-day onboarding week (Thu-Fri), two regular Mon-Fri weeks and a
    3-day closing week (Mon-Wed).
    """
    if program_length_days < 1:
        raise ValueError('program_length_days must be >= 1')
    start = _effective_start(parse_date(start_date), include_weekends)
    days_per_week = 7 if include_weekends else 5

    days_in_first_week = max(1, days_per_week - start.isoweekday() + 1)
    onboarding_days = min(days_in_first_week, program_length_days)

    weeks = [
        _make_week('onboarding', 'Onboarding', ONBOARDING_WEEK_NUMBER, start, 1, onboarding_days, include_weekends)
    ]
    if onboarding_days >= program_length_days:
        # single-week program: it is both onboarding and closing
        weeks[0] = _replace_type(weeks[0], 'closing')
        return weeks

    current_day_index = onboarding_days + 1
    week_number = ONBOARDING_WEEK_NUMBER + 1
    current_monday = _monday_of(start) + timedelta(days=7)

    while current_day_index <= program_length_days:
        days_remaining = program_length_days - current_day_index + 1
        days_in_week = min(days_per_week, days_remaining)
        is_last = current_day_index + days_in_week > program_length_days
        weeks.append(_make_week(
            'closing' if is_last else 'regular',
            'Closing' if is_last else f'Week {week_number}',
            CLOSING_WEEK_NUMBER if is_last else week_number,
            current_monday,
            current_day_index,
            days_in_week,
            include_weekends,
        ))
        current_day_index += days_in_week
        if not is_last:
            week_number += 1
        current_monday += timedelta(days=7)

    return weeks


def _replace_type(week: CalendarWeek, week_type: str) -> CalendarWeek:
    data = asdict(week)
    data['type'] = week_type
    return CalendarWeek(**data)


def get_calendar_week_for_day(start_date: DateLike, day_index: int, program_length_days: int,
                              include_weekends: bool = True) -> Optional[CalendarWeek]:
    """Return the week containing program day `day_index`, or None if out of range."""
    if day_index < 1 or day_index > program_length_days:
        return None
    for week in calculate_calendar_weeks(start_date, program_length_days, include_weekends):
        if week.start_day_index <= day_index <= week.end_day_index:
            return week
    return None


def calculate_total_calendar_weeks(start_date: DateLike, program_length_days: int,
                                   include_weekends: bool = True) -> int:
    return len(calculate_calendar_weeks(start_date, program_length_days, include_weekends))


def day_index_to_date(start_date: DateLike, day_index: int, include_weekends: bool = True) -> date:
    """Map a 1-based program day index to its calendar date."""
    start = _effective_start(parse_date(start_date), include_weekends)
    return _advance_active_days(start, day_index - 1, include_weekends)


def date_to_day_index(start_date: DateLike, target_date: DateLike, include_weekends: bool = True) -> int:
    """Map a calendar date to a 1-based program day index.

    Returns 0 before the program start and -1 for a weekend date of a
    weekday-only program.
    """
    start = _effective_start(parse_date(start_date), include_weekends)
    target = parse_date(target_date)
    if target < start:
        return 0
    if not include_weekends and is_weekend(target):
        return -1
    return _count_active_days(start, target, include_weekends)


def get_current_calendar_week(start_date: DateLike, program_length_days: int, include_weekends: bool = True,
                              today: Optional[DateLike] = None) -> Optional[CalendarWeek]:
    """Return the week `today` falls in, capped at the last program week.

    Returns None when the program has not started yet.
    """
    current = parse_date(today) if today is not None else date.today()
    start = parse_date(start_date)
    if current < start:
        return None
    day_index = _count_active_days(start, current, include_weekends)
    day_index = min(day_index, program_length_days)
    return get_calendar_week_for_day(start, day_index, program_length_days, include_weekends)


def calculate_program_day_for_date(start_date: DateLike, target_date: DateLike, total_days: int,
                                   include_weekends: bool) -> Optional[ProgramDayLocation]:
    """Locate the program week and day a calendar date falls on.

    Returns None when the date is before the start, after the last program
    day, or on a weekend of a weekday-only program.
    """
    global_day_index = date_to_day_index(start_date, target_date, include_weekends)
    if global_day_index <= 0 or global_day_index > total_days:
        return None
    weeks = calculate_calendar_weeks(start_date, total_days, include_weekends)
    for week_index, week in enumerate(weeks):
        if week.start_day_index <= global_day_index <= week.end_day_index:
            return ProgramDayLocation(
                week_index=week_index,
                day_index=global_day_index - week.start_day_index + 1,
                global_day_index=global_day_index,
            )
    return None


def get_week_label(week: CalendarWeek, include_day_count: bool = False) -> str:
    """Display label, e.g. "Onboarding (2 days)" for short weeks when asked."""
    if include_day_count and week.day_count < 5:
        plural = 's' if week.day_count != 1 else ''
        return f'{week.label} ({week.day_count} day{plural})'
    return week.label


def get_week_day_labels(week: CalendarWeek) -> List[str]:
    """Weekday abbreviations of the week's active days, in order."""
    return [WEEKDAY_LABELS[d - 1] for d in range(week.actual_start_day_of_week, week.actual_end_day_of_week + 1)]
