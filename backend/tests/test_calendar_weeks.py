from datetime import date

import pytest

from coaching.utils.calendar_weeks import (
    calculate_calendar_weeks,
    calculate_program_day_for_date,
    calculate_total_calendar_weeks,
    date_to_day_index,
    day_index_to_date,
    get_calendar_week_for_day,
    get_current_calendar_week,
    get_week_day_labels,
    get_week_label,
)


def test_weekday_program_starting_wednesday_has_short_onboarding():
    # 2025-01-01 is a Wednesday
    weeks = calculate_calendar_weeks('2025-01-01', 30, include_weekends=False)
    first = weeks[0]
    assert first.type == 'onboarding'
    assert first.week_number == 1
    assert first.day_count == 3
    assert (first.actual_start_day_of_week, first.actual_end_day_of_week) == (3, 5)
    assert first.start_date == date(2024, 12, 30)
    assert first.display_days_count == 5
    assert get_week_day_labels(first) == ['Wed', 'Thu', 'Fri']

    assert [w.day_count for w in weeks] == [3, 5, 5, 5, 5, 5, 2]
    assert [w.week_number for w in weeks] == [1, 2, 3, 4, 5, 6, -1]
    closing = weeks[-1]
    assert closing.type == 'closing'
    assert closing.start_date == date(2025, 2, 10)
    assert (closing.start_day_index, closing.end_day_index) == (29, 30)


def test_thursday_start_fifteen_weekdays():
    weeks = calculate_calendar_weeks(date(2025, 1, 2), 15, include_weekends=False)
    assert [(w.type, w.day_count) for w in weeks] == [
        ('onboarding', 2), ('regular', 5), ('regular', 5), ('closing', 3),
    ]
    assert get_week_day_labels(weeks[-1]) == ['Mon', 'Tue', 'Wed']


def test_days_are_contiguous_and_cover_program():
    weeks = calculate_calendar_weeks('2025-03-13', 40, include_weekends=True)
    assert weeks[0].start_day_index == 1
    assert weeks[-1].end_day_index == 40
    for prev, nxt in zip(weeks, weeks[1:]):
        assert nxt.start_day_index == prev.end_day_index + 1
    assert sum(w.day_count for w in weeks) == 40
    assert all(w.display_days_count == 7 for w in weeks)


def test_weekend_start_is_pushed_to_monday_for_weekday_programs():
    # 2025-01-04 is a Saturday
    weeks = calculate_calendar_weeks('2025-01-04', 10, include_weekends=False)
    assert len(weeks) == 2
    assert weeks[0].start_date == date(2025, 1, 6)
    assert weeks[0].actual_start_day_of_week == 1
    assert weeks[0].day_count == 5
    assert day_index_to_date('2025-01-04', 1, include_weekends=False) == date(2025, 1, 6)


def test_single_week_program_is_closing_with_onboarding_label():
    weeks = calculate_calendar_weeks('2024-12-02', 7, include_weekends=True)
    assert len(weeks) == 1
    assert weeks[0].type == 'closing'
    assert weeks[0].label == 'Onboarding'
    assert weeks[0].week_number == 1


def test_invalid_length_rejected():
    with pytest.raises(ValueError):
        calculate_calendar_weeks('2025-01-01', 0)


def test_day_and_date_mapping():
    assert day_index_to_date('2025-01-01', 4, include_weekends=False) == date(2025, 1, 6)
    assert day_index_to_date('2025-01-01', 4, include_weekends=True) == date(2025, 1, 4)
    assert date_to_day_index('2025-01-01', '2025-01-06', include_weekends=False) == 4
    assert date_to_day_index('2025-01-01', '2024-12-31', include_weekends=False) == 0
    assert date_to_day_index('2025-01-01', '2025-01-04', include_weekends=False) == -1


def test_program_day_lookup():
    loc = calculate_program_day_for_date('2025-01-01', '2025-01-06', 30, False)
    assert (loc.week_index, loc.day_index, loc.global_day_index) == (1, 1, 4)
    assert calculate_program_day_for_date('2025-01-01', '2025-01-05', 30, False) is None
    assert calculate_program_day_for_date('2025-01-01', '2025-06-01', 30, False) is None

    week = get_calendar_week_for_day('2025-01-01', 29, 30, include_weekends=False)
    assert week.type == 'closing'
    assert get_calendar_week_for_day('2025-01-01', 31, 30) is None
    assert calculate_total_calendar_weeks('2025-01-01', 30, include_weekends=False) == 7


def test_current_week_and_labels():
    assert get_current_calendar_week('2025-01-01', 30, False, today='2024-12-25') is None
    assert get_current_calendar_week('2025-01-01', 30, False, today='2025-01-07').week_number == 2
    # long after the program ends the closing week is returned
    assert get_current_calendar_week('2025-01-01', 30, False, today='2025-06-01').type == 'closing'

    first = calculate_calendar_weeks('2025-01-01', 30, include_weekends=False)[0]
    assert get_week_label(first) == 'Onboarding'
    assert get_week_label(first, include_day_count=True) == 'Onboarding (3 days)'
