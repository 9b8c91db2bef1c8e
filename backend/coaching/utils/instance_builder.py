"""Build the denormalized `weeks` array of a program instance.

Each calendar week is paired with a template week, expanded into its
active days (with calendar dates) and populated with the template's
weekly tasks via `distribute_tasks_to_days`.
"""

import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence

from .calendar_weeks import CLOSING_WEEK_NUMBER, ONBOARDING_WEEK_NUMBER, CalendarWeek
from .task_distribution import distribute_tasks_to_days

# Template week fields copied verbatim onto the instance week
PASSTHROUGH_FIELDS = (
    'moduleId', 'name', 'theme', 'description', 'weeklyPrompt', 'distribution',
    'currentFocus', 'notes', 'manualNotes',
    'linkedCallEventIds', 'linkedCourseIds', 'linkedArticleIds', 'linkedDownloadIds',
    'linkedLinkIds', 'linkedQuestionnaireIds', 'linkedSummaryIds',
)


def uses_numbered_weeks(template_weeks: Sequence[Dict[str, Any]]) -> bool:
    """True when the template numbers its onboarding (0) or closing (-1) week.

    Templates numbered plainly 1..N, or not at all, are matched by position,
    so their last week lands on the closing week.
    """
    return any(w.get('weekNumber') in (0, CLOSING_WEEK_NUMBER) for w in template_weeks)


def template_week_number(calendar_week: CalendarWeek, zero_based: bool) -> int:
    """The template `weekNumber` a calendar week answers to.

    With a zero-based template the onboarding week is 0 and regular weeks
    count from 1; otherwise the calendar's own numbering applies.
    """
    if calendar_week.week_number == CLOSING_WEEK_NUMBER or not zero_based:
        return calendar_week.week_number
    return calendar_week.week_number - ONBOARDING_WEEK_NUMBER


def match_template_week(calendar_week: CalendarWeek, position: int, template_weeks: Sequence[Dict[str, Any]],
                        numbered: bool) -> Optional[Dict[str, Any]]:
    if numbered:
        zero_based = any(w.get('weekNumber') == 0 for w in template_weeks)
        wanted = template_week_number(calendar_week, zero_based)
        return next((w for w in template_weeks if w.get('weekNumber') == wanted), None)
    if position < len(template_weeks):
        return template_weeks[position]
    return None


def build_week_days(calendar_week: CalendarWeek) -> List[Dict[str, Any]]:
    """Active days of a calendar week, dated from its Monday anchor."""
    offset = calendar_week.actual_start_day_of_week - 1
    days = []
    for i in range(calendar_week.end_day_index - calendar_week.start_day_index + 1):
        days.append({
            'dayIndex': i + 1,
            'globalDayIndex': calendar_week.start_day_index + i,
            'calendarDate': (calendar_week.start_date + timedelta(days=offset + i)).isoformat(),
            'tasks': [],
            'habits': [],
        })
    return days


def with_task_ids(tasks: Optional[Sequence[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    return [{**t, 'id': t.get('id') or uuid.uuid4().hex} for t in (tasks or [])]


def build_instance_weeks(calendar_weeks: Sequence[CalendarWeek],
                         template_weeks: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Map calendar weeks onto template weeks and distribute their tasks."""
    ordered = sorted(calendar_weeks, key=lambda w: w.start_day_index)
    numbered = uses_numbered_weeks(template_weeks)
    weeks = []
    for position, calendar_week in enumerate(ordered):
        template = match_template_week(calendar_week, position, template_weeks, numbered) or {}
        weekly_tasks = with_task_ids(template.get('weeklyTasks'))
        days = build_week_days(calendar_week)
        if weekly_tasks:
            days = distribute_tasks_to_days(weekly_tasks, days, template.get('distribution'))

        week = {
            'id': template.get('id') or uuid.uuid4().hex,
            'weekNumber': calendar_week.week_number,
            'templateWeekNumber': template.get('weekNumber'),
            'weeklyTasks': weekly_tasks,
            'weeklyHabits': list(template.get('weeklyHabits') or []),
            'startDayIndex': calendar_week.start_day_index,
            'endDayIndex': calendar_week.end_day_index,
            'calendarStartDate': calendar_week.start_date.isoformat(),
            'calendarEndDate': calendar_week.end_date.isoformat(),
            'actualStartDayOfWeek': calendar_week.actual_start_day_of_week,
            'actualEndDayOfWeek': calendar_week.actual_end_day_of_week,
            'displayDaysCount': calendar_week.display_days_count,
            'days': days,
        }
        for field in PASSTHROUGH_FIELDS:
            week[field] = template.get(field)
        weeks.append(week)
    return weeks
