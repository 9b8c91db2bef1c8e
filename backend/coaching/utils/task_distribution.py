"""Placement of a week's template tasks onto its active days.

Every template task may carry a `dayTag`:

- `'daily'`: on every active day
- `'spread'`: spread evenly across the active days
- a 1-based day number, or a list of them: only on those days
- missing / `'auto'`: placed by the week's `distribution` policy
  (`spread`, `all_days` or `first_day`)

The `days` list handed in holds only the active days of the week, so day
number `n` is `days[n - 1]`.
"""

from __future__ import annotations

import logging
import uuid
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

logger = logging.getLogger("coaching.instances")

WEEK_SOURCE = 'week'


class Placement(str, Enum):
    AUTO = 'auto'
    DAILY = 'daily'
    SPREAD = 'spread'
    SPECIFIC = 'specific'


class Distribution(str, Enum):
    SPREAD = 'spread'
    ALL_DAYS = 'all_days'
    FIRST_DAY = 'first_day'

    @classmethod
    def parse(cls, value: Optional[str]) -> 'Distribution':
        """Map a stored distribution string to a policy (default: spread)."""
        if not value:
            return cls.SPREAD
        if value == 'repeat-daily':
            return cls.ALL_DAYS
        try:
            return cls(value)
        except ValueError:
            logger.warning("unknown distribution %r, using spread", value)
            return cls.SPREAD


class DayTag(NamedTuple):
    kind: Placement
    days: Tuple[int, ...] = ()


def _as_day_number(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip('-').isdigit():
        return int(value.strip())
    return None


def parse_day_tag(raw: Any) -> DayTag:
    """Turn a stored `dayTag` value into a `DayTag`."""
    if raw is None or raw == 'auto':
        return DayTag(Placement.AUTO)
    if raw == 'daily':
        return DayTag(Placement.DAILY)
    if raw == 'spread':
        return DayTag(Placement.SPREAD)
    if isinstance(raw, (list, tuple)):
        numbers = tuple(n for n in (_as_day_number(v) for v in raw) if n is not None)
        return DayTag(Placement.SPECIFIC, numbers)
    number = _as_day_number(raw)
    if number is not None:
        return DayTag(Placement.SPECIFIC, (number,))
    return DayTag(Placement.AUTO)


def spread_index(task_index: int, task_count: int, day_count: int) -> int:
    """Day index for the `task_index`-th of `task_count` spread tasks.

    `round(i * (n - 1) / (k - 1))` with halves rounded up; a lone task
    lands on the first day.
    """
    if task_count <= 1:
        return 0
    numerator = task_index * (day_count - 1)
    denominator = task_count - 1
    return (2 * numerator + denominator) // (2 * denominator)


def make_day_task(task: Dict[str, Any]) -> Dict[str, Any]:
    """Copy a template task for placement on a day."""
    return {**task, 'id': task.get('id') or uuid.uuid4().hex, 'source': WEEK_SOURCE}


def strip_week_tasks(days: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Return copies of `days` without previously distributed week tasks."""
    return [
        {**day, 'tasks': [t for t in (day.get('tasks') or []) if t.get('source') != WEEK_SOURCE]}
        for day in days
    ]


def distribute_tasks_to_days(weekly_tasks: Sequence[Dict[str, Any]], days: Sequence[Dict[str, Any]],
                             distribution: Optional[str] = None) -> List[Dict[str, Any]]:
    """Return copies of `days` with the week's tasks appended.

    Neither `weekly_tasks` nor `days` is mutated. Specific day numbers
    outside `[1, len(days)]` are dropped.
    """
    num_days = len(days)
    if num_days == 0 or not weekly_tasks:
        return [dict(day) for day in days]

    daily: List[Dict[str, Any]] = []
    spread: List[Dict[str, Any]] = []
    specific: Dict[int, List[Dict[str, Any]]] = {}
    auto: List[Dict[str, Any]] = []

    for task in weekly_tasks:
        tag = parse_day_tag(task.get('dayTag'))
        if tag.kind is Placement.DAILY:
            daily.append(task)
        elif tag.kind is Placement.SPREAD:
            spread.append(task)
        elif tag.kind is Placement.SPECIFIC:
            for day_num in tag.days:
                if 1 <= day_num <= num_days:
                    specific.setdefault(day_num, []).append(task)
                else:
                    logger.warning(
                        "dropping task %s: day %s outside 1..%s",
                        task.get('id') or task.get('label'), day_num, num_days,
                    )
        else:
            auto.append(task)

    updated = [{**day, 'tasks': list(day.get('tasks') or [])} for day in days]

    for task in daily:
        for day in updated:
            day['tasks'].append(make_day_task(task))

    for day_num in sorted(specific):
        for task in specific[day_num]:
            updated[day_num - 1]['tasks'].append(make_day_task(task))

    for i, task in enumerate(spread):
        updated[spread_index(i, len(spread), num_days)]['tasks'].append(make_day_task(task))

    if auto:
        policy = Distribution.parse(distribution)
        if policy is Distribution.SPREAD:
            for i, task in enumerate(auto):
                updated[spread_index(i, len(auto), num_days)]['tasks'].append(make_day_task(task))
        elif policy is Distribution.ALL_DAYS:
            for task in auto:
                for day in updated:
                    day['tasks'].append(make_day_task(task))
        else:
            for task in auto:
                updated[0]['tasks'].append(make_day_task(task))

    return updated
