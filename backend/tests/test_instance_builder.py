from coaching.utils.calendar_weeks import calculate_calendar_weeks
from coaching.utils.instance_builder import build_instance_weeks, uses_numbered_weeks


def _task_days(week, task_id):
    return [d['dayIndex'] for d in week['days'] if any(t['id'] == task_id for t in d['tasks'])]


def test_single_week_example():
    template = [{
        'weekNumber': 1,
        'theme': 'Start',
        'weeklyTasks': [
            {'id': 'a', 'label': 'A', 'dayTag': 'daily'},
            {'id': 'b', 'label': 'B', 'dayTag': 2},
            {'id': 'c', 'label': 'C', 'dayTag': 'spread'},
            {'id': 'd', 'label': 'D', 'dayTag': 'spread'},
        ],
    }]
    weeks = build_instance_weeks(calculate_calendar_weeks('2024-12-02', 7, True), template)
    assert len(weeks) == 1
    week = weeks[0]
    assert week['theme'] == 'Start'
    assert week['templateWeekNumber'] == 1
    assert _task_days(week, 'a') == [1, 2, 3, 4, 5, 6, 7]
    assert _task_days(week, 'b') == [2]
    assert _task_days(week, 'c') == [1]
    assert _task_days(week, 'd') == [7]
    assert week['days'][0]['calendarDate'] == '2024-12-02'
    assert week['days'][6]['calendarDate'] == '2024-12-08'


def test_partial_week_days_are_dated_from_actual_start():
    weeks = build_instance_weeks(calculate_calendar_weeks('2025-01-01', 30, False), [])
    first = weeks[0]
    assert first['calendarStartDate'] == '2024-12-30'
    assert first['actualStartDayOfWeek'] == 3
    assert [d['calendarDate'] for d in first['days']] == ['2025-01-01', '2025-01-02', '2025-01-03']
    assert [d['globalDayIndex'] for d in weeks[1]['days']] == [4, 5, 6, 7, 8]
    assert [w['weekNumber'] for w in weeks][-1] == -1
    assert sum(len(w['days']) for w in weeks) == 30


def test_plain_numbered_template_fills_closing_week():
    template = [
        {'weekNumber': n, 'theme': f'T{n}', 'weeklyTasks': [{'id': f't{n}', 'label': f'Task {n}', 'dayTag': 'daily'}]}
        for n in range(1, 5)
    ]
    assert not uses_numbered_weeks(template)
    weeks = build_instance_weeks(calculate_calendar_weeks('2025-01-06', 28, True), template)
    assert [(w['weekNumber'], w['theme']) for w in weeks] == [(1, 'T1'), (2, 'T2'), (3, 'T3'), (-1, 'T4')]
    placed = {t['id'] for w in weeks for d in w['days'] for t in d['tasks']}
    assert placed == {'t1', 't2', 't3', 't4'}


def test_zero_based_template_matches_onboarding_and_closing():
    template = [
        {'weekNumber': -1, 'theme': 'Close'},
        {'weekNumber': 0, 'theme': 'Onboard'},
        {'weekNumber': 1, 'theme': 'First'},
        {'weekNumber': 2, 'theme': 'Second'},
    ]
    assert uses_numbered_weeks(template)
    weeks = build_instance_weeks(calculate_calendar_weeks('2025-01-06', 28, True), template)
    assert [w['theme'] for w in weeks] == ['Onboard', 'First', 'Second', 'Close']
    assert [w['templateWeekNumber'] for w in weeks] == [0, 1, 2, -1]


def test_closing_numbered_template_matches_by_week_number():
    template = [
        {'weekNumber': -1, 'theme': 'Wrap up'},
        {'weekNumber': 1, 'theme': 'Welcome'},
        {'weekNumber': 2, 'theme': 'Build'},
    ]
    assert uses_numbered_weeks(template)
    weeks = build_instance_weeks(calculate_calendar_weeks('2025-01-01', 15, False), template)
    assert [w['theme'] for w in weeks] == ['Welcome', 'Build', None, 'Wrap up']


def test_unnumbered_templates_match_by_position():
    template = [{'theme': 'one'}, {'theme': 'two'}]
    assert not uses_numbered_weeks(template)
    weeks = build_instance_weeks(calculate_calendar_weeks('2025-01-01', 15, False), template)
    assert [w['theme'] for w in weeks] == ['one', 'two', None, None]


def test_template_is_not_mutated_and_ids_are_filled():
    template = [{'weekNumber': 1, 'weeklyTasks': [{'label': 'no id', 'dayTag': 'daily'}]}]
    weeks = build_instance_weeks(calculate_calendar_weeks('2025-01-06', 5, False), template)
    assert 'id' not in template[0]['weeklyTasks'][0]
    task_id = weeks[0]['weeklyTasks'][0]['id']
    assert all(d['tasks'][0]['id'] == task_id for d in weeks[0]['days'])
