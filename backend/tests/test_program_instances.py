import uuid
from datetime import date

import pytest

from coaching import models, repositories, services

TEMPLATE = [
    {'weekNumber': 1, 'theme': 'Welcome', 'weeklyTasks': [{'id': 'intro', 'label': 'Intro', 'dayTag': 1}]},
    {'weekNumber': 2, 'theme': 'Habits', 'weeklyTasks': [{'id': 'walk', 'label': 'Walk', 'dayTag': 'daily'}]},
]


def _user(session, org='org-a'):
    return services.AuthService(session).register(f'user-{uuid.uuid4().hex[:8]}', 'pw', org)


def _program(session, org='org-a', **kw):
    kw.setdefault('length_days', 10)
    kw.setdefault('include_weekends', False)
    return services.ProgramService(session).create_program(org, 'Reset', weeks=kw.pop('weeks', TEMPLATE), **kw)


def _enrollment(session, program, user, start=date(2025, 1, 1)):
    return repositories.EnrollmentRepository(session).create(models.ProgramEnrollment(
        program_id=program.id, organization_id=program.organization_id, user_id=user.id, start_date=start))


def test_enrollment_instance_is_created_once(session):
    program = _program(session)
    enrollment = _enrollment(session, program, _user(session))
    svc = services.ProgramInstanceService(session)

    first = svc.ensure_enrollment_instance_exists(program.id, enrollment.id, 'org-a')
    second = svc.ensure_enrollment_instance_exists(program.id, enrollment.id, 'org-a')
    assert first is not None
    assert first == second

    instance = svc.get_instance(first, 'org-a')
    assert instance.type == 'individual'
    assert instance.user_id == enrollment.user_id
    assert instance.start_date == date(2025, 1, 1)
    assert instance.end_date == date(2025, 1, 14)
    assert instance.daily_focus_slots == 3
    assert [w['weekNumber'] for w in instance.weeks] == [1, 2, -1]
    assert [t['id'] for t in instance.weeks[0]['days'][0]['tasks']] == ['intro']


def test_organization_mismatch_returns_none(session):
    program = _program(session)
    enrollment = _enrollment(session, program, _user(session))
    svc = services.ProgramInstanceService(session)
    assert svc.ensure_enrollment_instance_exists(program.id, enrollment.id, 'org-b') is None
    assert repositories.InstanceRepository(session).find_by_enrollment(program.id, enrollment.id) is None


def test_missing_records_return_none(session):
    program = _program(session)
    svc = services.ProgramInstanceService(session)
    assert svc.ensure_enrollment_instance_exists(program.id, 999999, 'org-a') is None
    assert svc.ensure_cohort_instance_exists(999999, 1, 'org-a') is None


def test_cohort_without_start_date_returns_none(session):
    program = _program(session, type='group')
    cohort = services.ProgramService(session).add_cohort(program.id, 'org-a', 'Spring')
    svc = services.ProgramInstanceService(session)
    assert svc.ensure_cohort_instance_exists(program.id, cohort.id, 'org-a') is None


def test_cohort_instance_uses_cohort_dates(session):
    program = _program(session, type='group')
    cohort = services.ProgramService(session).add_cohort(
        program.id, 'org-a', 'Spring', date(2025, 1, 4), date(2025, 2, 1))
    svc = services.ProgramInstanceService(session)
    instance_id = svc.ensure_cohort_instance_exists(program.id, cohort.id, 'org-a')
    instance = svc.get_instance(instance_id, 'org-a')
    assert instance.type == 'cohort'
    assert instance.cohort_id == cohort.id
    assert instance.user_id is None
    assert instance.end_date == date(2025, 2, 1)
    # Saturday start is pushed to Monday for weekday programs
    assert instance.weeks[0]['days'][0]['calendarDate'] == '2025-01-06'
    assert svc.ensure_cohort_instance_exists(program.id, cohort.id, 'org-a') == instance_id


def test_legacy_program_week_rows_are_used(session):
    program = _program(session, weeks=[], length_days=5)
    repo = repositories.ProgramRepository(session)
    repo.add_week(models.ProgramWeek(program_id=program.id, week_number=1, theme='Legacy',
                                     weekly_tasks=[{'id': 'old', 'label': 'Old', 'dayTag': 'daily'}]))
    enrollment = _enrollment(session, program, _user(session), start=date(2025, 1, 6))
    svc = services.ProgramInstanceService(session)
    instance = svc.get_instance(svc.ensure_enrollment_instance_exists(program.id, enrollment.id, 'org-a'), 'org-a')
    assert instance.weeks[0]['theme'] == 'Legacy'
    assert all(d['tasks'][0]['id'] == 'old' for d in instance.weeks[0]['days'])


def test_defaults_apply_when_program_leaves_settings_unset(session):
    program = services.ProgramService(session).create_program('org-a', 'Bare')
    enrollment = _enrollment(session, program, _user(session), start=date(2025, 1, 6))
    svc = services.ProgramInstanceService(session)
    instance = svc.get_instance(svc.ensure_enrollment_instance_exists(program.id, enrollment.id, 'org-a'), 'org-a')
    assert instance.include_weekends is True
    assert sum(len(w['days']) for w in instance.weeks) == 28


def test_update_week_redistributes_and_syncs_tasks(session):
    program = _program(session)
    user = _user(session)
    enrollment = _enrollment(session, program, user)
    svc = services.ProgramInstanceService(session)
    instance_id = svc.ensure_enrollment_instance_exists(program.id, enrollment.id, 'org-a')

    updates = {
        'theme': 'Habits, revised',
        'weekly_tasks': [{'id': 'walk', 'label': 'Walk', 'dayTag': 'daily', 'isPrimary': True},
                         {'label': 'Journal', 'dayTag': [1, 3]}],
        'distribute_tasks_now': True,
    }
    instance, created = svc.update_instance_week(instance_id, 2, updates, 'org-a')
    week = svc.get_week(instance_id, 2, 'org-a')
    assert week['hasLocalChanges'] is True
    assert week['theme'] == 'Habits, revised'
    assert created == 5 + 2
    assert [len(d['tasks']) for d in week['days']] == [2, 1, 2, 1, 1]

    tasks = repositories.TaskRepository(session).list_for_user(user.id, date(2025, 1, 6))
    assert {t.label for t in tasks} == {'Walk', 'Journal'}
    assert next(t for t in tasks if t.label == 'Walk').list_type == 'focus'

    # a second redistribution does not duplicate tasks
    _, again = svc.update_instance_week(instance_id, 2, {'distribute_tasks_now': True}, 'org-a')
    assert again == 0


def test_update_week_errors(session):
    program = _program(session)
    enrollment = _enrollment(session, program, _user(session))
    svc = services.ProgramInstanceService(session)
    instance_id = svc.ensure_enrollment_instance_exists(program.id, enrollment.id, 'org-a')
    with pytest.raises(services.WeekNotFound):
        svc.update_instance_week(instance_id, 9, {'theme': 'x'}, 'org-a')
    with pytest.raises(services.InstanceNotFound):
        svc.update_instance_week(instance_id, 1, {'theme': 'x'}, 'org-b')
    with pytest.raises(services.InstanceNotFound):
        svc.update_instance_week(999999, 1, {'theme': 'x'}, 'org-a')


def test_soft_deleted_instance_is_hidden(session):
    program = _program(session)
    enrollment = _enrollment(session, program, _user(session))
    svc = services.ProgramInstanceService(session)
    instance_id = svc.ensure_enrollment_instance_exists(program.id, enrollment.id, 'org-a')
    svc.delete_instance(instance_id, 'org-a')
    with pytest.raises(services.InstanceNotFound):
        svc.get_instance(instance_id, 'org-a')
    listed, _ = svc.list_instances('org-a', enrollment_id=enrollment.id)
    assert listed == []


def test_enroll_rejects_duplicates(session):
    program = _program(session)
    user = _user(session)
    svc = services.EnrollmentService(session)
    enrollment, instance_id = svc.enroll(program.id, user.id, 'org-a', start_date=date(2025, 1, 1))
    assert instance_id is not None
    assert enrollment.status == 'active'
    with pytest.raises(services.DuplicateEnrollment):
        svc.enroll(program.id, user.id, 'org-a')
