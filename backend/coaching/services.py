"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and the pure scheduling helpers in `utils`. Services are intentionally
thin: they perform validation, execute domain logic and persist
aggregates via repositories.

`ProgramInstanceService.ensure_*` keep a deliberately soft contract:
they return the instance id, or `None` (with an error log) when the
instance could not be ensured. Callers proceed without instance data in
that case.
"""

import copy
import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import jwt
from passlib.context import CryptContext
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .utils.calendar_weeks import calculate_calendar_weeks, parse_date
from .utils.instance_builder import build_instance_weeks, with_task_ids
from .utils.task_distribution import distribute_tasks_to_days, strip_week_tasks

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

logger = logging.getLogger("coaching.instances")
coaching_logger = logging.getLogger("coaching.coaching_data")


class NotFound(LookupError):
    """A requested record does not exist (or is outside the caller's organization)."""


class InstanceNotFound(NotFound):
    pass


class WeekNotFound(NotFound):
    pass


class DayNotFound(NotFound):
    pass


class ProgramNotFound(NotFound):
    pass


class AccessDenied(PermissionError):
    """The record exists but belongs to another organization or coach."""


class DuplicateEnrollment(ValueError):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthService:
    """Authentication related operations (register + authenticate)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def register(self, username: str, password: str, organization_id: str, role: str = "client",
                 first_name: Optional[str] = None, last_name: Optional[str] = None) -> models.User:
        """Create a new user with a hashed password.

        Returns the persisted `User` instance.
        """
        hashed = PWD_CTX.hash(password)
        u = models.User(
            username=username,
            password_hash=hashed,
            organization_id=organization_id,
            role=role,
            first_name=first_name,
            last_name=last_name,
        )
        return self.user_repo.create(u)

    def authenticate(self, username: str, password: str):
        """Verify credentials and return a signed JWT token on success.

        The token carries the user's organization and role so handlers can
        build a request context without global state. Returns `None` if
        authentication fails.
        """
        user = self.user_repo.get_by_username(username)
        if not user:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        expire = _utcnow() + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        payload = {
            "user_id": user.id,
            "username": user.username,
            "organization_id": user.organization_id,
            "role": user.role,
            "exp": int(expire.timestamp()),
        }
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


class ProgramService:
    """Create and read program templates and their cohorts."""
    def __init__(self, session: Session):
        self.session = session
        self.program_repo = repositories.ProgramRepository(session)
        self.cohort_repo = repositories.CohortRepository(session)

    def create_program(self, organization_id: str, name: str, type: str = "individual",
                       length_days: Optional[int] = None, include_weekends: Optional[bool] = None,
                       daily_focus_slots: Optional[int] = None, weeks: Optional[List[dict]] = None) -> models.Program:
        if length_days is not None and length_days < 1:
            raise ValueError("length_days must be >= 1")
        program = models.Program(
            organization_id=organization_id,
            name=name,
            type=type,
            length_days=length_days,
            include_weekends=include_weekends,
            daily_focus_slots=daily_focus_slots,
            weeks=weeks or [],
        )
        return self.program_repo.create(program)

    def get_program(self, program_id: int, organization_id: str) -> models.Program:
        program = self.program_repo.get(program_id)
        if not program or program.organization_id != organization_id:
            raise ProgramNotFound("program not found")
        return program

    def add_cohort(self, program_id: int, organization_id: str, name: str,
                   start_date: Optional[date] = None, end_date: Optional[date] = None) -> models.ProgramCohort:
        self.get_program(program_id, organization_id)
        if start_date and end_date and end_date < start_date:
            raise ValueError("end_date must not be before start_date")
        cohort = models.ProgramCohort(
            program_id=program_id,
            organization_id=organization_id,
            name=name,
            start_date=start_date,
            end_date=end_date,
        )
        return self.cohort_repo.create(cohort)


def _legacy_week_to_template(row: models.ProgramWeek) -> Dict[str, Any]:
    return {
        'id': str(row.id),
        'weekNumber': row.week_number,
        'moduleId': row.module_id,
        'name': row.name,
        'theme': row.theme,
        'description': row.description,
        'distribution': row.distribution,
        'weeklyPrompt': row.weekly_prompt,
        'weeklyTasks': list(row.weekly_tasks or []),
        'weeklyHabits': list(row.weekly_habits or []),
    }


class ProgramInstanceService:
    """Create, read and edit program instances."""
    def __init__(self, session: Session):
        self.session = session
        self.program_repo = repositories.ProgramRepository(session)
        self.cohort_repo = repositories.CohortRepository(session)
        self.enrollment_repo = repositories.EnrollmentRepository(session)
        self.instance_repo = repositories.InstanceRepository(session)
        self.task_repo = repositories.TaskRepository(session)

    # --- creation -------------------------------------------------------

    def _template_weeks(self, program: models.Program) -> List[Dict[str, Any]]:
        """Embedded template weeks, falling back to legacy `ProgramWeek` rows."""
        if program.weeks:
            logger.info("program %s: using %d embedded weeks", program.id, len(program.weeks))
            return list(program.weeks)
        rows = self.program_repo.list_weeks(program.id)
        logger.info("program %s: using %d legacy program_weeks rows", program.id, len(rows))
        return [_legacy_week_to_template(r) for r in rows]

    def _build(self, program: models.Program, start: date) -> Tuple[List[dict], date, bool]:
        """Return (weeks, last program date, include_weekends) for a start date."""
        include_weekends = program.include_weekends is not False
        total_days = program.length_days or settings.DEFAULT_PROGRAM_LENGTH_DAYS
        calendar_weeks = calculate_calendar_weeks(start, total_days, include_weekends)
        weeks = build_instance_weeks(calendar_weeks, self._template_weeks(program))
        return weeks, calendar_weeks[-1].last_active_date, include_weekends

    def _insert(self, instance: models.ProgramInstance, lookup) -> Optional[int]:
        created = self.instance_repo.create(instance)
        if created is not None:
            logger.info("created %s instance %s for program %s", created.type, created.id, created.program_id)
            return created.id
        # lost a race with a concurrent writer; the unique key points at the winner
        existing = lookup()
        if existing is None:
            logger.error("instance insert conflicted but no existing instance found (program %s)", instance.program_id)
            return None
        logger.info("instance %s was created concurrently, reusing it", existing.id)
        return existing.id

    def ensure_cohort_instance_exists(self, program_id: int, cohort_id: int, organization_id: str) -> Optional[int]:
        """Return the cohort's instance id, creating the instance if absent."""
        existing = self.instance_repo.find_by_cohort(program_id, cohort_id)
        if existing:
            logger.info("cohort instance already exists: %s", existing.id)
            return existing.id

        logger.info("creating cohort instance for cohort %s", cohort_id)
        program = self.program_repo.get(program_id)
        cohort = self.cohort_repo.get(cohort_id)
        if not program or not cohort:
            logger.error("program or cohort not found: program_id=%s cohort_id=%s", program_id, cohort_id)
            return None
        if program.organization_id != organization_id:
            logger.error("organization mismatch: expected %s, got %s", organization_id, program.organization_id)
            return None
        if cohort.program_id != program_id:
            logger.error("cohort %s does not belong to program %s", cohort_id, program_id)
            return None
        if not cohort.start_date:
            logger.error("cohort %s has no start_date", cohort_id)
            return None

        weeks, last_day, include_weekends = self._build(program, cohort.start_date)
        instance = models.ProgramInstance(
            program_id=program_id,
            organization_id=organization_id,
            type='cohort',
            cohort_id=cohort_id,
            start_date=cohort.start_date,
            end_date=cohort.end_date or last_day,
            include_weekends=include_weekends,
            daily_focus_slots=program.daily_focus_slots or settings.DEFAULT_DAILY_FOCUS_SLOTS,
            weeks=weeks,
        )
        return self._insert(instance, lambda: self.instance_repo.find_by_cohort(program_id, cohort_id))

    def ensure_enrollment_instance_exists(self, program_id: int, enrollment_id: int,
                                          organization_id: str) -> Optional[int]:
        """Return the enrollment's instance id, creating the instance if absent."""
        existing = self.instance_repo.find_by_enrollment(program_id, enrollment_id)
        if existing:
            logger.info("enrollment instance already exists: %s", existing.id)
            return existing.id

        logger.info("creating enrollment instance for enrollment %s", enrollment_id)
        program = self.program_repo.get(program_id)
        enrollment = self.enrollment_repo.get(enrollment_id)
        if not program or not enrollment:
            logger.error("program or enrollment not found: program_id=%s enrollment_id=%s", program_id, enrollment_id)
            return None
        if program.organization_id != organization_id:
            logger.error("organization mismatch: expected %s, got %s", organization_id, program.organization_id)
            return None
        if enrollment.program_id != program_id:
            logger.error("enrollment %s does not belong to program %s", enrollment_id, program_id)
            return None

        start = enrollment.start_date or enrollment.started_at or date.today()
        weeks, last_day, include_weekends = self._build(program, start)
        instance = models.ProgramInstance(
            program_id=program_id,
            organization_id=organization_id,
            type='individual',
            enrollment_id=enrollment_id,
            user_id=enrollment.user_id,
            start_date=start,
            end_date=enrollment.end_date or last_day,
            include_weekends=include_weekends,
            daily_focus_slots=program.daily_focus_slots or settings.DEFAULT_DAILY_FOCUS_SLOTS,
            weeks=weeks,
        )
        return self._insert(instance, lambda: self.instance_repo.find_by_enrollment(program_id, enrollment_id))

    # --- reads ----------------------------------------------------------

    def get_instance(self, instance_id: int, organization_id: str) -> models.ProgramInstance:
        instance = self.instance_repo.get(instance_id)
        # another organization's instance is reported as missing
        if not instance or instance.organization_id != organization_id:
            raise InstanceNotFound("Instance not found")
        return instance

    def list_instances(self, organization_id: str, program_id: Optional[int] = None, cohort_id: Optional[int] = None,
                       enrollment_id: Optional[int] = None, user_id: Optional[int] = None, type: Optional[str] = None,
                       limit: int = 50, offset: int = 0) -> Tuple[List[dict], bool]:
        """Return (instance summaries without weeks, has_more).

        Filtering by both program and cohort creates the cohort instance on
        the fly when none exists yet.
        """
        filters = dict(program_id=program_id, cohort_id=cohort_id, enrollment_id=enrollment_id,
                       user_id=user_id, type=type)
        rows = self.instance_repo.list(organization_id, limit=limit + 1, offset=offset, **filters)
        if not rows and cohort_id is not None and program_id is not None:
            logger.info("no instance for cohort %s, auto-creating", cohort_id)
            if self.ensure_cohort_instance_exists(program_id, cohort_id, organization_id):
                rows = self.instance_repo.list(organization_id, limit=limit + 1, offset=offset, **filters)
        has_more = len(rows) > limit
        return [r.to_document(include_weeks=False) for r in rows[:limit]], has_more

    def _find_week(self, instance: models.ProgramInstance, week_number: int) -> int:
        for idx, week in enumerate(instance.weeks or []):
            if week.get('weekNumber') == week_number:
                return idx
        raise WeekNotFound("Week not found")

    def get_week(self, instance_id: int, week_number: int, organization_id: str) -> dict:
        instance = self.get_instance(instance_id, organization_id)
        return instance.weeks[self._find_week(instance, week_number)]

    def get_day(self, instance_id: int, global_day_index: int, organization_id: str) -> Tuple[dict, dict]:
        """Return (week, day) for a 1-based global day index."""
        instance = self.get_instance(instance_id, organization_id)
        for week in instance.weeks or []:
            for day in week.get('days') or []:
                if day.get('globalDayIndex') == global_day_index:
                    return week, day
        raise DayNotFound("Day not found")

    # --- writes ---------------------------------------------------------

    def update_instance(self, instance_id: int, organization_id: str, changes: Dict[str, Any]) -> models.ProgramInstance:
        """Update instance metadata (`end_date`, `daily_focus_slots`)."""
        instance = self.get_instance(instance_id, organization_id)
        if changes.get('end_date') is not None:
            end = parse_date(changes['end_date'])
            if end < instance.start_date:
                raise ValueError("end_date must not be before start_date")
            instance.end_date = end
        if changes.get('daily_focus_slots') is not None:
            if changes['daily_focus_slots'] < 1:
                raise ValueError("daily_focus_slots must be >= 1")
            instance.daily_focus_slots = changes['daily_focus_slots']
        return self.instance_repo.save(instance)

    def delete_instance(self, instance_id: int, organization_id: str) -> None:
        """Soft-delete an instance."""
        instance = self.get_instance(instance_id, organization_id)
        instance.deleted_at = _utcnow()
        self.instance_repo.save(instance)
        logger.info("soft-deleted instance %s", instance_id)

    def update_instance_week(self, instance_id: int, week_number: int, updates: Dict[str, Any],
                             organization_id: str) -> Tuple[models.ProgramInstance, int]:
        """Apply week edits and optionally redistribute its tasks.

        `updates` keys: `theme`, `description`, `current_focus`, `notes`,
        `weekly_tasks`, `distribution`, `distribute_tasks_now`. When tasks
        are redistributed on an individual instance, missing user `Task`
        rows are created. Returns (instance, tasks_created).
        """
        instance = self.get_instance(instance_id, organization_id)
        weeks = copy.deepcopy(instance.weeks or [])
        idx = self._find_week(instance, week_number)
        week = {**weeks[idx], 'hasLocalChanges': True}

        for key, field in (('theme', 'theme'), ('description', 'description'),
                           ('current_focus', 'currentFocus'), ('notes', 'notes')):
            if updates.get(key) is not None:
                week[field] = updates[key]
        if updates.get('weekly_tasks') is not None:
            week['weeklyTasks'] = with_task_ids(updates['weekly_tasks'])
        if updates.get('distribution'):
            week['distribution'] = updates['distribution']

        redistribute = bool(updates.get('distribute_tasks_now')) and bool(week.get('weeklyTasks'))
        if redistribute and week.get('days'):
            days = strip_week_tasks(week['days'])
            week['days'] = distribute_tasks_to_days(week['weeklyTasks'], days, week.get('distribution'))

        weeks[idx] = week
        instance.weeks = weeks
        instance = self.instance_repo.save(instance, weeks_changed=True)

        created = 0
        if redistribute and instance.type == 'individual' and instance.user_id:
            created = self._sync_user_tasks(instance, week)
        return instance, created

    def _sync_user_tasks(self, instance: models.ProgramInstance, week: dict) -> int:
        """Create the user's missing `Task` rows for each dated day of `week`."""
        now = _utcnow()
        pending: List[models.Task] = []
        for day in week.get('days') or []:
            day_index = day.get('globalDayIndex')
            if not day.get('calendarDate') or not isinstance(day_index, int):
                continue
            seen = self.task_repo.existing_instance_task_ids(instance.user_id, instance.id, day_index)
            for task in day.get('tasks') or []:
                task_id = task.get('id')
                if not task_id or task_id in seen:
                    continue
                seen.add(task_id)
                is_primary = bool(task.get('isPrimary'))
                pending.append(models.Task(
                    user_id=instance.user_id,
                    organization_id=instance.organization_id,
                    instance_id=instance.id,
                    instance_task_id=task_id,
                    label=task.get('label') or '',
                    is_primary=is_primary,
                    type=task.get('type') or 'task',
                    list_type='focus' if is_primary else 'backlog',
                    day_index=day_index,
                    scheduled_date=parse_date(day['calendarDate']),
                    program_id=instance.program_id,
                    program_enrollment_id=instance.enrollment_id,
                    order=len(pending),
                    created_at=now,
                    updated_at=now,
                ))
        created = self.task_repo.add_all(pending)
        if created:
            logger.info("created %d tasks for user %s", created, instance.user_id)
        return created


class EnrollmentService:
    """Enroll users in programs and make sure their instance exists."""
    def __init__(self, session: Session):
        self.session = session
        self.program_repo = repositories.ProgramRepository(session)
        self.cohort_repo = repositories.CohortRepository(session)
        self.enrollment_repo = repositories.EnrollmentRepository(session)
        self.user_repo = repositories.UserRepository(session)
        self.instances = ProgramInstanceService(session)

    def enroll(self, program_id: int, user_id: int, organization_id: str, start_date: Optional[date] = None,
               cohort_id: Optional[int] = None) -> Tuple[models.ProgramEnrollment, Optional[int]]:
        """Create an enrollment and ensure its instance.

        Cohort enrollments share the cohort's instance and start on the
        cohort's start date. Returns (enrollment, instance id or None).
        """
        program = self.program_repo.get(program_id)
        if not program or program.organization_id != organization_id:
            raise ProgramNotFound("program not found")
        user = self.user_repo.get(user_id)
        if not user or user.organization_id != organization_id:
            raise NotFound("user not found")
        if self.enrollment_repo.find_open(program_id, user_id):
            raise DuplicateEnrollment("user already has an open enrollment in this program")

        cohort = None
        if cohort_id is not None:
            cohort = self.cohort_repo.get(cohort_id)
            if not cohort or cohort.program_id != program_id:
                raise NotFound("cohort not found")
            start_date = cohort.start_date or start_date

        start = start_date or date.today()
        enrollment = self.enrollment_repo.create(models.ProgramEnrollment(
            program_id=program_id,
            organization_id=organization_id,
            user_id=user_id,
            cohort_id=cohort_id,
            status='upcoming' if start > date.today() else 'active',
            start_date=start,
            end_date=cohort.end_date if cohort else None,
        ))

        if cohort is not None:
            instance_id = self.instances.ensure_cohort_instance_exists(program_id, cohort.id, organization_id)
        else:
            instance_id = self.instances.ensure_enrollment_instance_exists(program_id, enrollment.id, organization_id)
        return enrollment, instance_id


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class CoachingDataService:
    """Per-client coaching notes, keyed `organization_id + '_' + client_id`."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.CoachingDataRepository(session)
        self.enrollment_repo = repositories.EnrollmentRepository(session)
        self.program_repo = repositories.ProgramRepository(session)

    @staticmethod
    def doc_id(organization_id: str, client_id: int) -> str:
        return f"{organization_id}_{client_id}"

    def _lookup(self, client_id: int, organization_id: str) -> Optional[models.ClientCoachingData]:
        data = self.repo.get(self.doc_id(organization_id, client_id))
        if data is None:
            # rows written before multi-tenancy are keyed by client id alone
            data = self.repo.get(str(client_id))
        if data is not None and data.organization_id and data.organization_id != organization_id:
            raise AccessDenied("Access denied")
        return data

    def get(self, client_id: int, organization_id: str) -> Optional[models.ClientCoachingData]:
        return self._lookup(client_id, organization_id)

    def _has_individual_program(self, client_id: int, organization_id: str) -> bool:
        for enrollment in self.enrollment_repo.list_open_for_user(client_id, organization_id):
            program = self.program_repo.get(enrollment.program_id)
            if program and program.type == 'individual':
                return True
        return False

    def update(self, client_id: int, organization_id: str, coach_id: int, patch: Dict[str, Any],
               can_view_all: bool = False) -> models.ClientCoachingData:
        """Apply a coach's edits, creating the document on first write.

        A document is only created for clients with an open 1:1 program
        enrollment. Coaches other than the assigned one are refused unless
        `can_view_all` is set.
        """
        data = self._lookup(client_id, organization_id)
        now = _utcnow()
        if data is None:
            if not self._has_individual_program(client_id, organization_id):
                raise NotFound("Client not found")
            data = models.ClientCoachingData(
                id=self.doc_id(organization_id, client_id),
                user_id=client_id,
                organization_id=organization_id,
                coach_id=coach_id,
                start_date=now.date(),
                next_call={'datetime': None, 'timezone': 'America/New_York', 'location': 'Chat'},
            )
            coaching_logger.info("created coaching data %s", data.id)
        elif not can_view_all and data.coach_id and data.coach_id != coach_id:
            raise AccessDenied("Access denied")
        if data.organization_id is None:
            # legacy rows become readable by this organization only
            data.organization_id = organization_id
            coaching_logger.info("stamped legacy coaching data %s with organization %s", data.id, organization_id)

        stamp = now.isoformat()
        if patch.get('coaching_plan'):
            data.coaching_plan = patch['coaching_plan']
        if isinstance(patch.get('next_call'), dict):
            data.next_call = {**(data.next_call or {}), **patch['next_call']}
        if patch.get('chat_channel_id') is not None:
            data.chat_channel_id = patch['chat_channel_id']
        if isinstance(patch.get('focus_areas'), list):
            data.focus_areas = list(patch['focus_areas'])
        if isinstance(patch.get('action_items'), list):
            data.action_items = [{
                'id': item.get('id') or _new_id('action'),
                'text': item.get('text') or '',
                'completed': bool(item.get('completed')),
                'completedAt': item.get('completedAt'),
                'createdAt': item.get('createdAt') or stamp,
            } for item in patch['action_items']]
        if isinstance(patch.get('session_history'), list):
            data.session_history = [{
                'id': s.get('id') or _new_id('session'),
                'date': s.get('date') or now.date().isoformat(),
                'title': s.get('title') or 'Coaching Session',
                'summary': s.get('summary') or '',
                'takeaways': s.get('takeaways') or [],
                'createdAt': s.get('createdAt') or stamp,
                'updatedAt': stamp,
            } for s in patch['session_history']]
        if isinstance(patch.get('resources'), list):
            data.resources = [{
                'id': r.get('id') or _new_id('resource'),
                'title': r.get('title') or 'Resource',
                'url': r.get('url') or '',
                'description': r.get('description'),
                'createdAt': r.get('createdAt') or stamp,
            } for r in patch['resources']]
        if isinstance(patch.get('private_notes'), list):
            data.private_notes = [{
                'sessionId': n.get('sessionId') or _new_id('note'),
                'notes': n.get('notes') or '',
                'plannedTopics': n.get('plannedTopics'),
                'tags': n.get('tags') or [],
                'createdAt': n.get('createdAt') or stamp,
                'updatedAt': stamp,
            } for n in patch['private_notes']]
        data.updated_at = now
        return self.repo.save(data)
