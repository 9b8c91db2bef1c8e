"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
programs, cohorts, enrollments, instances, tasks, coaching data).
Repositories return SQLModel objects and perform commits/refreshes
where appropriate.
"""

from datetime import datetime, timezone
from typing import List, Optional
from sqlmodel import Session, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.attributes import flag_modified
from . import models


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_by_username(self, username: str) -> Optional[models.User]:
        """Return a `User` by username or `None` if not found."""
        stmt = select(models.User).where(models.User.username == username)
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)


class ProgramRepository:
    """Programs and their legacy `ProgramWeek` rows."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, program: models.Program) -> models.Program:
        self.session.add(program)
        self.session.commit()
        self.session.refresh(program)
        return program

    def get(self, program_id: int) -> Optional[models.Program]:
        return self.session.get(models.Program, program_id)

    def add_week(self, week: models.ProgramWeek) -> models.ProgramWeek:
        self.session.add(week)
        self.session.commit()
        self.session.refresh(week)
        return week

    def list_weeks(self, program_id: int) -> List[models.ProgramWeek]:
        """Legacy template weeks ordered by week number."""
        stmt = (
            select(models.ProgramWeek)
            .where(models.ProgramWeek.program_id == program_id)
            .order_by(models.ProgramWeek.week_number, models.ProgramWeek.id)
        )
        return self.session.exec(stmt).all()


class CohortRepository:
    """CRUD operations for `ProgramCohort` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, cohort: models.ProgramCohort) -> models.ProgramCohort:
        self.session.add(cohort)
        self.session.commit()
        self.session.refresh(cohort)
        return cohort

    def get(self, cohort_id: int) -> Optional[models.ProgramCohort]:
        return self.session.get(models.ProgramCohort, cohort_id)


class EnrollmentRepository:
    """CRUD operations for `ProgramEnrollment` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, enrollment: models.ProgramEnrollment) -> models.ProgramEnrollment:
        self.session.add(enrollment)
        self.session.commit()
        self.session.refresh(enrollment)
        return enrollment

    def get(self, enrollment_id: int) -> Optional[models.ProgramEnrollment]:
        return self.session.get(models.ProgramEnrollment, enrollment_id)

    def find_open(self, program_id: int, user_id: int) -> Optional[models.ProgramEnrollment]:
        """Return the user's `upcoming`/`active` enrollment in a program, if any."""
        stmt = select(models.ProgramEnrollment).where(
            models.ProgramEnrollment.program_id == program_id,
            models.ProgramEnrollment.user_id == user_id,
            models.ProgramEnrollment.status.in_(('upcoming', 'active')),
        )
        return self.session.exec(stmt).first()

    def list_open_for_user(self, user_id: int, organization_id: str) -> List[models.ProgramEnrollment]:
        stmt = select(models.ProgramEnrollment).where(
            models.ProgramEnrollment.user_id == user_id,
            models.ProgramEnrollment.organization_id == organization_id,
            models.ProgramEnrollment.status.in_(('upcoming', 'active')),
        )
        return self.session.exec(stmt).all()

    def list_for_organization(self, organization_id: Optional[str] = None) -> List[models.ProgramEnrollment]:
        stmt = select(models.ProgramEnrollment)
        if organization_id:
            stmt = stmt.where(models.ProgramEnrollment.organization_id == organization_id)
        return self.session.exec(stmt.order_by(models.ProgramEnrollment.id)).all()


class InstanceRepository:
    """Lookups and writes for `ProgramInstance` documents."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, instance_id: int) -> Optional[models.ProgramInstance]:
        """Fetch a live (not soft-deleted) instance by id."""
        instance = self.session.get(models.ProgramInstance, instance_id)
        if instance is None or instance.deleted_at is not None:
            return None
        return instance

    def find_by_enrollment(self, program_id: int, enrollment_id: int) -> Optional[models.ProgramInstance]:
        stmt = select(models.ProgramInstance).where(
            models.ProgramInstance.program_id == program_id,
            models.ProgramInstance.enrollment_id == enrollment_id,
        )
        return self.session.exec(stmt).first()

    def find_by_cohort(self, program_id: int, cohort_id: int) -> Optional[models.ProgramInstance]:
        stmt = select(models.ProgramInstance).where(
            models.ProgramInstance.program_id == program_id,
            models.ProgramInstance.cohort_id == cohort_id,
        )
        return self.session.exec(stmt).first()

    def create(self, instance: models.ProgramInstance) -> Optional[models.ProgramInstance]:
        """Insert an instance; return None if a unique key already exists.

        The caller re-reads the existing row in that case.
        """
        self.session.add(instance)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            return None
        self.session.refresh(instance)
        return instance

    def list(self, organization_id: str, program_id: Optional[int] = None, cohort_id: Optional[int] = None,
             enrollment_id: Optional[int] = None, user_id: Optional[int] = None, type: Optional[str] = None,
             limit: int = 50, offset: int = 0) -> List[models.ProgramInstance]:
        """List live instances of an organization, newest first."""
        stmt = select(models.ProgramInstance).where(
            models.ProgramInstance.organization_id == organization_id,
            models.ProgramInstance.deleted_at == None,  # noqa: E711
        )
        if program_id is not None:
            stmt = stmt.where(models.ProgramInstance.program_id == program_id)
        if cohort_id is not None:
            stmt = stmt.where(models.ProgramInstance.cohort_id == cohort_id)
        if enrollment_id is not None:
            stmt = stmt.where(models.ProgramInstance.enrollment_id == enrollment_id)
        if user_id is not None:
            stmt = stmt.where(models.ProgramInstance.user_id == user_id)
        if type is not None:
            stmt = stmt.where(models.ProgramInstance.type == type)
        stmt = stmt.order_by(models.ProgramInstance.created_at.desc(), models.ProgramInstance.id.desc())
        return self.session.exec(stmt.offset(offset).limit(limit)).all()

    def save(self, instance: models.ProgramInstance, weeks_changed: bool = False) -> models.ProgramInstance:
        """Persist changes; `weeks_changed` flags the JSON column as dirty."""
        instance.updated_at = datetime.now(timezone.utc)
        if weeks_changed:
            flag_modified(instance, 'weeks')
        self.session.add(instance)
        self.session.commit()
        self.session.refresh(instance)
        return instance


class TaskRepository:
    """User tasks synced from instance days."""
    def __init__(self, session: Session):
        self.session = session

    def existing_instance_task_ids(self, user_id: int, instance_id: int, day_index: int) -> set:
        stmt = select(models.Task.instance_task_id).where(
            models.Task.user_id == user_id,
            models.Task.instance_id == instance_id,
            models.Task.day_index == day_index,
        )
        return set(self.session.exec(stmt).all())

    def add_all(self, tasks: List[models.Task]) -> int:
        """Insert tasks in a single commit and return how many were written."""
        if not tasks:
            return 0
        for t in tasks:
            self.session.add(t)
        self.session.commit()
        return len(tasks)

    def list_for_user(self, user_id: int, on_date=None) -> List[models.Task]:
        stmt = select(models.Task).where(models.Task.user_id == user_id)
        if on_date is not None:
            stmt = stmt.where(models.Task.scheduled_date == on_date)
        return self.session.exec(stmt.order_by(models.Task.scheduled_date, models.Task.order)).all()


class CoachingDataRepository:
    """Access to `ClientCoachingData` by org-scoped or legacy key."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, doc_id: str) -> Optional[models.ClientCoachingData]:
        return self.session.get(models.ClientCoachingData, doc_id)

    def save(self, data: models.ClientCoachingData) -> models.ClientCoachingData:
        self.session.add(data)
        self.session.commit()
        self.session.refresh(data)
        return data
