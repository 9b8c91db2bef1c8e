"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Nested, document-shaped data (template weeks, instance weeks/days/tasks,
coaching notes) lives in JSON columns and keeps the camelCase keys of the
instance document format.
"""

from typing import Optional, List
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON, UniqueConstraint
from datetime import datetime, date, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    """A registered coach or client.

    Fields:
    - `username`: unique login name
    - `password_hash`: hashed password string (never store plaintext)
    - `organization_id`: tenant the user belongs to
    - `role`: `coach` or `client`
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    organization_id: str = Field(index=True)
    role: str = Field(default="client")
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class Program(SQLModel, table=True):
    """A program template owned by an organization.

    `weeks` holds the embedded template weeks (each with `weekNumber`,
    `weeklyTasks`, `distribution`, ...). When it is empty the legacy
    `ProgramWeek` rows are used instead.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    organization_id: str = Field(index=True)
    name: str
    type: str = Field(default="individual")
    length_days: Optional[int] = None
    include_weekends: Optional[bool] = None
    daily_focus_slots: Optional[int] = None
    weeks: List[dict] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class ProgramWeek(SQLModel, table=True):
    """Legacy template week stored as its own row."""
    id: Optional[int] = Field(default=None, primary_key=True)
    program_id: int = Field(foreign_key='program.id', index=True)
    week_number: Optional[int] = Field(default=None, index=True)
    module_id: Optional[str] = None
    name: Optional[str] = None
    theme: Optional[str] = None
    description: Optional[str] = None
    distribution: Optional[str] = None
    weekly_prompt: Optional[str] = None
    weekly_tasks: List[dict] = Field(default_factory=list, sa_column=Column(JSON))
    weekly_habits: List[dict] = Field(default_factory=list, sa_column=Column(JSON))


class ProgramCohort(SQLModel, table=True):
    """A group running through a program together from a shared start date."""
    id: Optional[int] = Field(default=None, primary_key=True)
    program_id: int = Field(foreign_key='program.id', index=True)
    organization_id: str = Field(index=True)
    name: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    created_at: datetime = Field(default_factory=_utcnow)


class ProgramEnrollment(SQLModel, table=True):
    """Links a user (and optionally a cohort) to a program."""
    id: Optional[int] = Field(default=None, primary_key=True)
    program_id: int = Field(foreign_key='program.id', index=True)
    organization_id: str = Field(index=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    cohort_id: Optional[int] = Field(default=None, foreign_key='programcohort.id')
    status: str = Field(default="active")
    start_date: Optional[date] = None
    started_at: Optional[date] = None
    end_date: Optional[date] = None
    created_at: datetime = Field(default_factory=_utcnow)


class ProgramInstance(SQLModel, table=True):
    """Materialized, calendar-dated copy of a program.

    Exactly one row exists per enrollment (`type='individual'`) or per
    cohort (`type='cohort'`); the unique constraints enforce it.
    """
    __table_args__ = (
        UniqueConstraint('program_id', 'enrollment_id', name='uq_instance_program_enrollment'),
        UniqueConstraint('program_id', 'cohort_id', name='uq_instance_program_cohort'),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    program_id: int = Field(foreign_key='program.id', index=True)
    organization_id: str = Field(index=True)
    type: str
    cohort_id: Optional[int] = Field(default=None, index=True)
    enrollment_id: Optional[int] = Field(default=None, index=True)
    user_id: Optional[int] = Field(default=None, index=True)
    start_date: date
    end_date: Optional[date] = None
    include_weekends: bool = True
    daily_focus_slots: int = 3
    weeks: List[dict] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    deleted_at: Optional[datetime] = None

    def to_document(self, include_weeks: bool = True) -> dict:
        """Serialize to the camelCase instance document shape."""
        doc = {
            'id': self.id,
            'programId': self.program_id,
            'organizationId': self.organization_id,
            'type': self.type,
            'startDate': self.start_date.isoformat() if self.start_date else None,
            'endDate': self.end_date.isoformat() if self.end_date else None,
            'includeWeekends': self.include_weekends,
            'dailyFocusSlots': self.daily_focus_slots,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }
        if self.type == 'cohort':
            doc['cohortId'] = self.cohort_id
        else:
            doc['enrollmentId'] = self.enrollment_id
            doc['userId'] = self.user_id
        weeks = self.weeks or []
        if include_weeks:
            doc['weeks'] = weeks
        else:
            doc['weekCount'] = len(weeks)
            doc['dayCount'] = sum(len(w.get('days') or []) for w in weeks)
        return doc


class Task(SQLModel, table=True):
    """A user's concrete task created from an individual instance day."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    organization_id: str
    instance_id: int = Field(foreign_key='programinstance.id', index=True)
    instance_task_id: str = Field(index=True)
    label: str
    is_primary: bool = False
    type: str = Field(default="task")
    list_type: str = Field(default="backlog")
    day_index: int = Field(index=True)
    scheduled_date: date
    program_id: int
    program_enrollment_id: Optional[int] = None
    status: str = Field(default="pending")
    order: int = 0
    completed: bool = False
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def to_document(self) -> dict:
        return {
            'id': self.id,
            'instanceId': self.instance_id,
            'instanceTaskId': self.instance_task_id,
            'label': self.label,
            'isPrimary': self.is_primary,
            'type': self.type,
            'listType': self.list_type,
            'dayIndex': self.day_index,
            'date': self.scheduled_date.isoformat(),
            'programId': self.program_id,
            'programEnrollmentId': self.program_enrollment_id,
            'status': self.status,
            'order': self.order,
            'completed': self.completed,
        }


class ClientCoachingData(SQLModel, table=True):
    """A coach's notes, action items and session history for one client.

    `id` is `"{organization_id}_{client_id}"`; rows written before
    multi-tenancy use the bare client id.
    """
    id: str = Field(primary_key=True)
    user_id: int = Field(index=True)
    organization_id: Optional[str] = Field(default=None, index=True)
    coach_id: Optional[int] = None
    coaching_plan: str = Field(default="monthly")
    start_date: Optional[date] = None
    focus_areas: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    action_items: List[dict] = Field(default_factory=list, sa_column=Column(JSON))
    next_call: dict = Field(default_factory=dict, sa_column=Column(JSON))
    session_history: List[dict] = Field(default_factory=list, sa_column=Column(JSON))
    resources: List[dict] = Field(default_factory=list, sa_column=Column(JSON))
    private_notes: List[dict] = Field(default_factory=list, sa_column=Column(JSON))
    chat_channel_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def to_document(self) -> dict:
        return {
            'id': self.id,
            'userId': self.user_id,
            'organizationId': self.organization_id,
            'coachId': self.coach_id,
            'coachingPlan': self.coaching_plan,
            'startDate': self.start_date.isoformat() if self.start_date else None,
            'focusAreas': self.focus_areas or [],
            'actionItems': self.action_items or [],
            'nextCall': self.next_call or {},
            'sessionHistory': self.session_history or [],
            'resources': self.resources or [],
            'privateNotes': self.private_notes or [],
            'chatChannelId': self.chat_channel_id,
            'updatedAt': self.updated_at.isoformat() if self.updated_at else None,
        }
