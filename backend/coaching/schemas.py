"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable and provide validation for
controller handlers and tests. Bodies are accepted in camelCase (the
shape stored in instance documents) or snake_case.
"""

from datetime import date
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DayTagIn = Union[Literal['auto', 'spread', 'daily'], int, List[int]]
DistributionIn = Literal['spread', 'all_days', 'first_day', 'repeat-daily']


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterIn(CamelModel):
    """Payload for the registration endpoint."""
    username: str
    password: str
    organization_id: str
    role: Literal['client', 'coach', 'super_coach', 'admin'] = 'client'
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class LoginIn(CamelModel):
    username: str
    password: str


class TemplateTaskIn(CamelModel):
    """A weekly task of a template week (or of an instance week edit)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='allow')

    id: Optional[str] = None
    label: str
    type: Optional[str] = None
    is_primary: bool = False
    day_tag: Optional[DayTagIn] = None

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class TemplateWeekIn(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='allow')

    id: Optional[str] = None
    week_number: Optional[int] = None
    module_id: Optional[str] = None
    name: Optional[str] = None
    theme: Optional[str] = None
    description: Optional[str] = None
    weekly_prompt: Optional[str] = None
    distribution: Optional[DistributionIn] = None
    weekly_tasks: List[TemplateTaskIn] = Field(default_factory=list)
    weekly_habits: List[dict] = Field(default_factory=list)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ProgramIn(CamelModel):
    name: str
    type: Literal['individual', 'group'] = 'individual'
    length_days: Optional[int] = Field(default=None, ge=1)
    include_weekends: Optional[bool] = None
    daily_focus_slots: Optional[int] = Field(default=None, ge=1)
    weeks: List[TemplateWeekIn] = Field(default_factory=list)


class CohortIn(CamelModel):
    name: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class EnrollmentIn(CamelModel):
    user_id: int
    start_date: Optional[date] = None
    cohort_id: Optional[int] = None


class InstanceUpdate(CamelModel):
    end_date: Optional[date] = None
    daily_focus_slots: Optional[int] = None


class WeekUpdateIn(CamelModel):
    """Edits to one instance week; `distribute_tasks_now` re-places its tasks."""
    theme: Optional[str] = None
    description: Optional[str] = None
    current_focus: Optional[List[str]] = None
    notes: Optional[List[str]] = None
    weekly_tasks: Optional[List[TemplateTaskIn]] = None
    distribution: Optional[DistributionIn] = None
    distribute_tasks_now: bool = False

    def to_updates(self) -> dict:
        updates = self.model_dump(exclude={'weekly_tasks'})
        if self.weekly_tasks is not None:
            updates['weekly_tasks'] = [t.to_document() for t in self.weekly_tasks]
        return updates


class ActionItemIn(CamelModel):
    id: Optional[str] = None
    text: str
    completed: bool = False
    completed_at: Optional[str] = None
    created_at: Optional[str] = None


class CoachingDataPatch(CamelModel):
    coaching_plan: Optional[str] = None
    focus_areas: Optional[List[str]] = None
    action_items: Optional[List[ActionItemIn]] = None
    next_call: Optional[dict] = None
    session_history: Optional[List[dict]] = None
    resources: Optional[List[dict]] = None
    private_notes: Optional[List[dict]] = None
    chat_channel_id: Optional[str] = None

    def to_patch(self) -> dict:
        patch = self.model_dump(exclude_none=True, exclude={'action_items'})
        if self.action_items is not None:
            patch['action_items'] = [a.model_dump(by_alias=True) for a in self.action_items]
        return patch
