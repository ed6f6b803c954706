"""Automation rule models: triggers, conditions and actions."""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Literal, Union, Annotated, Any, get_args
from datetime import datetime, timedelta
import uuid

from talentflow.models.status import CandidateStatus


ComparisonOperator = Literal["greater_than", "less_than", "equals", "contains"]
TimeUnit = Literal["minutes", "hours", "days", "weeks"]

_UNIT_SECONDS = {
    "minutes": 60,
    "hours": 3600,
    "days": 86400,
    "weeks": 604800,
}


def to_timedelta(value: float, unit: str) -> timedelta:
    """Convert a value/unit pair into a timedelta."""
    return timedelta(seconds=value * _UNIT_SECONDS[unit])


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------

class StatusChangeTrigger(BaseModel):
    type: Literal["status_change"] = "status_change"
    from_status: Optional[CandidateStatus] = None   # None matches any
    to_status: Optional[CandidateStatus] = None


class TimeElapsedTrigger(BaseModel):
    """Fires once per stay in a status, after `value` `unit`s in it."""
    type: Literal["time_elapsed"] = "time_elapsed"
    value: float = Field(..., gt=0)
    unit: TimeUnit = "days"

    @property
    def threshold(self) -> timedelta:
        return to_timedelta(self.value, self.unit)


class ScoreThresholdTrigger(BaseModel):
    type: Literal["score_threshold"] = "score_threshold"
    score_type: Literal["overall", "technical", "communication"] = "overall"
    operator: ComparisonOperator = "greater_than"
    threshold: float


class InterviewCompletedTrigger(BaseModel):
    type: Literal["interview_completed"] = "interview_completed"


class ResumeUploadedTrigger(BaseModel):
    type: Literal["resume_uploaded"] = "resume_uploaded"


class ApprovalResolvedTrigger(BaseModel):
    type: Literal["approval_resolved"] = "approval_resolved"
    request_type: Optional[str] = None
    outcome: Optional[Literal["approved", "rejected", "cancelled"]] = None


Trigger = Annotated[
    Union[
        StatusChangeTrigger,
        TimeElapsedTrigger,
        ScoreThresholdTrigger,
        InterviewCompletedTrigger,
        ResumeUploadedTrigger,
        ApprovalResolvedTrigger,
    ],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------

class Condition(BaseModel):
    """Predicate over a candidate snapshot field."""
    field: str                       # "score", "experience_years", "scores.technical", ...
    operator: ComparisonOperator
    value: Any

    @field_validator("operator", mode="before")
    @classmethod
    def normalize_operator(cls, v):
        return {">": "greater_than", "<": "less_than", "=": "equals", "==": "equals"}.get(v, v)


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

class BaseAction(BaseModel):
    delay: Optional[float] = Field(default=None, ge=0)
    delay_unit: TimeUnit = "hours"

    @property
    def delay_delta(self) -> Optional[timedelta]:
        if not self.delay:
            return None
        return to_timedelta(self.delay, self.delay_unit)


class ChangeStatusAction(BaseAction):
    type: Literal["change_status"] = "change_status"
    target: CandidateStatus


class SendNotificationAction(BaseAction):
    type: Literal["send_notification"] = "send_notification"
    template: str
    recipients: List[str] = Field(default_factory=list)   # "candidate", "interviewer", user ids, roles


class ScheduleInterviewAction(BaseAction):
    type: Literal["schedule_interview"] = "schedule_interview"
    interview_type: str = "technical"
    interviewers: List[str] = Field(default_factory=list)
    duration_minutes: int = Field(default=60, gt=0)
    location: Optional[str] = None


class AddNoteAction(BaseAction):
    type: Literal["add_note"] = "add_note"
    text: str


class AssignJobAction(BaseAction):
    type: Literal["assign_job"] = "assign_job"
    job_id: str


class ApprovalStepTemplate(BaseModel):
    """Step definition used by flows and inline approval actions."""
    approver_type: Literal["user", "role", "any_of"] = "role"
    approver_ref: List[str]
    order: int
    is_required: bool = True

    @field_validator("approver_ref", mode="before")
    @classmethod
    def coerce_ref(cls, v):
        if isinstance(v, str):
            return [v]
        return v


class RequestApprovalAction(BaseAction):
    type: Literal["request_approval"] = "request_approval"
    request_type: Literal["status_change", "job_assignment", "salary_offer", "hire_approval"] = "hire_approval"
    requested_value: str
    flow_id: Optional[str] = None
    steps: List[ApprovalStepTemplate] = Field(default_factory=list)
    priority: Literal["low", "medium", "high", "urgent"] = "medium"
    reason: str = ""


Action = Annotated[
    Union[
        ChangeStatusAction,
        SendNotificationAction,
        ScheduleInterviewAction,
        AddNoteAction,
        AssignJobAction,
        RequestApprovalAction,
    ],
    Field(discriminator="type"),
]

# Actions delivered through external collaborators, outside the candidate lock
COLLABORATOR_ACTIONS = (SendNotificationAction, ScheduleInterviewAction, AddNoteAction, AssignJobAction)


class AutomationRule(BaseModel):
    """Automation rule owned by the organization's configuration."""
    
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str
    description: str = ""
    is_active: bool = True
    trigger: Trigger
    conditions: List[Condition] = Field(default_factory=list)
    actions: List[Action] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


def variant_types(tagged) -> tuple:
    """Member classes of a discriminated-union alias such as `Trigger`."""
    union = get_args(tagged)[0]
    return get_args(union)
