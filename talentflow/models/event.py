"""Pipeline events and the action invocations they produce."""
from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Literal, Union, Annotated
from datetime import datetime
import uuid

from talentflow.models.status import CandidateStatus, StatusTransitionRecord
from talentflow.models.rule import Action


class BaseEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    candidate_id: str
    occurred_at: datetime = Field(default_factory=datetime.utcnow)
    cascade_depth: int = 0           # 0 for events submitted from outside the core


class StatusChangeEvent(BaseEvent):
    type: Literal["status_change"] = "status_change"
    from_status: Optional[CandidateStatus] = None
    to_status: CandidateStatus


class TimeElapsedEvent(BaseEvent):
    """Raised by the periodic scan for one rule whose threshold was crossed."""
    type: Literal["time_elapsed"] = "time_elapsed"
    rule_id: Optional[str] = None
    status: CandidateStatus
    since: datetime
    elapsed_seconds: float


class ScoreUpdatedEvent(BaseEvent):
    type: Literal["score_updated"] = "score_updated"
    score_type: Literal["overall", "technical", "communication"] = "overall"
    value: float


class InterviewCompletedEvent(BaseEvent):
    type: Literal["interview_completed"] = "interview_completed"
    interview_id: Optional[str] = None


class ResumeUploadedEvent(BaseEvent):
    type: Literal["resume_uploaded"] = "resume_uploaded"
    file_id: Optional[str] = None


class ApprovalResolvedEvent(BaseEvent):
    type: Literal["approval_resolved"] = "approval_resolved"
    request_id: str
    request_type: str
    outcome: Literal["approved", "rejected", "cancelled"]


PipelineEvent = Annotated[
    Union[
        StatusChangeEvent,
        TimeElapsedEvent,
        ScoreUpdatedEvent,
        InterviewCompletedEvent,
        ResumeUploadedEvent,
        ApprovalResolvedEvent,
    ],
    Field(discriminator="type"),
]


def status_change_event(record: StatusTransitionRecord, cascade_depth: int = 0) -> StatusChangeEvent:
    """Build the event announcing a written transition."""
    return StatusChangeEvent(
        candidate_id=record.candidate_id,
        occurred_at=record.changed_at,
        from_status=record.from_status,
        to_status=record.to_status,
        cascade_depth=cascade_depth,
    )


class ActionInvocation(BaseModel):
    """One action of a matched rule, bound to the candidate and trigger time."""
    rule_id: str
    rule_name: str = ""
    candidate_id: str
    triggered_at: datetime
    action_index: int
    action: Action
    event_id: Optional[str] = None
    cascade_depth: int = 0
    key: str = ""                    # (rule, candidate, action index, trigger time[, event])

    @model_validator(mode="after")
    def fill_key(self):
        if not self.key:
            self.key = f"{self.rule_id}:{self.candidate_id}:{self.action_index}:{self.triggered_at.isoformat()}"
            if self.event_id:
                self.key += f":{self.event_id}"
        return self


class ExecutionResult(BaseModel):
    """Outcome of executing or issuing one invocation."""
    key: str
    rule_id: str
    candidate_id: str
    action_type: str
    status: Literal["succeeded", "scheduled", "deferred", "failed", "skipped", "cancelled"]
    attempt: int = 1
    error: Optional[str] = None
    retryable: Optional[bool] = None
    record: Optional[StatusTransitionRecord] = None
    approval_request_id: Optional[str] = None
    cascade_event: Optional[StatusChangeEvent] = None


class DispatchReport(BaseModel):
    """Everything one submission caused, cascades included."""
    candidate_id: str
    events: List[str] = Field(default_factory=list)
    matched_rules: List[str] = Field(default_factory=list)
    results: List[ExecutionResult] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    truncated: bool = False          # cascade depth limit reached
