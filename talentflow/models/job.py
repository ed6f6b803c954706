"""Scheduler jobs and the operator failure log."""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
import uuid

from talentflow.models.event import ActionInvocation
from talentflow.models.status import CandidateStatus


class ScheduledJob(BaseModel):
    """A durable timer entry holding one deferred invocation."""
    key: str                                    # ActionInvocation.key
    candidate_id: str
    due_at: datetime
    invocation: ActionInvocation
    guard_status: Optional[CandidateStatus] = None   # must still be current at fire time
    guard_sequence: Optional[int] = None        # history sequence current when issued
    attempt: int = 1
    kind: str = "delayed"                       # "delayed", "outbox" or "retry"
    created_at: datetime = Field(default_factory=datetime.utcnow)
    claimed_until: Optional[datetime] = None    # lease held by the worker firing it


class FailedInvocation(BaseModel):
    """An automated action that will not be attempted again."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    key: str
    rule_id: str
    candidate_id: str
    action_type: str
    error: str
    retryable: bool
    attempts: int
    failed_at: datetime = Field(default_factory=datetime.utcnow)
