"""Approval request, step and flow models."""
from pydantic import BaseModel, Field
from typing import Optional, List, Literal, Dict, Any
from datetime import datetime
import uuid

from talentflow.models.rule import ApprovalStepTemplate


RequestType = Literal["status_change", "job_assignment", "salary_offer", "hire_approval"]
Priority = Literal["low", "medium", "high", "urgent"]


class EscalationRule(BaseModel):
    timeout_hours: float = Field(..., gt=0)
    action: Literal["auto_approve", "escalate_to_manager", "reject", "notify_admin"]
    escalate_to_role: Optional[str] = None


class ApprovalStep(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    approver_type: Literal["user", "role", "any_of"] = "role"
    approver_ref: List[str]
    status: Literal["pending", "approved", "rejected", "skipped"] = "pending"
    order: int
    is_required: bool = True
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    comments: Optional[str] = None
    entered_at: Optional[datetime] = None       # when the step became current
    escalation_level: int = 0                   # escalation rules already applied

    def accepts(self, user_id: str, role: Optional[str]) -> bool:
        """Whether the caller satisfies this step's approver resolution."""
        if self.approver_type == "user":
            return user_id in self.approver_ref
        if self.approver_type == "role":
            return role is not None and role in self.approver_ref
        return user_id in self.approver_ref or (role is not None and role in self.approver_ref)


class ApprovalComment(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    user_id: str
    user_role: Optional[str] = None
    comment: str
    type: Literal["comment", "approval", "rejection", "request_changes", "escalation"] = "comment"
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ApprovalRequest(BaseModel):
    """Ordered multi-step sign-off for a sensitive candidate change."""
    
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    candidate_id: str
    request_type: RequestType
    current_value: Optional[str] = None
    requested_value: str
    requested_by: str
    requested_at: datetime = Field(default_factory=datetime.utcnow)
    priority: Priority = "medium"
    reason: str = ""
    justification: Optional[str] = None
    flow_id: Optional[str] = None
    rule_id: Optional[str] = None
    steps: List[ApprovalStep]
    current_step_index: int = 0
    status: Literal["pending", "approved", "rejected", "cancelled"] = "pending"
    comments: List[ApprovalComment] = Field(default_factory=list)
    escalation_rules: List[EscalationRule] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    resolved_at: Optional[datetime] = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status != "pending"

    @property
    def current_step(self) -> Optional[ApprovalStep]:
        if self.is_terminal or self.current_step_index >= len(self.steps):
            return None
        return self.steps[self.current_step_index]


class ApprovalFlow(BaseModel):
    """Reusable approval flow definition."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str
    description: str = ""
    is_active: bool = True
    request_type: RequestType
    steps: List[ApprovalStepTemplate]
    escalation_rules: List[EscalationRule] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
