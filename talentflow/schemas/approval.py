"""Approval schemas."""
from pydantic import BaseModel, Field
from typing import Optional, List, Literal, Dict, Any

from talentflow.models.approval import ApprovalRequest, EscalationRule, Priority, RequestType
from talentflow.models.event import DispatchReport
from talentflow.models.rule import ApprovalStepTemplate


class CreateApprovalRequest(BaseModel):
    """Request to open an approval request directly."""
    candidate_id: str
    request_type: RequestType
    requested_value: str
    current_value: Optional[str] = None
    flow_id: Optional[str] = None
    steps: List[ApprovalStepTemplate] = []
    priority: Priority = "medium"
    reason: str = ""
    justification: Optional[str] = None
    metadata: Dict[str, Any] = {}


class ResolveStepRequest(BaseModel):
    decision: Literal["approved", "rejected"]
    comments: Optional[str] = None


class AddCommentRequest(BaseModel):
    comment: str = Field(..., min_length=1)
    type: Literal["comment", "request_changes"] = "comment"


class CancelApprovalRequest(BaseModel):
    reason: Optional[str] = None


class ApprovalActionResponse(BaseModel):
    """An approval request after a change, with what its outcome triggered."""
    request: ApprovalRequest
    dispatch: Optional[DispatchReport] = None


class CreateFlowRequest(BaseModel):
    """Request to define an approval flow."""
    name: str = Field(..., min_length=1)
    description: str = ""
    is_active: bool = True
    request_type: RequestType
    steps: List[ApprovalStepTemplate] = Field(..., min_length=1)
    escalation_rules: List[EscalationRule] = []
