"""Approval request router."""
from fastapi import APIRouter, Depends, HTTPException, status
from typing import List, Optional

from talentflow.config import settings
from talentflow.errors import ApprovalError, FlowNotFoundError
from talentflow.models.approval import ApprovalComment, ApprovalRequest
from talentflow.schemas.approval import (
    AddCommentRequest,
    ApprovalActionResponse,
    CancelApprovalRequest,
    CreateApprovalRequest,
    ResolveStepRequest,
)
from talentflow.services.orchestrator import PipelineOrchestrator
from talentflow.utils.dependencies import Actor, get_current_actor, get_orchestrator, http_error


router = APIRouter(prefix="/api/v1/approvals", tags=["Approvals"])


@router.post("/", response_model=ApprovalRequest, status_code=status.HTTP_201_CREATED)
async def create_approval_request(
    request: CreateApprovalRequest,
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    """Open an approval request from a flow or from inline steps."""
    try:
        return await orchestrator.create_approval(
            requested_by=actor.user_id,
            steps=request.steps or None,
            **request.model_dump(exclude={"steps"}),
        )
    except (ApprovalError, FlowNotFoundError) as e:
        raise http_error(e)


@router.get("/pending", response_model=List[ApprovalRequest])
async def list_pending_approvals(
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    """Pending requests whose current step the caller may resolve."""
    return await orchestrator.approvals.list_pending_for(actor.user_id, actor.role)


@router.get("/", response_model=List[ApprovalRequest])
async def list_approval_requests(
    status_filter: Optional[str] = None,
    candidate_id: Optional[str] = None,
    mine: bool = False,
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    """List approval requests, optionally only those the caller opened."""
    requests = await orchestrator.approvals.list_requests(status=status_filter, candidate_id=candidate_id)
    if mine:
        requests = [r for r in requests if r.requested_by == actor.user_id]
    return requests


@router.get("/{request_id}", response_model=ApprovalRequest)
async def get_approval_request(
    request_id: str,
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    try:
        return await orchestrator.approvals.get(request_id)
    except ApprovalError as e:
        raise http_error(e)


@router.post("/{request_id}/steps/{step_id}/resolve", response_model=ApprovalActionResponse)
async def resolve_approval_step(
    request_id: str,
    step_id: str,
    request: ResolveStepRequest,
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    """Approve or reject the current step. Out-of-turn or unauthorized calls change nothing."""
    try:
        resolution, report = await orchestrator.resolve_approval_step(
            request_id,
            step_id,
            request.decision,
            approver_id=actor.user_id,
            approver_role=actor.role,
            comments=request.comments,
        )
    except ApprovalError as e:
        raise http_error(e)
    return ApprovalActionResponse(request=resolution.request, dispatch=report)


@router.post("/{request_id}/comments", response_model=ApprovalComment, status_code=status.HTTP_201_CREATED)
async def add_approval_comment(
    request_id: str,
    request: AddCommentRequest,
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    try:
        return await orchestrator.approvals.add_comment(
            request_id, actor.user_id, request.comment, user_role=actor.role, type=request.type,
        )
    except ApprovalError as e:
        raise http_error(e)


@router.post("/{request_id}/cancel", response_model=ApprovalActionResponse)
async def cancel_approval_request(
    request_id: str,
    request: CancelApprovalRequest,
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    """Cancel a pending request. Its requester or an operator role may cancel it;
    operators are the only way to cancel requests opened by automation rules."""
    try:
        current = await orchestrator.approvals.get(request_id)
        if current.requested_by != actor.user_id and actor.role not in settings.operator_roles_list:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only the requester or an operator may cancel this request"
            )
        resolution, report = await orchestrator.cancel_approval(request_id, actor.user_id, request.reason)
    except ApprovalError as e:
        raise http_error(e)
    return ApprovalActionResponse(request=resolution.request, dispatch=report)
