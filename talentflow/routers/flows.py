"""Approval flow router."""
from fastapi import APIRouter, Depends, status
from typing import List

from talentflow.errors import FlowNotFoundError
from talentflow.models.approval import ApprovalFlow
from talentflow.schemas.approval import CreateFlowRequest
from talentflow.services.orchestrator import PipelineOrchestrator
from talentflow.utils.dependencies import Actor, get_current_actor, get_orchestrator, http_error


router = APIRouter(prefix="/api/v1/approval-flows", tags=["Approval Flows"])


@router.post("/", response_model=ApprovalFlow, status_code=status.HTTP_201_CREATED)
async def create_flow(
    request: CreateFlowRequest,
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    """Define an approval flow. Requests copy it when they are opened."""
    return await orchestrator.approvals.create_flow(ApprovalFlow(**request.model_dump()))


@router.get("/", response_model=List[ApprovalFlow])
async def list_flows(
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    return await orchestrator.approvals.list_flows()


@router.get("/{flow_id}", response_model=ApprovalFlow)
async def get_flow(
    flow_id: str,
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    try:
        return await orchestrator.approvals.get_flow(flow_id)
    except FlowNotFoundError as e:
        raise http_error(e)


@router.delete("/{flow_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_flow(
    flow_id: str,
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    try:
        await orchestrator.approvals.delete_flow(flow_id)
    except FlowNotFoundError as e:
        raise http_error(e)
    return None
