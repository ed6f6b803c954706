"""Automation rule router."""
from fastapi import APIRouter, Depends, HTTPException, status
from typing import List

from talentflow.errors import InvalidRuleError, RuleNotFoundError
from talentflow.models.rule import AutomationRule
from talentflow.schemas.rule import (
    CreateRuleRequest,
    RuleResponse,
    ToggleRuleRequest,
    UpdateRuleRequest,
)
from talentflow.services.orchestrator import PipelineOrchestrator
from talentflow.utils.dependencies import Actor, get_current_actor, get_orchestrator, http_error


router = APIRouter(prefix="/api/v1/rules", tags=["Automation Rules"])


def _response(rule: AutomationRule) -> RuleResponse:
    return RuleResponse(**rule.model_dump())


@router.post("/", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    request: CreateRuleRequest,
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    """Create an automation rule. It applies to events dispatched from now on."""
    rule = AutomationRule(**request.model_dump())
    await orchestrator.rules.create(rule)
    return _response(rule)


@router.get("/", response_model=List[RuleResponse])
async def list_rules(
    active_only: bool = False,
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    """List automation rules."""
    return [
        _response(rule)
        for rule in orchestrator.rules.list()
        if rule.is_active or not active_only
    ]


@router.get("/{rule_id}", response_model=RuleResponse)
async def get_rule(
    rule_id: str,
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    try:
        return _response(orchestrator.rules.get(rule_id))
    except RuleNotFoundError as e:
        raise http_error(e)


@router.put("/{rule_id}", response_model=RuleResponse)
async def update_rule(
    rule_id: str,
    request: UpdateRuleRequest,
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    """Update an automation rule. Null fields are left unchanged."""
    changes = {
        field: value
        for field, value in request.model_dump(exclude_unset=True).items()
        if value is not None
    }
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="No fields to update"
        )
    try:
        rule = await orchestrator.rules.update(rule_id, changes)
    except (RuleNotFoundError, InvalidRuleError) as e:
        raise http_error(e)
    return _response(rule)


@router.patch("/{rule_id}/toggle", response_model=RuleResponse)
async def toggle_rule(
    rule_id: str,
    request: ToggleRuleRequest,
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    """Activate or deactivate a rule. Already scheduled actions are left in place."""
    try:
        rule = await orchestrator.rules.toggle(rule_id, request.is_active)
    except RuleNotFoundError as e:
        raise http_error(e)
    return _response(rule)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    rule_id: str,
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    """Delete an automation rule."""
    try:
        await orchestrator.rules.delete(rule_id)
    except RuleNotFoundError as e:
        raise http_error(e)
    return None
