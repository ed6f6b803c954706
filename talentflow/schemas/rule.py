"""Automation rule schemas."""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from talentflow.models.rule import Action, Condition, Trigger


class CreateRuleRequest(BaseModel):
    """Request to create an automation rule."""
    name: str = Field(..., min_length=1)
    description: str = ""
    is_active: bool = True
    trigger: Trigger
    conditions: List[Condition] = []
    actions: List[Action] = Field(..., min_length=1)


class UpdateRuleRequest(BaseModel):
    """Request to update an automation rule."""
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    trigger: Optional[Trigger] = None
    conditions: Optional[List[Condition]] = None
    actions: Optional[List[Action]] = Field(None, min_length=1)


class ToggleRuleRequest(BaseModel):
    is_active: bool


class RuleResponse(BaseModel):
    """Response schema for an automation rule."""
    id: str
    name: str
    description: str
    is_active: bool
    trigger: Trigger
    conditions: List[Condition]
    actions: List[Action]
    created_at: datetime
    updated_at: datetime
