"""Candidate status and status history models."""
from pydantic import BaseModel, Field
from typing import Optional, Literal
from datetime import datetime
from enum import Enum


class CandidateStatus(str, Enum):
    """Pipeline stages, in pipeline order."""
    FOR_REVIEW = "for_review"
    PAPER_SCREENING = "paper_screening"
    EXAM = "exam"
    HR_INTERVIEW = "hr_interview"
    TECHNICAL_INTERVIEW = "technical_interview"
    FINAL_INTERVIEW = "final_interview"
    FOR_JOB_OFFER = "for_job_offer"
    OFFER_EXTENDED = "offer_extended"
    HIRED = "hired"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"
    ON_HOLD = "on_hold"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    CandidateStatus.HIRED,
    CandidateStatus.REJECTED,
    CandidateStatus.WITHDRAWN,
})


class StatusTransitionRecord(BaseModel):
    """One immutable entry of a candidate's status history."""
    
    model_config = {"frozen": True}
    
    candidate_id: str
    sequence: int                              # 1-based position in the history
    from_status: Optional[CandidateStatus] = None
    to_status: CandidateStatus
    changed_at: datetime
    changed_by: str
    reason: Optional[str] = None
    source: Literal["manual", "automated"] = "manual"
    automation_rule_id: Optional[str] = None


class StageDuration(BaseModel):
    """Time a candidate spent in one status."""
    status: CandidateStatus
    entered_at: datetime
    left_at: Optional[datetime] = None         # None while the stage is current
    duration_seconds: float
    changed_by: str
    source: str
