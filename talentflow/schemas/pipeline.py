"""Pipeline schemas: manual transitions and externally observed events."""
from pydantic import BaseModel, Field
from typing import Optional, List, Literal, Union, Annotated

from talentflow.models.event import DispatchReport
from talentflow.models.status import CandidateStatus, StageDuration, StatusTransitionRecord


class EnrollRequest(BaseModel):
    status: CandidateStatus = CandidateStatus.FOR_REVIEW
    reason: Optional[str] = None


class TransitionRequest(BaseModel):
    to_status: CandidateStatus
    reason: Optional[str] = None


class TransitionResponse(BaseModel):
    record: StatusTransitionRecord
    dispatch: DispatchReport


class HistoryResponse(BaseModel):
    candidate_id: str
    current_status: CandidateStatus
    history: List[StatusTransitionRecord]
    durations: List[StageDuration]


class InterviewCompletedRequest(BaseModel):
    type: Literal["interview_completed"]
    candidate_id: str
    interview_id: Optional[str] = None


class ResumeUploadedRequest(BaseModel):
    type: Literal["resume_uploaded"]
    candidate_id: str
    file_id: Optional[str] = None


class ScoreUpdatedRequest(BaseModel):
    type: Literal["score_updated"]
    candidate_id: str
    score_type: Literal["overall", "technical", "communication"] = "overall"
    value: float


SubmitEventRequest = Annotated[
    Union[InterviewCompletedRequest, ResumeUploadedRequest, ScoreUpdatedRequest],
    Field(discriminator="type"),
]
