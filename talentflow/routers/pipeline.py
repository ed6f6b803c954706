"""Pipeline router: enrollment, manual transitions, history and external events."""
from fastapi import APIRouter, Body, Depends, status
from typing import List, Optional

from talentflow.errors import OrchestrationError
from talentflow.models.event import (
    DispatchReport,
    InterviewCompletedEvent,
    ResumeUploadedEvent,
    ScoreUpdatedEvent,
)
from talentflow.models.job import FailedInvocation, ScheduledJob
from talentflow.schemas.pipeline import (
    EnrollRequest,
    HistoryResponse,
    InterviewCompletedRequest,
    ResumeUploadedRequest,
    SubmitEventRequest,
    TransitionRequest,
    TransitionResponse,
)
from talentflow.services.orchestrator import PipelineOrchestrator
from talentflow.utils.dependencies import Actor, get_current_actor, get_orchestrator, http_error


router = APIRouter(prefix="/api/v1/pipeline", tags=["Pipeline"])


@router.post("/candidates/{candidate_id}/enroll", response_model=TransitionResponse, status_code=status.HTTP_201_CREATED)
async def enroll_candidate(
    candidate_id: str,
    request: EnrollRequest,
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    """Start tracking a candidate's pipeline status."""
    try:
        record, report = await orchestrator.enroll_candidate(
            candidate_id, actor.user_id, request.status, request.reason,
        )
    except OrchestrationError as e:
        raise http_error(e)
    return TransitionResponse(record=record, dispatch=report)


@router.post("/candidates/{candidate_id}/status", response_model=TransitionResponse)
async def change_candidate_status(
    candidate_id: str,
    request: TransitionRequest,
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    """Manually move a candidate and run the automation it triggers."""
    try:
        record, report = await orchestrator.change_status(
            candidate_id, request.to_status, actor.user_id, request.reason,
        )
    except OrchestrationError as e:
        raise http_error(e)
    return TransitionResponse(record=record, dispatch=report)


@router.get("/candidates/{candidate_id}/history", response_model=HistoryResponse)
async def get_status_history(
    candidate_id: str,
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    """Status history with time spent in each stage."""
    try:
        current = await orchestrator.ledger.current_status(candidate_id)
    except OrchestrationError as e:
        raise http_error(e)
    return HistoryResponse(
        candidate_id=candidate_id,
        current_status=current,
        history=await orchestrator.ledger.history_of(candidate_id),
        durations=await orchestrator.ledger.durations(candidate_id),
    )


@router.get("/candidates/{candidate_id}/jobs", response_model=List[ScheduledJob])
async def list_scheduled_jobs(
    candidate_id: str,
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    """Actions waiting in the scheduler for this candidate."""
    return await orchestrator.scheduler.pending(candidate_id)


@router.post("/events", response_model=DispatchReport, status_code=status.HTTP_202_ACCEPTED)
async def submit_event(
    request: SubmitEventRequest = Body(...),
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    """Submit an event observed outside the core (interview completed, resume uploaded, new score)."""
    now = orchestrator.clock.now()
    if isinstance(request, InterviewCompletedRequest):
        event = InterviewCompletedEvent(
            candidate_id=request.candidate_id, occurred_at=now, interview_id=request.interview_id,
        )
    elif isinstance(request, ResumeUploadedRequest):
        event = ResumeUploadedEvent(
            candidate_id=request.candidate_id, occurred_at=now, file_id=request.file_id,
        )
    else:
        event = ScoreUpdatedEvent(
            candidate_id=request.candidate_id, occurred_at=now,
            score_type=request.score_type, value=request.value,
        )
    return await orchestrator.submit_event(event)


@router.get("/failures", response_model=List[FailedInvocation])
async def list_failed_invocations(
    candidate_id: Optional[str] = None,
    limit: int = 100,
    actor: Actor = Depends(get_current_actor),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator)
):
    """Automated actions that failed permanently, newest first."""
    return await orchestrator.failures.list(limit=limit, candidate_id=candidate_id)
