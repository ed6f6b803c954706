"""Request dependencies."""
from fastapi import Header, HTTPException, Request, status
from pydantic import BaseModel
from typing import Optional

from talentflow import errors
from talentflow.services.orchestrator import PipelineOrchestrator


class Actor(BaseModel):
    """The user on whose behalf a request is made."""
    user_id: str
    role: Optional[str] = None


async def get_orchestrator(request: Request) -> PipelineOrchestrator:
    """Get the orchestrator built at startup."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Orchestrator not initialized"
        )
    return orchestrator


async def get_current_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Actor:
    """Identify the caller from the headers set by the authenticating gateway."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return Actor(user_id=x_user_id, role=x_user_role)


def http_error(exc: Exception) -> HTTPException:
    """Translate an orchestration error into the matching HTTP response."""
    if isinstance(exc, (errors.RuleNotFoundError, errors.FlowNotFoundError,
                        errors.ApprovalNotFoundError, errors.CandidateNotFoundError)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, errors.ApproverNotAuthorizedError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, errors.InvalidRuleError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        code = status.HTTP_409_CONFLICT
    return HTTPException(status_code=code, detail=str(exc))
