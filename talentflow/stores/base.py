"""Store interfaces shared by the MongoDB and in-memory backends."""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from talentflow.models.approval import ApprovalFlow, ApprovalRequest
from talentflow.models.job import FailedInvocation, ScheduledJob
from talentflow.models.rule import AutomationRule
from talentflow.models.status import StatusTransitionRecord


class StatusHistoryStore(ABC):

    @abstractmethod
    async def append(self, record: StatusTransitionRecord) -> None:
        """Append a record; raises ConcurrentTransitionError if its sequence is taken."""

    @abstractmethod
    async def history(self, candidate_id: str) -> List[StatusTransitionRecord]:
        """All records for a candidate, oldest first."""

    @abstractmethod
    async def latest(self, candidate_id: str) -> Optional[StatusTransitionRecord]:
        ...

    @abstractmethod
    async def latest_all(self) -> List[StatusTransitionRecord]:
        """The latest record of every candidate."""


class RuleStore(ABC):

    @abstractmethod
    async def load_all(self) -> List[AutomationRule]:
        ...

    @abstractmethod
    async def save(self, rule: AutomationRule) -> None:
        ...

    @abstractmethod
    async def delete(self, rule_id: str) -> bool:
        ...


class ApprovalStore(ABC):

    @abstractmethod
    async def get(self, request_id: str) -> Optional[ApprovalRequest]:
        ...

    @abstractmethod
    async def insert(self, request: ApprovalRequest) -> None:
        ...

    @abstractmethod
    async def save(self, request: ApprovalRequest) -> bool:
        """Compare-and-set on `version`; bumps it and returns False on conflict."""

    @abstractmethod
    async def list(self, status: Optional[str] = None, candidate_id: Optional[str] = None) -> List[ApprovalRequest]:
        ...

    @abstractmethod
    async def get_flow(self, flow_id: str) -> Optional[ApprovalFlow]:
        ...

    @abstractmethod
    async def save_flow(self, flow: ApprovalFlow) -> None:
        ...

    @abstractmethod
    async def delete_flow(self, flow_id: str) -> bool:
        ...

    @abstractmethod
    async def list_flows(self) -> List[ApprovalFlow]:
        ...


class JobStore(ABC):

    @abstractmethod
    async def add(self, job: ScheduledJob) -> bool:
        """Insert a job unless its key is already pending."""

    @abstractmethod
    async def put(self, job: ScheduledJob) -> None:
        """Insert or replace a job by key."""

    @abstractmethod
    async def remove(self, key: str) -> bool:
        ...

    @abstractmethod
    async def claim_due(self, now: datetime, lease_until: datetime, limit: int = 100) -> List[ScheduledJob]:
        """Lease and return jobs due at or before `now`, oldest first.

        A leased job is not handed out again until `lease_until` passes, so a
        worker that dies mid-fire leaves it to be claimed by the next tick.
        """

    @abstractmethod
    async def complete(self, job: ScheduledJob) -> bool:
        """Delete a fired job, unless it was rescheduled or re-leased since it was claimed."""

    @abstractmethod
    async def pending(self, candidate_id: Optional[str] = None) -> List[ScheduledJob]:
        ...

    @abstractmethod
    async def claim_marker(self, marker: str, now: datetime, expires_at: Optional[datetime] = None) -> bool:
        """Record an execution marker; False if it was already recorded.

        Markers with `expires_at` may be forgotten after that time.
        """


class FailureLog(ABC):

    @abstractmethod
    async def record(self, failure: FailedInvocation) -> None:
        ...

    @abstractmethod
    async def list(self, limit: int = 100, candidate_id: Optional[str] = None) -> List[FailedInvocation]:
        ...
