"""Process-local store backend."""
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional

from talentflow.errors import ConcurrentTransitionError
from talentflow.models.approval import ApprovalFlow, ApprovalRequest
from talentflow.models.job import FailedInvocation, ScheduledJob
from talentflow.models.rule import AutomationRule
from talentflow.models.status import StatusTransitionRecord
from talentflow.stores.base import ApprovalStore, FailureLog, JobStore, RuleStore, StatusHistoryStore


class MemoryStatusHistoryStore(StatusHistoryStore):

    def __init__(self):
        self._records: Dict[str, List[StatusTransitionRecord]] = defaultdict(list)

    async def append(self, record):
        records = self._records[record.candidate_id]
        if record.sequence != len(records) + 1:
            raise ConcurrentTransitionError(
                f"History for candidate {record.candidate_id} already has sequence {record.sequence}"
            )
        records.append(record)

    async def history(self, candidate_id):
        return list(self._records.get(candidate_id, []))

    async def latest(self, candidate_id):
        records = self._records.get(candidate_id)
        return records[-1] if records else None

    async def latest_all(self):
        return [records[-1] for records in self._records.values() if records]


class MemoryRuleStore(RuleStore):

    def __init__(self):
        self._rules: Dict[str, AutomationRule] = {}

    async def load_all(self):
        return sorted(self._rules.values(), key=lambda r: r.created_at)

    async def save(self, rule):
        self._rules[rule.id] = rule.model_copy(deep=True)

    async def delete(self, rule_id):
        return self._rules.pop(rule_id, None) is not None


class MemoryApprovalStore(ApprovalStore):

    def __init__(self):
        self._requests: Dict[str, ApprovalRequest] = {}
        self._flows: Dict[str, ApprovalFlow] = {}

    async def get(self, request_id):
        request = self._requests.get(request_id)
        return request.model_copy(deep=True) if request else None

    async def insert(self, request):
        self._requests[request.id] = request.model_copy(deep=True)

    async def save(self, request):
        stored = self._requests.get(request.id)
        if stored is None or stored.version != request.version:
            return False
        request.version += 1
        self._requests[request.id] = request.model_copy(deep=True)
        return True

    async def list(self, status=None, candidate_id=None):
        return [
            r.model_copy(deep=True)
            for r in sorted(self._requests.values(), key=lambda r: r.requested_at)
            if (status is None or r.status == status)
            and (candidate_id is None or r.candidate_id == candidate_id)
        ]

    async def get_flow(self, flow_id):
        flow = self._flows.get(flow_id)
        return flow.model_copy(deep=True) if flow else None

    async def save_flow(self, flow):
        self._flows[flow.id] = flow.model_copy(deep=True)

    async def delete_flow(self, flow_id):
        return self._flows.pop(flow_id, None) is not None

    async def list_flows(self):
        return sorted(self._flows.values(), key=lambda f: f.created_at)


class MemoryJobStore(JobStore):

    def __init__(self):
        self._jobs: Dict[str, ScheduledJob] = {}
        self._markers: Dict[str, Optional[datetime]] = {}

    async def add(self, job):
        if job.key in self._jobs:
            return False
        self._jobs[job.key] = job.model_copy()
        return True

    async def put(self, job):
        self._jobs[job.key] = job.model_copy()

    async def remove(self, key):
        return self._jobs.pop(key, None) is not None

    async def claim_due(self, now: datetime, lease_until: datetime, limit: int = 100):
        due = sorted(
            (
                job for job in self._jobs.values()
                if job.due_at <= now and (job.claimed_until is None or job.claimed_until <= now)
            ),
            key=lambda job: (job.due_at, job.created_at),
        )[:limit]
        for job in due:
            job.claimed_until = lease_until
        return [job.model_copy() for job in due]

    async def complete(self, job):
        stored = self._jobs.get(job.key)
        if stored is None or stored.attempt != job.attempt or stored.claimed_until != job.claimed_until:
            return False
        del self._jobs[job.key]
        return True

    async def pending(self, candidate_id=None):
        return sorted(
            (j.model_copy() for j in self._jobs.values() if candidate_id is None or j.candidate_id == candidate_id),
            key=lambda job: job.due_at,
        )

    async def claim_marker(self, marker, now, expires_at=None):
        expired = [m for m, until in self._markers.items() if until is not None and until <= now]
        for m in expired:
            del self._markers[m]
        if marker in self._markers:
            return False
        self._markers[marker] = expires_at
        return True

    def marker_count(self) -> int:
        return len(self._markers)


class MemoryFailureLog(FailureLog):

    def __init__(self):
        self._failures: List[FailedInvocation] = []

    async def record(self, failure):
        self._failures.append(failure)

    async def list(self, limit=100, candidate_id=None):
        failures = [f for f in reversed(self._failures) if candidate_id is None or f.candidate_id == candidate_id]
        return failures[:limit]
