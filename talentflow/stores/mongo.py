"""MongoDB store backend (motor)."""
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError
from datetime import datetime
from typing import List, Optional

from talentflow.errors import ConcurrentTransitionError
from talentflow.models.approval import ApprovalFlow, ApprovalRequest
from talentflow.models.job import FailedInvocation, ScheduledJob
from talentflow.models.rule import AutomationRule
from talentflow.models.status import StatusTransitionRecord
from talentflow.stores.base import ApprovalStore, FailureLog, JobStore, RuleStore, StatusHistoryStore


def _to_doc(model, _id: str) -> dict:
    doc = model.model_dump()
    doc["_id"] = _id
    return doc


def _from_doc(model_cls, doc: dict):
    doc = dict(doc)
    doc.pop("_id", None)
    return model_cls(**doc)


class MongoStatusHistoryStore(StatusHistoryStore):
    """Status history keyed by (candidate_id, sequence)."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.status_history

    async def append(self, record):
        try:
            await self.collection.insert_one(
                _to_doc(record, f"{record.candidate_id}:{record.sequence:010d}")
            )
        except DuplicateKeyError:
            raise ConcurrentTransitionError(
                f"History for candidate {record.candidate_id} already has sequence {record.sequence}"
            )

    async def history(self, candidate_id):
        docs = await self.collection.find({"candidate_id": candidate_id}).sort("sequence", 1).to_list(length=None)
        return [_from_doc(StatusTransitionRecord, d) for d in docs]

    async def latest(self, candidate_id):
        doc = await self.collection.find_one({"candidate_id": candidate_id}, sort=[("sequence", -1)])
        return _from_doc(StatusTransitionRecord, doc) if doc else None

    async def latest_all(self):
        pipeline = [
            {"$sort": {"candidate_id": 1, "sequence": -1}},
            {"$group": {"_id": "$candidate_id", "doc": {"$first": "$$ROOT"}}},
            {"$replaceRoot": {"newRoot": "$doc"}},
        ]
        docs = await self.collection.aggregate(pipeline).to_list(length=None)
        return [_from_doc(StatusTransitionRecord, d) for d in docs]


class MongoRuleStore(RuleStore):

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.automation_rules

    async def load_all(self):
        docs = await self.collection.find({}).sort("created_at", 1).to_list(length=None)
        return [_from_doc(AutomationRule, d) for d in docs]

    async def save(self, rule):
        await self.collection.replace_one({"_id": rule.id}, _to_doc(rule, rule.id), upsert=True)

    async def delete(self, rule_id):
        result = await self.collection.delete_one({"_id": rule_id})
        return result.deleted_count == 1


class MongoApprovalStore(ApprovalStore):
    """Approval requests with embedded ordered steps, plus flow definitions."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.requests = db.approval_requests
        self.flows = db.approval_flows

    async def get(self, request_id):
        doc = await self.requests.find_one({"_id": request_id})
        return _from_doc(ApprovalRequest, doc) if doc else None

    async def insert(self, request):
        await self.requests.insert_one(_to_doc(request, request.id))

    async def save(self, request):
        expected = request.version
        request.version = expected + 1
        result = await self.requests.replace_one(
            {"_id": request.id, "version": expected},
            _to_doc(request, request.id),
        )
        if result.matched_count == 0:
            request.version = expected
            return False
        return True

    async def list(self, status=None, candidate_id=None):
        query = {}
        if status:
            query["status"] = status
        if candidate_id:
            query["candidate_id"] = candidate_id
        docs = await self.requests.find(query).sort("requested_at", 1).to_list(length=None)
        return [_from_doc(ApprovalRequest, d) for d in docs]

    async def get_flow(self, flow_id):
        doc = await self.flows.find_one({"_id": flow_id})
        return _from_doc(ApprovalFlow, doc) if doc else None

    async def save_flow(self, flow):
        await self.flows.replace_one({"_id": flow.id}, _to_doc(flow, flow.id), upsert=True)

    async def delete_flow(self, flow_id):
        result = await self.flows.delete_one({"_id": flow_id})
        return result.deleted_count == 1

    async def list_flows(self):
        docs = await self.flows.find({}).sort("created_at", 1).to_list(length=None)
        return [_from_doc(ApprovalFlow, d) for d in docs]


class MongoJobStore(JobStore):
    """Scheduled jobs keyed by invocation key, and execution claims."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.jobs = db.scheduled_jobs
        self.claims = db.execution_claims

    async def add(self, job):
        try:
            await self.jobs.insert_one(_to_doc(job, job.key))
        except DuplicateKeyError:
            return False
        return True

    async def put(self, job):
        await self.jobs.replace_one({"_id": job.key}, _to_doc(job, job.key), upsert=True)

    async def remove(self, key):
        result = await self.jobs.delete_one({"_id": key})
        return result.deleted_count == 1

    async def claim_due(self, now: datetime, lease_until: datetime, limit: int = 100):
        claimed = []
        while len(claimed) < limit:
            doc = await self.jobs.find_one_and_update(
                {
                    "due_at": {"$lte": now},
                    "$or": [{"claimed_until": None}, {"claimed_until": {"$lte": now}}],
                },
                {"$set": {"claimed_until": lease_until}},
                sort=[("due_at", 1), ("created_at", 1)],
                return_document=ReturnDocument.AFTER,
            )
            if doc is None:
                break
            claimed.append(_from_doc(ScheduledJob, doc))
        return claimed

    async def complete(self, job):
        result = await self.jobs.delete_one(
            {"_id": job.key, "attempt": job.attempt, "claimed_until": job.claimed_until}
        )
        return result.deleted_count == 1

    async def pending(self, candidate_id=None):
        query = {"candidate_id": candidate_id} if candidate_id else {}
        docs = await self.jobs.find(query).sort("due_at", 1).to_list(length=None)
        return [_from_doc(ScheduledJob, d) for d in docs]

    async def claim_marker(self, marker, now, expires_at=None):
        doc = {"_id": marker, "claimed_at": now}
        if expires_at is not None:
            doc["expires_at"] = expires_at
        try:
            await self.claims.insert_one(doc)
        except DuplicateKeyError:
            return False
        return True


class MongoFailureLog(FailureLog):

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.failed_invocations

    async def record(self, failure):
        await self.collection.insert_one(_to_doc(failure, failure.id))

    async def list(self, limit=100, candidate_id=None):
        query = {"candidate_id": candidate_id} if candidate_id else {}
        docs = await self.collection.find(query).sort("failed_at", -1).to_list(length=limit)
        return [_from_doc(FailedInvocation, d) for d in docs]
