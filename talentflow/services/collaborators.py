"""Clients for the collaborators outside the orchestration core."""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from talentflow.errors import ActionExecutionError

logger = logging.getLogger(__name__)


class CandidateStore(ABC):
    """Read access to candidate records plus the writes automation may make."""

    @abstractmethod
    async def get_candidate_snapshot(self, candidate_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def add_note(self, candidate_id: str, text: str, author: str) -> None:
        ...

    @abstractmethod
    async def assign_job(self, candidate_id: str, job_id: str) -> None:
        ...


def _candidate_filter(candidate_id: str) -> dict:
    if ObjectId.is_valid(candidate_id):
        return {"_id": {"$in": [ObjectId(candidate_id), candidate_id]}}
    return {"_id": candidate_id}


class MongoCandidateStore(CandidateStore):
    """Candidates collection of the recruiting database."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.candidates

    async def get_candidate_snapshot(self, candidate_id):
        doc = await self.collection.find_one(_candidate_filter(candidate_id))
        if not doc:
            return None
        doc.pop("_id", None)
        return doc

    async def _update(self, candidate_id: str, update: dict):
        try:
            result = await self.collection.update_one(_candidate_filter(candidate_id), update)
        except PyMongoError as e:
            raise ActionExecutionError(f"Candidate store unavailable: {e}", retryable=True)
        if result.matched_count == 0:
            raise ActionExecutionError(f"Candidate {candidate_id} not found", retryable=False)

    async def add_note(self, candidate_id, text, author):
        await self._update(candidate_id, {
            "$push": {"notes": {"text": text, "author": author, "created_at": datetime.utcnow()}},
            "$set": {"updated_at": datetime.utcnow()},
        })

    async def assign_job(self, candidate_id, job_id):
        await self._update(candidate_id, {
            "$set": {"job_id": job_id, "updated_at": datetime.utcnow()},
        })


class MemoryCandidateStore(CandidateStore):
    """Process-local candidate records."""

    def __init__(self):
        self.candidates: Dict[str, Dict[str, Any]] = {}

    def put(self, candidate_id: str, **fields):
        self.candidates.setdefault(candidate_id, {}).update(fields)

    async def get_candidate_snapshot(self, candidate_id):
        candidate = self.candidates.get(candidate_id)
        return dict(candidate) if candidate is not None else None

    async def add_note(self, candidate_id, text, author):
        candidate = self.candidates.setdefault(candidate_id, {})
        candidate.setdefault("notes", []).append(
            {"text": text, "author": author, "created_at": datetime.utcnow()}
        )

    async def assign_job(self, candidate_id, job_id):
        self.candidates.setdefault(candidate_id, {})["job_id"] = job_id


class WebhookClient:
    """JSON POST to a collaborator endpoint, with failures classified for retry."""

    def __init__(self, url: str, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def post(self, payload: dict) -> dict:
        async with httpx.AsyncClient(transport=self.transport) as client:
            try:
                response = await client.post(
                    self.url,
                    headers={"Content-Type": "application/json"},
                    json=payload,
                    timeout=self.timeout,
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                code = e.response.status_code
                raise ActionExecutionError(
                    f"{self.url} returned {code}: {e.response.text}",
                    retryable=code >= 500 or code == 429,
                )
            except httpx.HTTPError as e:
                raise ActionExecutionError(f"{self.url} unreachable: {e}", retryable=True)
        if not response.content:
            return {}
        return response.json()


class NotificationService:
    """Hands notifications to the delivery service.

    A 2xx response is the delivery acknowledgment. Without a webhook
    configured, notifications are only logged.
    """

    def __init__(self, webhook_url: str = "", timeout: float = 10.0):
        self.webhook = WebhookClient(webhook_url, timeout) if webhook_url else None

    async def dispatch_notification(self, template: str, recipients: List[str], context: Dict[str, Any]) -> Optional[str]:
        if self.webhook is None:
            logger.info("Notification '%s' to %s (no delivery webhook configured)", template, recipients)
            return None
        ack = await self.webhook.post({
            "template": template,
            "recipients": recipients,
            "context": context,
        })
        return ack.get("delivery_id")


class InterviewScheduler:
    """Books interviews with the scheduling service."""

    def __init__(self, service_url: str = "", timeout: float = 10.0):
        self.webhook = WebhookClient(service_url, timeout) if service_url else None

    async def schedule_interview(self, candidate_id: str, details: Dict[str, Any]) -> Optional[str]:
        if self.webhook is None:
            logger.info("Interview for candidate %s requested (no scheduling service configured): %s",
                        candidate_id, details)
            return None
        booking = await self.webhook.post({"candidate_id": candidate_id, **details})
        return booking.get("interview_id")
