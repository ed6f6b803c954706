"""Wires the orchestration core from settings."""
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from talentflow.config import Settings
from talentflow.services.action_executor import ActionExecutor
from talentflow.services.approval_workflow import ApprovalWorkflow
from talentflow.services.collaborators import (
    CandidateStore,
    InterviewScheduler,
    MemoryCandidateStore,
    MongoCandidateStore,
    NotificationService,
)
from talentflow.services.orchestrator import PipelineOrchestrator
from talentflow.services.rule_engine import RuleEngine, RuleRepository
from talentflow.services.scheduler import Scheduler
from talentflow.services.status_ledger import StatusLedger
from talentflow.stores import memory, mongo
from talentflow.utils.clock import Clock


async def build_orchestrator(
    settings: Settings,
    db: Optional[AsyncIOMotorDatabase] = None,
    clock: Optional[Clock] = None,
    candidates: Optional[CandidateStore] = None,
    notifications: Optional[NotificationService] = None,
    interviews: Optional[InterviewScheduler] = None,
) -> PipelineOrchestrator:
    """Build the orchestrator on the configured storage backend and load the rule set."""
    clock = clock or Clock()
    if settings.storage_backend == "mongodb":
        if db is None:
            raise RuntimeError("The mongodb storage backend needs a connected database")
        history = mongo.MongoStatusHistoryStore(db)
        rule_store = mongo.MongoRuleStore(db)
        approval_store = mongo.MongoApprovalStore(db)
        job_store = mongo.MongoJobStore(db)
        failures = mongo.MongoFailureLog(db)
        candidates = candidates or MongoCandidateStore(db)
    elif settings.storage_backend == "memory":
        history = memory.MemoryStatusHistoryStore()
        rule_store = memory.MemoryRuleStore()
        approval_store = memory.MemoryApprovalStore()
        job_store = memory.MemoryJobStore()
        failures = memory.MemoryFailureLog()
        candidates = candidates or MemoryCandidateStore()
    else:
        raise ValueError(f"Unknown storage backend '{settings.storage_backend}'")

    timeout = settings.collaborator_timeout_seconds
    ledger = StatusLedger(history, clock)
    rules = RuleRepository(rule_store)
    await rules.load()
    scheduler = Scheduler(job_store, clock, lease_seconds=settings.job_lease_seconds)
    approvals = ApprovalWorkflow(
        approval_store,
        clock,
        default_manager_role=settings.default_manager_role,
        admin_recipients=settings.admin_recipients_list,
    )
    executor = ActionExecutor(
        ledger=ledger,
        approvals=approvals,
        candidates=candidates,
        notifications=notifications or NotificationService(settings.notification_webhook_url, timeout),
        interviews=interviews or InterviewScheduler(settings.interview_service_url, timeout),
        scheduler=scheduler,
        failures=failures,
        clock=clock,
        max_attempts=settings.max_action_attempts,
        retry_base_seconds=settings.retry_base_seconds,
        retry_max_seconds=settings.retry_max_seconds,
        timeout_seconds=timeout,
        claim_retention_hours=settings.execution_claim_retention_hours,
    )
    return PipelineOrchestrator(
        ledger=ledger,
        rules=rules,
        engine=RuleEngine(rules),
        scheduler=scheduler,
        executor=executor,
        approvals=approvals,
        candidates=candidates,
        failures=failures,
        clock=clock,
        max_cascade_depth=settings.max_cascade_depth,
        poll_seconds=settings.scheduler_poll_seconds,
        time_elapsed_scan_seconds=settings.time_elapsed_scan_seconds,
        escalation_scan_seconds=settings.escalation_scan_seconds,
    )
