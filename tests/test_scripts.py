"""Operator script tests against a mocked database."""
from unittest.mock import AsyncMock, MagicMock

from check_failures import check_failures
from talentflow.database import Database


def connected(monkeypatch, failures):
    db = MagicMock()
    db.failed_invocations.find.return_value.sort.return_value.to_list = AsyncMock(return_value=failures)
    db.scheduled_jobs.count_documents = AsyncMock(return_value=0)

    async def connect():
        Database.db = db

    disconnect = AsyncMock()
    monkeypatch.setattr(Database, "connect", connect)
    monkeypatch.setattr(Database, "disconnect", disconnect)
    monkeypatch.setattr(Database, "db", None)
    return db, disconnect


async def test_check_failures_disconnects_when_log_is_empty(monkeypatch, capsys):
    db, disconnect = connected(monkeypatch, [])
    await check_failures()

    assert "No failed invocations" in capsys.readouterr().out
    disconnect.assert_awaited_once()
    db.scheduled_jobs.count_documents.assert_not_called()


async def test_check_failures_lists_failures_for_candidate(monkeypatch, capsys):
    db, disconnect = connected(monkeypatch, [{
        "action_type": "send_notification", "candidate_id": "cand-1", "rule_id": "r1",
        "failed_at": "2024-01-15T09:00:00", "attempts": 3, "retryable": True,
        "error": "delivery service unavailable",
    }])
    await check_failures("cand-1")

    out = capsys.readouterr().out
    assert "1 failed invocation(s)" in out
    assert "send_notification for candidate cand-1" in out
    db.failed_invocations.find.assert_called_once_with({"candidate_id": "cand-1"})
    disconnect.assert_awaited_once()
