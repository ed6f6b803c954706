#!/usr/bin/env python3
"""Show the automated actions that failed permanently, newest first."""

import asyncio
import sys
from talentflow.database import Database

async def check_failures(candidate_id=None):
    """Print the operator failure log."""
    await Database.connect()
    try:
        query = {"candidate_id": candidate_id} if candidate_id else {}
        failures = await Database.db.failed_invocations.find(query).sort("failed_at", -1).to_list(length=50)
        
        if not failures:
            print("✅ No failed invocations")
            return
        
        print(f"❌ {len(failures)} failed invocation(s):")
        for failure in failures:
            kind = "retryable" if failure.get("retryable") else "permanent"
            print(f"\n📋 {failure.get('action_type')} for candidate {failure.get('candidate_id')}")
            print(f"   Rule: {failure.get('rule_id')}")
            print(f"   Failed at: {failure.get('failed_at')} after {failure.get('attempts')} attempt(s) ({kind})")
            print(f"   Error: {failure.get('error', 'N/A')[:120]}")
        
        pending = await Database.db.scheduled_jobs.count_documents(query)
        print(f"\n⏳ Jobs still scheduled: {pending}")
    finally:
        await Database.disconnect()

if __name__ == "__main__":
    asyncio.run(check_failures(sys.argv[1] if len(sys.argv) > 1 else None))
