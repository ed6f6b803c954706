
import asyncio
from motor.motor_asyncio import AsyncIOMotorClient
import os
import sys
from dotenv import load_dotenv

load_dotenv()

MONGODB_URL = os.getenv("MONGODB_URL", "mongodb://localhost:27017")
DB_NAME = os.getenv("MONGODB_DB_NAME", "talentflow")

async def inspect_automation(candidate_id=None):
    client = AsyncIOMotorClient(MONGODB_URL)
    db = client[DB_NAME]
    
    rules = await db.automation_rules.find({}).sort("created_at", 1).to_list(None)
    if not rules:
        print("No automation rules found.")
    
    for rule in rules:
        state = "active" if rule.get("is_active") else "inactive"
        trigger = rule.get("trigger", {})
        print(f"\nRule: {rule.get('name')} ({state})")
        print(f"  Trigger: {trigger.get('type')} {', '.join(f'{k}={v}' for k, v in trigger.items() if k != 'type' and v is not None)}")
        for condition in rule.get("conditions", []):
            print(f"  [IF] {condition.get('field')} {condition.get('operator')} {condition.get('value')}")
        for i, action in enumerate(rule.get("actions", [])):
            delay = f" after {action['delay']} {action.get('delay_unit', 'hours')}" if action.get("delay") else ""
            print(f"  Action {i}: {action.get('type')}{delay}")

    if candidate_id:
        print(f"\nHistory for {candidate_id}:")
        history = await db.status_history.find({"candidate_id": candidate_id}).sort("sequence", 1).to_list(None)
        for record in history:
            rule_note = f" [rule {record.get('automation_rule_id')}]" if record.get("automation_rule_id") else ""
            print(f"  {record.get('sequence')}. {record.get('from_status')} -> {record.get('to_status')} "
                  f"at {record.get('changed_at')} by {record.get('changed_by')}{rule_note}")
        
        jobs = await db.scheduled_jobs.find({"candidate_id": candidate_id}).sort("due_at", 1).to_list(None)
        for job in jobs:
            lease = f" leased until {job['claimed_until']}" if job.get("claimed_until") else ""
            print(f"  [SCHEDULED] {job.get('kind')} {job['invocation']['action']['type']} due {job.get('due_at')} (attempt {job.get('attempt')}){lease}")

    client.close()

if __name__ == "__main__":
    asyncio.run(inspect_automation(sys.argv[1] if len(sys.argv) > 1 else None))
