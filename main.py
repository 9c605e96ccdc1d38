import argparse
import json
import time
import schedule
import logging
import sys

from database.config import SessionLocal, get_db_context, init_db
from services.flow_engine import CollaborationFlowEngine
from services.money import CommissionService

# Configure Logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler("collaboration_worker.log")
    ]
)

def run_auto_release_cycle(engine=None):
    logging.info("Starting escrow auto-release cycle...")
    engine = engine or CollaborationFlowEngine(SessionLocal)
    result = engine.run_auto_release()
    if result.success:
        logging.info(f"Cycle complete. {len(result.data['released'])} approved, {len(result.data['failed'])} failed.")
    else:
        logging.error(f"Error in auto-release cycle: {result.error.message}")
    return result

def start_scheduler(hours: int):
    logging.info(f"Starting auto-release scheduler (every {hours} hours)...")
    engine = CollaborationFlowEngine(SessionLocal)
    # Run once immediately
    run_auto_release_cycle(engine)

    schedule.every(hours).hours.do(run_auto_release_cycle, engine)

    while True:
        schedule.run_pending()
        time.sleep(60)

def set_commission(percentage: str, created_by=None):
    with get_db_context() as db:
        setting = CommissionService(db).set_commission(percentage, created_by=created_by)
        logging.info(f"Commission set to {setting.percentage}%")

def print_context(conversation_id: str):
    result = CollaborationFlowEngine(SessionLocal).get_context(conversation_id)
    if result.success:
        print(json.dumps(result.data.model_dump(mode="json"), indent=2))
    else:
        logging.error(f"{result.error.kind}: {result.error.message}")
    return result

def main():
    parser = argparse.ArgumentParser(description="Collaboration Escrow Worker")
    parser.add_argument("--mode", choices=["once", "schedule"], default="schedule", help="Run the auto-release sweep once or on a schedule")
    parser.add_argument("--every-hours", type=int, default=6, help="Hours between scheduled sweeps")
    parser.add_argument("--init-db", action="store_true", help="Create tables and exit")
    parser.add_argument("--set-commission", metavar="PERCENT", help="Activate a new platform commission percentage and exit")
    parser.add_argument("--context", metavar="CONVERSATION_ID", help="Print a conversation snapshot and exit")
    args = parser.parse_args()

    if args.init_db:
        init_db()
    elif args.set_commission:
        set_commission(args.set_commission)
    elif args.context:
        print_context(args.context)
    elif args.mode == "schedule":
        start_scheduler(args.every_hours)
    else:
        run_auto_release_cycle()

if __name__ == "__main__":
    main()
