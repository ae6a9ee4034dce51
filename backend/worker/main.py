"""
Background worker: runs the billing sweeps on a fixed interval.

    python -m backend.worker.main
"""
import logging
import time
from datetime import datetime, timezone
from typing import Dict, Optional

from supabase import Client

from backend.app import config
from backend.app.database import SB
from backend.app.logging_config import log_error, setup_logging
from backend.tools import billing_sweeps

logger = logging.getLogger(__name__)

ERROR_BACKOFF_SECONDS = 60

JOBS = {
    "payment_deadlines": billing_sweeps.run_payment_deadline_sweep,
    "billing_reminders": billing_sweeps.run_billing_reminders,
}

def run_once(db: Client, now: Optional[datetime] = None) -> Dict[str, Dict[str, int]]:
    """Run every job once; a failing job does not stop the others"""
    now = now or datetime.now(timezone.utc)
    summary = {}
    for name, job in JOBS.items():
        try:
            summary[name] = job(db, now)
        except Exception as e:
            log_error(logger, e, {"job": name})
            summary[name] = {"errors": 1}
    return summary

def run_worker():
    """Main worker loop."""
    setup_logging()
    logger.info(f"Worker started. Running sweeps every {config.WORKER_INTERVAL_SECONDS}s")

    while True:
        try:
            summary = run_once(SB.get())
            logger.info(f"Sweeps finished: {summary}")
            time.sleep(config.WORKER_INTERVAL_SECONDS)
        except Exception as e:
            # Usually a Supabase client that could not be created
            log_error(logger, e, {"job": "worker"})
            time.sleep(ERROR_BACKOFF_SECONDS)

if __name__ == "__main__":
    run_worker()
