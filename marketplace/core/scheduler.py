"""
APScheduler Setup for Background Jobs

Handles settlement reconciliation:
- Replays settlement for captured payments whose bookkeeping did not
  complete (failed, or claimed and abandoned)

Note: Jobs run with database connection from app context.
"""
import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from datetime import datetime

from marketplace.config import get_settings

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()

# Job status tracking
job_status = {
    "last_run": None,
    "reconcile_settlements": {"runs": 0, "last_result": None}
}


async def run_reconcile_settlements():
    """Job: Retry settlement for captured payments left pending or failed."""
    from marketplace.database import Database
    from marketplace.services.payment.settlement import SettlementEngine

    db = Database.db
    if db is None:
        logger.info("[SCHEDULER] Database not connected, skipping reconcile_settlements")
        return

    try:
        engine = SettlementEngine(db)
        result = await engine.replay_unsettled(limit=get_settings().reconcile_batch_size)

        job_status["reconcile_settlements"]["runs"] += 1
        job_status["reconcile_settlements"]["last_result"] = result
        job_status["last_run"] = datetime.utcnow().isoformat()

        if result.get("processed", 0) > 0:
            logger.info("[SCHEDULER] reconcile_settlements: %s payments replayed", result["processed"])

    except Exception:
        logger.exception("[SCHEDULER] reconcile_settlements job failed")


def setup_scheduler(interval_minutes: int = None):
    """
    Configure and setup all scheduled jobs.

    Job Schedule:
    - reconcile_settlements: every RECONCILE_INTERVAL_MINUTES (default 10)
    """
    interval = interval_minutes or get_settings().reconcile_interval_minutes

    # Clear any existing jobs
    scheduler.remove_all_jobs()

    scheduler.add_job(
        run_reconcile_settlements,
        IntervalTrigger(minutes=interval),
        id="reconcile_settlements",
        name="Replay unsettled captured payments",
        replace_existing=True,
        max_instances=1,
        coalesce=True
    )

    logger.info("[SCHEDULER] Settlement reconciliation every %s minutes", interval)


def start_scheduler():
    """Start the scheduler if not already running."""
    if not scheduler.running:
        scheduler.start()
        logger.info("[SCHEDULER] Background scheduler started")


def stop_scheduler():
    """Stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("[SCHEDULER] Background scheduler stopped")


def get_scheduler_status() -> dict:
    """Get current scheduler status for monitoring."""
    return {
        "running": scheduler.running,
        "jobs": [
            {
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None
            }
            for job in scheduler.get_jobs()
        ],
        "job_status": job_status
    }
