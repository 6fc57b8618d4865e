"""
Background jobs.

Purges expired rate-limit windows every few minutes and, when enabled, sweeps
due subscriptions through the NWC payment processor.
"""
import logging
from datetime import datetime
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from subscriptn.config import get_settings
from subscriptn.database import SessionLocal
from subscriptn.services.payment_processor import process_all_due, summarize
from subscriptn.services.rate_limiter import cleanup_all_limiters

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = BackgroundScheduler()

# Store last payment sweep results
last_payment_sweep = {
    "timestamp": None,
    "summary": {}
}


def run_rate_limit_cleanup():
    """Job function to drop expired rate-limit windows."""
    try:
        purged = cleanup_all_limiters()
        if purged:
            logger.info(f"Rate limit cleanup purged {purged} windows")
    except Exception as e:
        logger.error(f"Error in rate limit cleanup: {e}")


def run_payment_sweep():
    """Job function to pay every due subscription."""
    global last_payment_sweep

    logger.info("Starting scheduled payment sweep...")
    start_time = datetime.now()

    db = SessionLocal()
    try:
        results = process_all_due(db)
        last_payment_sweep = {
            "timestamp": start_time.isoformat(),
            "duration_seconds": (datetime.now() - start_time).total_seconds(),
            "summary": summarize(results)
        }
        logger.info(f"Payment sweep completed: {last_payment_sweep['summary']}")
    except Exception as e:
        logger.error(f"Error in payment sweep: {e}")
        last_payment_sweep = {
            "timestamp": start_time.isoformat(),
            "duration_seconds": (datetime.now() - start_time).total_seconds(),
            "summary": {},
            "error": str(e)
        }
    finally:
        db.close()


def start_scheduler():
    """Start the background scheduler."""
    settings = get_settings()

    if scheduler.running:
        logger.info("Scheduler already running")
        return

    scheduler.add_job(
        run_rate_limit_cleanup,
        IntervalTrigger(minutes=settings.rate_limit_cleanup_minutes),
        id='rate_limit_cleanup',
        name='Rate Limit Cleanup',
        replace_existing=True
    )

    if settings.payment_sweep_enabled:
        scheduler.add_job(
            run_payment_sweep,
            IntervalTrigger(minutes=settings.payment_sweep_minutes),
            id='payment_sweep',
            name='Due Payment Sweep',
            replace_existing=True,
            max_instances=1
        )

    scheduler.start()
    logger.info("Scheduler started with jobs:")
    for job in scheduler.get_jobs():
        logger.info(f"  - {job.name}: {job.trigger}")


def stop_scheduler():
    """Stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")


def get_scheduler_status():
    """Get current scheduler status."""
    jobs = []
    if scheduler.running:
        for job in scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name,
                "trigger": str(job.trigger),
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None
            })

    return {
        "running": scheduler.running,
        "jobs": jobs,
        "last_payment_sweep": last_payment_sweep
    }
