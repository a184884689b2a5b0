"""
jobs/scheduler.py
-----------------
Background jobs service (``insighthub-jobs``): the daily report run and the
email queue drain, scheduled with APScheduler.
"""

import signal

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from insighthub.core.config import settings
from insighthub.core.logging import get_logger
from insighthub.db.base import init_db
from insighthub.db.session import SessionLocal, engine
from insighthub.services.notify import process_email_queue
from insighthub.services.reports import cleanup_old_reports, generate_daily_reports

logger = get_logger(__name__)

DAILY_REPORTS_JOB_ID = "daily_reports"
EMAIL_QUEUE_JOB_ID = "email_queue"


def run_daily_reports() -> dict:
    """Generate every organization's report, then drop expired report files."""
    summary = generate_daily_reports()
    deleted = cleanup_old_reports()
    logger.info(f"Daily reports done: {len(summary['generated'])} generated, "
                f"{len(summary['failed'])} failed, {summary['emailed']} emailed, "
                f"{len(deleted)} old files removed")
    return summary


def run_email_queue() -> dict:
    db = SessionLocal()
    try:
        return process_email_queue(db)
    except Exception as e:
        db.rollback()
        logger.error(f"Email queue processing failed: {e}")
        return {"sent": 0, "retrying": 0, "failed": 0}
    finally:
        db.close()


def build_scheduler(scheduler_cls=BlockingScheduler):
    scheduler = scheduler_cls(timezone="UTC")
    scheduler.add_job(
        func=run_daily_reports,
        trigger=CronTrigger.from_crontab(settings.REPORT_CRON, timezone="UTC"),
        id=DAILY_REPORTS_JOB_ID,
        name="Generate and email daily organization reports",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.add_job(
        func=run_email_queue,
        trigger=IntervalTrigger(seconds=settings.EMAIL_QUEUE_INTERVAL_SECONDS, timezone="UTC"),
        id=EMAIL_QUEUE_JOB_ID,
        name="Send queued emails",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    return scheduler


def main():
    logger.info("[Jobs Service] Initializing...")
    init_db()
    scheduler = build_scheduler()

    def shutdown(signum, frame):
        logger.info(f"[Jobs Service] {signal.Signals(signum).name} received, shutting down...")
        if scheduler.running:
            scheduler.shutdown(wait=False)

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)

    logger.info(f"[Jobs Service] Daily reports scheduled with cron '{settings.REPORT_CRON}' (UTC)")
    try:
        scheduler.start()
    finally:
        engine.dispose()
        logger.info("[Jobs Service] Stopped")


if __name__ == "__main__":
    main()
