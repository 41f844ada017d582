"""
APScheduler configuration and job scheduling for Archivist.

Manages:
- The scheduled backup job (cron expression derived from retention settings)
- Manual one-off backup triggers
"""

import logging
from datetime import datetime, timedelta, timezone
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.pool import ThreadPoolExecutor

from archivist import get_settings
from archivist.settings import RetentionConfig
from archivist.backup.executor import execute_backup


logger = logging.getLogger(__name__)

CRON_PATTERNS = {
    'hourly': '0 * * * *',
    'daily': '0 0 * * *',
    'weekly': '0 0 * * 1',
    'monthly': '0 0 1 * *',
}

SCHEDULED_JOB_ID = 'scheduled_backup'

# Global scheduler instance and Flask app reference
scheduler = None
flask_app = None


def cron_expression_for(retention: RetentionConfig) -> str:
    """
    Cron expression backups run on.

    Keep-last runs at backup_frequency; tiered runs at the frequency of the
    first (most recent) plan.
    """
    if retention.strategy == 'tiered' and retention.plans:
        frequency = retention.plans[0].frequency
    else:
        frequency = retention.backup_frequency
    return CRON_PATTERNS[frequency]


def init_scheduler(app):
    """
    Initialize and configure APScheduler.

    Args:
        app: Flask app instance
    """
    global scheduler, flask_app

    if scheduler is not None:
        return scheduler

    # Store Flask app reference for use in background threads
    flask_app = app
    settings = get_settings(app)

    jobstores = {
        'default': MemoryJobStore()
    }

    executors = {
        'default': ThreadPoolExecutor(max_workers=1)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # A tick firing during a running cycle is dropped
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone=settings.timezone
    )

    cron = cron_expression_for(settings.retention)
    scheduler.add_job(
        func=_execute_backup_wrapper,
        args=[False],
        trigger=CronTrigger.from_crontab(cron, timezone=settings.timezone),
        id=SCHEDULED_JOB_ID,
        name='Scheduled Backup',
        replace_existing=True
    )
    logger.info(f"Scheduled backups on '{cron}' ({settings.timezone.key})")

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after Flask app is initialized.
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started successfully (state={scheduler.state})")

        for job in scheduler.get_jobs():
            next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
            logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def _execute_backup_wrapper(one_off: bool = False):
    """
    Run a backup cycle inside the Flask app context.

    Args:
        one_off: True for manual triggers
    """
    global flask_app

    with flask_app.app_context():
        try:
            result = execute_backup(get_settings(flask_app), one_off=one_off)
            logger.info(f"Backup cycle finished with state: {result.state.value}")
        except Exception as e:
            logger.exception(f"Scheduled backup failed: {e}")


def trigger_backup_now():
    """
    Manually trigger a one-off backup immediately.

    Returns:
        ID of the scheduled one-time job
    """
    global scheduler

    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    # 1 second delay to avoid race condition with scheduler startup
    now = datetime.now(timezone.utc)
    job_id = f"manual_{int(now.timestamp())}"
    scheduler.add_job(
        func=_execute_backup_wrapper,
        args=[True],
        trigger=DateTrigger(run_date=now + timedelta(seconds=1)),
        id=job_id,
        name='Manual Backup',
        replace_existing=False
    )

    logger.info(f"Manually triggered backup: {job_id}")
    return job_id


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    global scheduler

    if scheduler is None:
        return []

    jobs = []

    for job in scheduler.get_jobs():
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
            'trigger': str(job.trigger)
        })

    return jobs


def is_scheduler_running() -> bool:
    """Check if scheduler is running."""
    global scheduler
    return scheduler is not None and scheduler.running
