"""Background scheduler for periodic licence database backups."""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(daemon=True)

BACKUP_JOB_ID = "licence_auto_backup"


def init_scheduler(app):
    """Initialize and start the background scheduler."""
    if scheduler.running:
        return

    hours = app.config["BACKUP_INTERVAL_HOURS"]
    scheduler.add_job(
        func=run_auto_backup,
        args=[app],
        trigger="interval",
        hours=hours,
        id=BACKUP_JOB_ID,
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        "Scheduler started: licence backup every %d hour(s) into %s",
        hours,
        app.config["BACKUP_DIR"],
    )


def run_auto_backup(app):
    """Write a snapshot of the licence store to the backup directory.

    Only reads the store; never mutates it.
    """
    logger.info("Running scheduled licence backup...")

    with app.app_context():
        try:
            from web.services import get_licence_store, get_audit_log

            store = get_licence_store()
            path = store.write_backup(
                app.config["BACKUP_DIR"],
                retain=app.config["BACKUP_RETAIN"],
            )
            logger.info("Auto-backup complete: %s", path)

            try:
                get_audit_log().log("auto_backup", str(path), "Scheduled backup", user="system")
            except Exception:
                logger.exception("Failed to log auto-backup to audit")

            return path
        except Exception:
            logger.exception("Scheduled licence backup failed")
            return None


def stop_auto_backup() -> bool:
    """Remove the periodic backup job. Returns False if it was not scheduled."""
    if scheduler.running and scheduler.get_job(BACKUP_JOB_ID):
        scheduler.remove_job(BACKUP_JOB_ID)
        logger.info("Auto-backup stopped")
        return True
    return False


def auto_backup_status() -> dict:
    job = scheduler.get_job(BACKUP_JOB_ID) if scheduler.running else None
    return {
        "running": job is not None,
        "next_run": job.next_run_time.isoformat() if job and job.next_run_time else None,
    }
