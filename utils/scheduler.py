"""
Scheduled Tasks Module
Background sweeps: offline detection, command expiry and purge,
campaign status refresh and emergency expiry
"""
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
import logging

logger = logging.getLogger(__name__)
scheduler = None


def offline_sweep_task(app):
    """
    Flip devices silent for longer than the liveness window to offline
    Runs every OFFLINE_SWEEP_INTERVAL_SECONDS (default 60)
    """
    with app.app_context():
        from utils.liveness import mark_offline_sweep

        try:
            count = mark_offline_sweep(app.config.get('DEVICE_TIMEOUT_MINUTES', 5))
            logger.debug(f"Offline sweep completed: {count} device(s) marked offline")
        except Exception as e:
            from models import db
            db.session.rollback()
            logger.error(f"Error in offline sweep task: {e}")


def command_expiry_task(app):
    """Mark pending and delivered commands past their TTL as expired"""
    with app.app_context():
        from utils.command_queue import expire_stale_commands

        try:
            expire_stale_commands()
        except Exception as e:
            from models import db
            db.session.rollback()
            logger.error(f"Error in command expiry task: {e}")


def command_purge_task(app):
    """
    Delete terminal commands older than the retention period
    Runs nightly at COMMAND_CLEANUP_HOUR
    """
    with app.app_context():
        from utils.command_queue import purge_old_commands

        try:
            deleted = purge_old_commands(app.config.get('COMMAND_RETENTION_DAYS', 30))
            logger.info(f"Command purge completed: {deleted} removed")
        except Exception as e:
            from models import db
            db.session.rollback()
            logger.error(f"Error in command purge task: {e}")


def campaign_status_task(app):
    """Keep stored campaign statuses in line with their windows"""
    with app.app_context():
        from utils.campaigns import update_campaign_statuses

        try:
            update_campaign_statuses()
        except Exception as e:
            from models import db
            db.session.rollback()
            logger.error(f"Error in campaign status task: {e}")


def emergency_expiry_task(app):
    """Clear emergency overrides whose duration has elapsed"""
    with app.app_context():
        from utils.content_service import clear_expired_emergencies

        try:
            clear_expired_emergencies()
        except Exception as e:
            from models import db
            db.session.rollback()
            logger.error(f"Error in emergency expiry task: {e}")


def init_scheduler(app):
    """
    Initialize and start the background scheduler

    Args:
        app: Flask application instance
    """
    global scheduler

    if not app.config.get('SCHEDULER_ENABLED', True):
        logger.info("Scheduler disabled by configuration")
        return

    if scheduler is not None:
        logger.warning("Scheduler already initialized")
        return

    try:
        scheduler = BackgroundScheduler()

        sweep_seconds = app.config.get('OFFLINE_SWEEP_INTERVAL_SECONDS', 60)
        scheduler.add_job(
            func=offline_sweep_task,
            trigger=IntervalTrigger(seconds=sweep_seconds),
            args=[app],
            id='offline_sweep',
            name='Device offline sweep',
            replace_existing=True,
            max_instances=1
        )
        logger.info(f"Offline sweep started - every {sweep_seconds}s")

        scheduler.add_job(
            func=command_expiry_task,
            trigger=IntervalTrigger(minutes=5),
            args=[app],
            id='command_expiry',
            name='Expire stale commands',
            replace_existing=True
        )

        cleanup_hour = app.config.get('COMMAND_CLEANUP_HOUR', 3)
        scheduler.add_job(
            func=command_purge_task,
            trigger=CronTrigger(hour=cleanup_hour, minute=0),
            args=[app],
            id='command_purge',
            name='Purge old commands',
            replace_existing=True
        )

        scheduler.add_job(
            func=campaign_status_task,
            trigger=IntervalTrigger(minutes=app.config.get('CAMPAIGN_STATUS_INTERVAL_MINUTES', 5)),
            args=[app],
            id='campaign_status',
            name='Campaign status refresh',
            replace_existing=True
        )

        scheduler.add_job(
            func=emergency_expiry_task,
            trigger=CronTrigger(minute='*'),
            args=[app],
            id='emergency_expiry',
            name='Emergency expiry',
            replace_existing=True
        )

        scheduler.start()
        logger.info("Scheduler started successfully")

    except Exception as e:
        logger.error(f"Failed to initialize scheduler: {e}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully"""
    global scheduler

    if scheduler is not None:
        try:
            scheduler.shutdown(wait=False)
            logger.info("Scheduler shut down")
        except Exception as e:
            logger.error(f"Error shutting down scheduler: {e}")
        scheduler = None
