"""
Background jobs (APScheduler).

Only the login-limiter sweep runs here; everything else is request driven.
"""
import atexit
import logging

from apscheduler.schedulers.background import BackgroundScheduler

from licensing.login_limiter import start_sweeper

logger = logging.getLogger(__name__)

job_defaults = {
    'coalesce': True,
    'max_instances': 1,
    'misfire_grace_time': 60,
}


def start_scheduler(app, services):
    """Start the scheduler for this app unless the config disables it."""
    if not app.config.get("LOGIN_SWEEP_ENABLED", True):
        logger.info("Background scheduler disabled by config")
        return None

    scheduler = BackgroundScheduler(job_defaults=job_defaults, timezone="UTC")
    start_sweeper(services.limiter, scheduler, app.config["LOGIN_SWEEP_MINUTES"])
    scheduler.start()
    app.extensions["scheduler"] = scheduler
    atexit.register(shutdown_scheduler, scheduler)
    logger.info("Background job scheduler started")
    return scheduler


def shutdown_scheduler(scheduler):
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Background job scheduler stopped")
