"""APScheduler integration for the overdue and expiry sweeps."""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

_scheduler = BackgroundScheduler(timezone="UTC")
_OVERDUE_JOB_ID = "check_overdue_loans"
_EXPIRY_JOB_ID = "check_expired_reservations"


def init_app(app) -> None:
    """Start the scheduler if enabled and register both sweep jobs."""
    if not app.config.get("SCHEDULER_ENABLED"):
        logger.info("Sweep scheduler disabled.")
        return
    if not _scheduler.running:
        _scheduler.start()
    apply_schedule(app)


def apply_schedule(app) -> None:
    """Replace the sweep jobs with ones matching the current config."""
    jobs = (
        (_OVERDUE_JOB_ID, run_overdue_sweep, app.config.get("OVERDUE_SWEEP_MINUTES", 60)),
        (_EXPIRY_JOB_ID, run_expiry_sweep, app.config.get("EXPIRY_SWEEP_MINUTES", 15)),
    )
    for job_id, func, minutes in jobs:
        if _scheduler.get_job(job_id):
            _scheduler.remove_job(job_id)
        if not minutes:
            logger.info("Sweep %s disabled.", job_id)
            continue
        _scheduler.add_job(
            func,
            trigger=IntervalTrigger(minutes=int(minutes)),
            id=job_id,
            args=[app],
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info("Sweep %s scheduled every %s minutes", job_id, minutes)


def run_overdue_sweep(app):
    from library_app.services import loan_service

    with app.app_context():
        try:
            return loan_service().check_overdue_loans()
        except Exception:
            logger.exception("Scheduled overdue sweep failed")
            return None


def run_expiry_sweep(app):
    from library_app.services import reservation_service

    with app.app_context():
        try:
            return reservation_service().check_expired_reservations()
        except Exception:
            logger.exception("Scheduled expiry sweep failed")
            return None
