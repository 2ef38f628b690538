"""Background maintenance jobs run by APScheduler inside the web process."""
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

import shopadmin
from shopadmin.services.notifications import cleanup_old_notifications, sweep_stock_levels

logger = logging.getLogger(__name__)


def _open_session() -> Session:
    # own session per run: the scheduler thread must not share request-scoped state
    return Session(bind=shopadmin.db_engine, expire_on_commit=False, autoflush=False)


def run_stock_sweep(app) -> int:
    """Hourly scan emitting LOW_STOCK / OUT_OF_STOCK notifications."""
    session = _open_session()
    try:
        created = sweep_stock_levels(
            session,
            threshold=app.config['LOW_STOCK_THRESHOLD'],
            dedup_hours=app.config['NOTIFICATION_DEDUP_HOURS'],
        )
        session.commit()
        return created
    except Exception:
        session.rollback()
        logger.exception('Stock sweep failed')
        return 0
    finally:
        session.close()


def run_notification_cleanup(app) -> int:
    """Daily purge of notifications past the retention window."""
    session = _open_session()
    try:
        deleted = cleanup_old_notifications(session, days=app.config['NOTIFICATION_RETENTION_DAYS'])
        session.commit()
        return deleted
    except Exception:
        session.rollback()
        logger.exception('Notification cleanup failed')
        return 0
    finally:
        session.close()


def build_scheduler(app) -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        run_stock_sweep,
        trigger=CronTrigger(minute=0),
        args=[app],
        id="stock_sweep",
        replace_existing=True,
    )
    scheduler.add_job(
        run_notification_cleanup,
        trigger=CronTrigger(hour=2, minute=0),
        args=[app],
        id="notification_cleanup",
        replace_existing=True,
    )
    return scheduler


def start_scheduler(app) -> BackgroundScheduler:
    scheduler = build_scheduler(app)
    scheduler.start()
    logger.info('Scheduler started: stock sweep hourly, notification cleanup daily at 02:00 UTC')
    return scheduler
