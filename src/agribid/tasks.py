"""Jobs opcionales de APScheduler (SCHEDULER_ENABLED).

En producción el barrido lo dispara un cron externo contra
``/api/cron/auction-status``; el scheduler en proceso es para despliegues
de una sola instancia y desarrollo.
"""
import logging
from flask import current_app
from .extensions import db
from .repository import AuctionRepository
from .services.approval import send_approval_reminders
from .services.transitioner import sweep
from .side_effects import get_effects
from .utils import utcnow

log = logging.getLogger("agribid.tasks")


def sweep_auctions(app=None):
    """Barrido SCHEDULED -> LIVE -> ENDED (con contexto de app y sesión limpia)."""
    if app is None:
        app = current_app._get_current_object()
    with app.app_context():
        try:
            return sweep(AuctionRepository(db.session), utcnow(), get_effects())
        finally:
            db.session.remove()


def approval_reminders(app=None):
    if app is None:
        app = current_app._get_current_object()
    with app.app_context():
        try:
            days = app.config.get("APPROVAL_DEADLINE_DAYS", 7)
            return send_approval_reminders(AuctionRepository(db.session), utcnow(), get_effects(), days)
        finally:
            db.session.remove()


def schedule_jobs(scheduler, app):
    scheduler.add_job(
        id="sweep_auctions",
        func=sweep_auctions,
        trigger="interval",
        seconds=app.config.get("SWEEP_INTERVAL_SECONDS", 60),
        args=[app],
        coalesce=True,
        max_instances=1,
    )
    scheduler.add_job(
        id="approval_reminders",
        func=approval_reminders,
        trigger="interval",
        hours=6,
        args=[app],
        coalesce=True,
        max_instances=1,
    )
    log.info("tasks:scheduled sweep every %ss", app.config.get("SWEEP_INTERVAL_SECONDS", 60))
