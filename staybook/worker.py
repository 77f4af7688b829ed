"""Celery worker and beat schedule.

Two periodic jobs run outside the request path:
- outbox delivery: sends due notifications, with retry and dead-lettering
- no-show sweep: resolves confirmed bookings whose guest never arrived

Each task builds its own engine and services and drives the async service
with asyncio.run, so nothing is shared across task invocations.

Run with:
    celery -A staybook.worker worker --beat --loglevel=info
"""

import asyncio

from celery import Celery
from celery.signals import setup_logging

from staybook.core.config import get_settings
from staybook.core.container import build_services
from staybook.core.database import build_engine, build_session_factory
from staybook.core.logging_config import configure_logging

settings = get_settings()

celery_app = Celery(
    "staybook",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="Asia/Kolkata",
    enable_utc=True,
)

celery_app.conf.beat_schedule = {
    "dispatch-notifications": {
        "task": "staybook.dispatch_notifications",
        "schedule": 30.0,
        "options": {"expires": 25},
    },
    "cancel-no-shows": {
        "task": "staybook.cancel_no_shows",
        "schedule": 15 * 60.0,
    },
}


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    configure_logging(settings)


async def _dispatch_notifications() -> dict:
    engine = build_engine(settings)
    try:
        services = build_services(settings, build_session_factory(engine))
        result = await services.dispatcher.dispatch_due()
        return {"sent": result.sent, "retried": result.retried, "dead": result.dead}
    finally:
        await engine.dispose()


async def _cancel_no_shows() -> int:
    engine = build_engine(settings)
    try:
        services = build_services(settings, build_session_factory(engine))
        return await services.cancellations.cancel_no_shows()
    finally:
        await engine.dispose()


@celery_app.task(name="staybook.dispatch_notifications")
def dispatch_notifications() -> dict:
    return asyncio.run(_dispatch_notifications())


@celery_app.task(name="staybook.cancel_no_shows")
def cancel_no_shows() -> int:
    return asyncio.run(_cancel_no_shows())
