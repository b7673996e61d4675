# orderflow/celery_worker.py
from celery import Celery

from orderflow.utils.settings import CELERY_BROKER_URL, CELERY_RESULT_BACKEND, SWEEP_INTERVAL_SECONDS

celery_app = Celery(
    "orderflow",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# tasks live outside this module; list them so the worker registers them
celery_app.conf.imports = (
    "orderflow.tasks.expire",
    "orderflow.services.notification_service",
)

celery_app.conf.beat_schedule = {
    "sweep-expired-orders": {
        "task": "orderflow.tasks.expire.sweep_expired_orders_task",
        "schedule": SWEEP_INTERVAL_SECONDS,
    },
}

celery_app.conf.timezone = "UTC"
