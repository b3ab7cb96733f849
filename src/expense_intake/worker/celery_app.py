from __future__ import annotations

from celery import Celery

from expense_intake.core.config import Settings


def _celery_conf(settings: Settings) -> dict:
    return {
        "broker_url": settings.redis_url,
        "result_backend": settings.redis_url,
        "task_always_eager": settings.environment in {"dev", "test"},
        "task_eager_propagates": True,
        "task_track_started": True,
    }


def make_celery(settings: Settings | None = None) -> Celery:
    """
    Build the worker app.

    Without explicit settings the environment is read on first use of
    ``app.conf``, so importing the worker never validates credentials.
    """
    app = Celery("expense_intake")
    if settings is not None:
        app.conf.update(_celery_conf(settings))
    else:
        app.add_defaults(lambda: _celery_conf(Settings()))
    app.autodiscover_tasks(["expense_intake.worker.tasks"])
    return app


celery_app = make_celery()
