from __future__ import annotations

# Ensure all models are registered before any task runs
# isort: off
import expense_intake.models  # noqa: F401
# isort: on

import asyncio
import time

from sqlalchemy.orm import Session, sessionmaker

from expense_intake.core.config import Settings
from expense_intake.core.db import make_session_factory
from expense_intake.core.logging import (
    bind_log_fields,
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
)
from expense_intake.modules.extraction.service import process_receipt
from expense_intake.worker.celery_app import celery_app

logger = get_logger(__name__)

RETRY_COUNTDOWN_SECONDS = 5

# Built on first use so importing the worker never touches the database.
_worker_state: dict[str, object] = {}


def _worker_resources() -> tuple[Settings, sessionmaker[Session]]:
    if "settings" not in _worker_state:
        settings = Settings()
        _worker_state["settings"] = settings
        _worker_state["session_factory"] = make_session_factory(settings)
    return _worker_state["settings"], _worker_state["session_factory"]  # type: ignore[return-value]


@celery_app.task(name="process_receipt", bind=True, max_retries=2)
def process_receipt_task(self, file_url: str, filename: str | None, user_id: str) -> dict:
    """Run the receipt pipeline for one upload and return the JSON-ready record."""
    task_id = getattr(self.request, "id", None)
    start = time.monotonic()
    with bind_log_fields(celery_task_id=task_id, task_name="process_receipt"):
        log_event(logger, "receipts.task.start", attempt=self.request.retries or 0)
        settings, session_factory = _worker_resources()
        try:
            record = asyncio.run(
                process_receipt(
                    file_url,
                    filename,
                    user_id,
                    settings=settings,
                    session_factory=session_factory,
                )
            )
        except ValueError:
            # Bad input will not get better on retry.
            log_exception(logger, "receipts.task.rejected", duration_ms=monotonic_ms(start))
            raise
        except Exception as exc:
            log_exception(logger, "receipts.task.error", duration_ms=monotonic_ms(start))
            raise self.retry(exc=exc, countdown=RETRY_COUNTDOWN_SECONDS)

        log_event(
            logger,
            "receipts.task.finish",
            extraction_method=record.extraction_method.value,
            needs_review=record.needs_review,
            duration_ms=monotonic_ms(start),
        )
        return record.to_payload()
