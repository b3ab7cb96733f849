from __future__ import annotations

import os

import pytest

# Set env before any expense_intake imports (the Celery app reads settings at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")


@pytest.fixture
def settings(tmp_path):
    from expense_intake.core.config import Settings

    return Settings(
        _env_file=None,
        environment="test",
        database_url=f"sqlite:///{tmp_path / 'receipts.db'}",
        openai_api_key="sk-test-key",
        openai_base_url="https://api.openai.test/v1",
    )


@pytest.fixture
def session_factory(settings):
    import expense_intake.models  # noqa: F401
    from expense_intake.core.db import make_session_factory
    from expense_intake.core.models import Base

    factory = make_session_factory(settings)
    engine = factory.kw["bind"]
    Base.metadata.create_all(engine)
    yield factory
    engine.dispose()
