from __future__ import annotations

import pytest
from pydantic import ValidationError

from expense_intake.core.config import Settings


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_defaults_match_product_tuning():
    s = _settings()
    assert s.openai_model == "gpt-4o"
    assert s.vision_max_tokens == 1000
    assert s.vision_temperature == 0.1
    assert s.confidence_scores == {"high": 0.9, "medium": 0.7, "low": 0.5}
    assert s.review_threshold == 0.72
    assert s.duplicate_window_days == 90
    assert s.fallback_amount_range == (5.0, 50.0)


def test_openai_key_must_look_like_an_openai_key():
    with pytest.raises(ValidationError, match="Invalid OpenAI API key format"):
        _settings(openai_api_key="not-a-key")
    assert _settings(openai_api_key="  ").openai_api_key is None
    assert _settings(openai_api_key=" sk-abc ").openai_api_key == "sk-abc"


def test_default_currency_is_normalized():
    assert _settings(default_currency="eur").default_currency == "EUR"
    with pytest.raises(ValidationError):
        _settings(default_currency="dollars")


def test_confidence_scores_need_every_label():
    with pytest.raises(ValidationError, match="missing labels"):
        _settings(confidence_scores={"high": 0.95})


def test_confidence_score_lookup_defaults_to_low():
    s = _settings(confidence_scores={"high": 0.95, "medium": 0.75, "low": 0.4})
    assert s.confidence_score("high") == 0.95
    assert s.confidence_score("bogus") == 0.4


def test_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("OPENAI_MODEL", "gpt-4o-mini")
    monkeypatch.setenv("DUPLICATE_WINDOW_DAYS", "30")
    s = _settings()
    assert s.openai_model == "gpt-4o-mini"
    assert s.duplicate_window_days == 30
