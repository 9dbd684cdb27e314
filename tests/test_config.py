"""
Tests for environment-driven settings.
"""

import pytest

from config import DEFAULT_CONFIDENCE_THRESHOLD, load_settings

ENV_KEYS = [
    "PRICE_AUDIT_DATA_DIR", "PRICE_AUDIT_OUTPUT_DIR", "PRICE_AUDIT_CONFIDENCE_THRESHOLD",
    "PRICE_AUDIT_LINE_TOLERANCE", "PRICE_AUDIT_MAX_PARSE_ATTEMPTS",
    "PRICE_AUDIT_MAX_FUZZY_CANDIDATES", "PRICE_AUDIT_LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults():
    settings = load_settings()
    assert settings.data_dir == "data"
    assert settings.confidence_threshold == DEFAULT_CONFIDENCE_THRESHOLD
    assert settings.line_tolerance == 0.5
    assert settings.max_parse_attempts == 5000
    assert settings.log_level == "WARNING"


def test_overrides(monkeypatch):
    monkeypatch.setenv("PRICE_AUDIT_DATA_DIR", "/tmp/snapshot")
    monkeypatch.setenv("PRICE_AUDIT_CONFIDENCE_THRESHOLD", "0.7")
    monkeypatch.setenv("PRICE_AUDIT_MAX_FUZZY_CANDIDATES", "50")
    monkeypatch.setenv("PRICE_AUDIT_LOG_LEVEL", "debug")

    settings = load_settings()
    assert settings.data_dir == "/tmp/snapshot"
    assert settings.confidence_threshold == 0.7
    assert settings.max_fuzzy_candidates == 50
    assert settings.log_level == "DEBUG"


def test_blank_value_uses_default(monkeypatch):
    monkeypatch.setenv("PRICE_AUDIT_OUTPUT_DIR", "  ")
    assert load_settings().output_dir == "output"


@pytest.mark.parametrize("key,value", [
    ("PRICE_AUDIT_LINE_TOLERANCE", "half"),
    ("PRICE_AUDIT_MAX_PARSE_ATTEMPTS", "1.5"),
    ("PRICE_AUDIT_CONFIDENCE_THRESHOLD", "1.5"),
])
def test_invalid_values(monkeypatch, key, value):
    monkeypatch.setenv(key, value)
    with pytest.raises(ValueError, match="PRICE_AUDIT_"):
        load_settings()
