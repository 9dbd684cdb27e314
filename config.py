"""
Runtime settings for the price audit.

Values come from the environment, after a .env file is loaded if
python-dotenv finds one. Everything has a default, so a bare checkout
runs against ./data and writes to ./output.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

# ── Defaults ─────────────────────────────────────────────────────
DEFAULT_CONFIDENCE_THRESHOLD = 0.85
DEFAULT_LINE_TOLERANCE = 0.5        # Same-line tolerance, in layout units
DEFAULT_MAX_PARSE_ATTEMPTS = 5000   # Per-invoice soft limit
DEFAULT_MAX_FUZZY_CANDIDATES = 500  # Above this, candidates are pre-bucketed


def _get_env(key: str, default: str | None = None) -> str | None:
    value = os.getenv(key)
    if value is None:
        return default
    value = value.strip()
    return value or default


def _get_float(key: str, default: float) -> float:
    value = _get_env(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {key} must be a number") from exc


def _get_int(key: str, default: int) -> int:
    value = _get_env(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {key} must be an integer") from exc


@dataclass(frozen=True)
class Settings:
    data_dir: str = "data"
    output_dir: str = "output"
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD
    line_tolerance: float = DEFAULT_LINE_TOLERANCE
    max_parse_attempts: int = DEFAULT_MAX_PARSE_ATTEMPTS
    max_fuzzy_candidates: int = DEFAULT_MAX_FUZZY_CANDIDATES
    log_level: str = "WARNING"


def load_settings() -> Settings:
    """Read settings from the environment (PRICE_AUDIT_* variables)."""
    threshold = _get_float("PRICE_AUDIT_CONFIDENCE_THRESHOLD", DEFAULT_CONFIDENCE_THRESHOLD)
    if not 0.0 <= threshold <= 1.0:
        raise ValueError("PRICE_AUDIT_CONFIDENCE_THRESHOLD must be between 0 and 1")

    return Settings(
        data_dir=_get_env("PRICE_AUDIT_DATA_DIR", "data"),
        output_dir=_get_env("PRICE_AUDIT_OUTPUT_DIR", "output"),
        confidence_threshold=threshold,
        line_tolerance=_get_float("PRICE_AUDIT_LINE_TOLERANCE", DEFAULT_LINE_TOLERANCE),
        max_parse_attempts=_get_int("PRICE_AUDIT_MAX_PARSE_ATTEMPTS", DEFAULT_MAX_PARSE_ATTEMPTS),
        max_fuzzy_candidates=_get_int("PRICE_AUDIT_MAX_FUZZY_CANDIDATES", DEFAULT_MAX_FUZZY_CANDIDATES),
        log_level=_get_env("PRICE_AUDIT_LOG_LEVEL", "WARNING").upper(),
    )
