"""Configuration management using environment variables."""

import os
from dotenv import load_dotenv

from exceptions import ConfigurationError

# Load environment variables from .env file
load_dotenv()


def _get_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be numeric (got {raw!r})", setting_key=key)


def _get_non_negative_float(key: str, default: float) -> float:
    value = _get_float(key, default)
    if value < 0:
        raise ConfigurationError(f"{key} cannot be negative (got {value})", setting_key=key)
    return value


# Database configuration
DB_PATH = os.getenv("DB_PATH", "attribution.db")

# Logging configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "attribution.log")

# Attribution configuration
TIME_DECAY_LAMBDA = _get_non_negative_float("TIME_DECAY_LAMBDA", 0.1)

# Scoring configuration
HIGH_PIPELINE_THRESHOLD = _get_non_negative_float("HIGH_PIPELINE_THRESHOLD", 100000.0)
