"""
Configuration management for the HeartID core.

This module handles all configuration loading from environment variables
and .env files. Process-wide settings (logging, template store location)
are read once at import; security policy variables are re-read on every
call to ``read_policy_environment`` so that each enrollment or
authentication session loads the policy exactly once.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .constants import (
    DEFAULT_SECURITY_LEVEL,
    MAX_ATTEMPTS,
    MAX_CAPTURE_SECONDS,
    MIN_CAPTURE_SECONDS,
    MIN_QUALITY_SCORE,
    MIN_SAMPLES,
    QUICK_CHECK_MIN_SAMPLES,
    SESSION_TIMEOUT_SECONDS,
)
from .exceptions import ConfigurationError

# Load environment variables from .env file if it exists
load_dotenv()

# =============================================================================
# Base Paths
# =============================================================================
BASE_DIR: Path = Path(__file__).resolve().parent.parent

PROJECT_ROOT: Path = BASE_DIR.parent

# Directory of the file-backed template store used by the CLI
TEMPLATE_STORE_PATH: Path = Path(
    os.getenv("HEARTID_TEMPLATE_STORE", str(PROJECT_ROOT / "data" / "templates"))
)

# =============================================================================
# Logging Configuration
# =============================================================================
# Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# Render log events as JSON instead of the console renderer
STRUCTURED_LOGGING: bool = os.getenv("STRUCTURED_LOGGING", "true").lower() == "true"

# =============================================================================
# Development and Debugging Configuration
# =============================================================================
DEBUG_MODE: bool = os.getenv("DEBUG_MODE", "false").lower() == "true"


# =============================================================================
# Template Sealing
# =============================================================================
# Environment variable holding the passphrase the CLI derives its sealing key from
PASSPHRASE_ENV_VAR: str = "HEARTID_PASSPHRASE"


def get_template_passphrase() -> str:
    """
    Read the template sealing passphrase from the environment.

    Raises
    ------
    ConfigurationError
        If the passphrase is not set.
    """
    passphrase = os.getenv(PASSPHRASE_ENV_VAR, "")
    if not passphrase:
        raise ConfigurationError(
            f"{PASSPHRASE_ENV_VAR} must be set to seal and open templates",
            config_key=PASSPHRASE_ENV_VAR,
        )
    return passphrase


# =============================================================================
# Security Policy Configuration
# =============================================================================
def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be an integer", config_key=name, config_value=raw
        )


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(
            f"{name} must be a number", config_key=name, config_value=raw
        )


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_thresholds(name: str) -> Optional[Dict[str, Any]]:
    raw = os.getenv(name)
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"{name} must be a JSON object: {e}", config_key=name, config_value=raw
        )
    if not isinstance(parsed, dict):
        raise ConfigurationError(
            f"{name} must be a JSON object", config_key=name, config_value=raw
        )
    return parsed


def read_policy_environment() -> Dict[str, Any]:
    """
    Read the security policy variables from the environment.

    Returns
    -------
    dict
        Raw policy values keyed by ``SecurityPolicy`` field name.

    Raises
    ------
    ConfigurationError
        If a variable cannot be parsed.
    """
    return {
        "min_samples": _env_int("HEARTID_MIN_SAMPLES", MIN_SAMPLES),
        "quick_check_min_samples": _env_int(
            "HEARTID_QUICK_CHECK_MIN_SAMPLES", QUICK_CHECK_MIN_SAMPLES
        ),
        "min_quality_score": _env_float("HEARTID_MIN_QUALITY_SCORE", MIN_QUALITY_SCORE),
        "max_attempts": _env_int("HEARTID_MAX_ATTEMPTS", MAX_ATTEMPTS),
        "session_timeout_seconds": _env_float(
            "HEARTID_SESSION_TIMEOUT_SECONDS", SESSION_TIMEOUT_SECONDS
        ),
        "default_security_level": os.getenv(
            "HEARTID_SECURITY_LEVEL", DEFAULT_SECURITY_LEVEL
        ).lower(),
        "min_capture_seconds": _env_float(
            "HEARTID_MIN_CAPTURE_SECONDS", MIN_CAPTURE_SECONDS
        ),
        "max_capture_seconds": _env_float(
            "HEARTID_MAX_CAPTURE_SECONDS", MAX_CAPTURE_SECONDS
        ),
        "lockout_enabled": _env_bool("HEARTID_LOCKOUT_ENABLED", True),
        "level_thresholds": _env_thresholds("HEARTID_LEVEL_THRESHOLDS"),
    }


# =============================================================================
# Configuration Validation
# =============================================================================
def validate_configuration() -> bool:
    """
    Validate the current configuration settings.

    Returns
    -------
    bool
        True if configuration is valid.

    Raises
    ------
    ConfigurationError
        If any configuration parameter is invalid.
    """
    errors = []

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if LOG_LEVEL not in valid_log_levels:
        errors.append(f"LOG_LEVEL must be one of {valid_log_levels}")

    policy = read_policy_environment()

    if policy["min_samples"] < 1:
        errors.append("HEARTID_MIN_SAMPLES must be at least 1")

    if not 1 <= policy["quick_check_min_samples"] <= policy["min_samples"]:
        errors.append(
            "HEARTID_QUICK_CHECK_MIN_SAMPLES must be between 1 and HEARTID_MIN_SAMPLES"
        )

    if not 0.0 <= policy["min_quality_score"] <= 1.0:
        errors.append("HEARTID_MIN_QUALITY_SCORE must be between 0.0 and 1.0")

    if policy["max_attempts"] < 1:
        errors.append("HEARTID_MAX_ATTEMPTS must be at least 1")

    if policy["session_timeout_seconds"] <= 0:
        errors.append("HEARTID_SESSION_TIMEOUT_SECONDS must be positive")

    if not 0 < policy["min_capture_seconds"] <= policy["max_capture_seconds"]:
        errors.append("Capture duration bounds must satisfy 0 < min <= max")

    if errors:
        raise ConfigurationError(
            "Configuration validation failed:\n"
            + "\n".join(f"- {error}" for error in errors)
        )

    return True


def get_config_summary() -> dict:
    """
    Get a summary of the current configuration.

    Returns
    -------
    dict
        Dictionary containing key configuration parameters.
    """
    return {
        "template_store": str(TEMPLATE_STORE_PATH),
        "policy": read_policy_environment(),
        "logging": {
            "level": LOG_LEVEL,
            "structured": STRUCTURED_LOGGING,
        },
        "debug_mode": DEBUG_MODE,
    }
