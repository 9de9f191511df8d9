"""Environment variable validation and management."""

import os
import logging
from pathlib import Path
from typing import Dict

logger = logging.getLogger(__name__)

class EnvironmentError(Exception):
    """Raised when required environment variables are missing or invalid."""
    pass

def validate_environment() -> None:
    """Validate environment variables and fill in defaults.

    Raises EnvironmentError if validation fails.
    """
    # Every setting has a usable default; nothing is strictly required.
    required_vars: Dict[str, str] = {}

    defaults = {
        "DB_PATH": "data.db",
        "THRESHOLDS_PATH": str(Path("data") / "thresholds.json"),
        "REPLICA_PATH": "replica.db",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars = {
        "SCORES_API_URL": "Base URL the replica sync script talks to",
        "IMPORT_VERBOSE": "Report per-record errors from bulk imports",
    }

    missing = []
    for var, description in required_vars.items():
        if not os.getenv(var):
            missing.append(f"{var} ({description})")

    if missing:
        raise EnvironmentError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    value = os.getenv("SCORES_API_URL")
    if value and not (value.startswith("http://") or value.startswith("https://")):
        raise EnvironmentError(f"Invalid URL format for SCORES_API_URL: {value}")

    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.debug("Optional environment variable not set: %s (%s)", var, description)

def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}
