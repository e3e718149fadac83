# quickrank/core/config.py
"""
Configuration module for the quick-rank pipeline client.
Handles environment variables, remote endpoints, polling cadence and logging settings.
"""

import os
from typing import Optional

from dotenv import load_dotenv

# Module-level global state - these persist across imports
_CONFIG_ENV_LOADED: bool = False
_CONFIG_INSTANCE: Optional["Config"] = None


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    """Parse a boolean from a string with a fallback default."""
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _parse_int(
    value: Optional[str],
    default: int,
    *,
    min_value: Optional[int] = None,
    max_value: Optional[int] = None,
) -> int:
    """Parse an integer from a string with optional bounds and fallback default."""
    if value is None:
        return default
    try:
        parsed = int(value.strip())
    except (TypeError, ValueError):
        return default
    if min_value is not None:
        parsed = max(min_value, parsed)
    if max_value is not None:
        parsed = min(max_value, parsed)
    return parsed


def _parse_float(
    value: Optional[str],
    default: float,
    *,
    min_value: Optional[float] = None,
    max_value: Optional[float] = None,
) -> float:
    """Parse a float from a string with optional bounds and fallback default."""
    if value is None:
        return default
    try:
        parsed = float(value.strip())
    except (TypeError, ValueError):
        return default
    if min_value is not None:
        parsed = max(min_value, parsed)
    if max_value is not None:
        parsed = min(max_value, parsed)
    return parsed


def get_config() -> "Config":
    """
    Get or create the configuration instance.
    Ensures .env file is loaded only once.

    Returns:
        Config: Configuration instance
    """
    global _CONFIG_ENV_LOADED, _CONFIG_INSTANCE

    if _CONFIG_INSTANCE is None:
        # Load .env file only if not already loaded
        if not _CONFIG_ENV_LOADED:
            _load_environment_variables()
            _CONFIG_ENV_LOADED = True

        # Create configuration instance
        _CONFIG_INSTANCE = Config()

    return _CONFIG_INSTANCE


def _load_environment_variables() -> None:
    """
    Load environment variables from .env file if it exists.
    CONFIG_ENV_PATH overrides the default location (project root).
    """
    env_override = os.getenv("CONFIG_ENV_PATH")

    if env_override:
        env_path = env_override
    else:
        current_dir = os.path.dirname(os.path.abspath(__file__))
        package_dir = os.path.dirname(current_dir)
        project_dir = os.path.dirname(package_dir)
        env_path = os.path.join(project_dir, ".env")

    if os.path.exists(env_path):
        load_dotenv(env_path)
        print(f"Loaded environment variables from: {env_path}")
    elif env_override:
        print(f"Warning: no .env file found in: {env_path}, default configuration used")


class Config:
    """
    Configuration class that reads from environment variables.
    Assumes .env file has already been loaded.
    """

    def __init__(self):
        """Initialize configuration values."""

        # DEBUG mode
        self.DEBUG: bool = _parse_bool(os.getenv("DEBUG"), default=False)

        # Remote API: base URL of the task, upload and ranking endpoints
        self.API_BASE_URL: str = os.getenv("API_BASE_URL", "http://localhost:3000/api").rstrip(
            "/"
        )

        # Bearer credential sent with every submission (empty means "not signed in")
        self.API_TOKEN: str = os.getenv("API_TOKEN", "").strip()

        # Polling cadence in seconds; batch status payloads are larger and the jobs longer
        self.SINGLE_POLL_INTERVAL_SECONDS: float = _parse_float(
            os.getenv("SINGLE_POLL_INTERVAL_SECONDS"), 1.5, min_value=0.0
        )
        self.BATCH_POLL_INTERVAL_SECONDS: float = _parse_float(
            os.getenv("BATCH_POLL_INTERVAL_SECONDS"), 2.5, min_value=0.0
        )

        # Consecutive transient status failures tolerated before the task is
        # reported as failed (0 for unlimited)
        self.MAX_CONSECUTIVE_POLL_FAILURES: int = _parse_int(
            os.getenv("MAX_CONSECUTIVE_POLL_FAILURES"), 40, min_value=0
        )

        # Overall deadline for one pipeline run in seconds (0 for none)
        self.PIPELINE_DEADLINE_SECONDS: float = _parse_float(
            os.getenv("PIPELINE_DEADLINE_SECONDS"), 0.0, min_value=0.0
        )

        # HTTP timeouts
        self.HTTP_TIMEOUT_SECONDS: float = _parse_float(
            os.getenv("HTTP_TIMEOUT_SECONDS"), 30.0, min_value=1.0
        )
        self.UPLOAD_TIMEOUT_SECONDS: float = _parse_float(
            os.getenv("UPLOAD_TIMEOUT_SECONDS"), 300.0, min_value=1.0
        )

        # Ask the remote side to revoke the active task when a run is cancelled
        self.REVOKE_REMOTE_ON_CANCEL: bool = _parse_bool(
            os.getenv("REVOKE_REMOTE_ON_CANCEL"), default=False
        )

        # Log directory
        self.LOG_DIRECTORY: str = os.getenv("LOG_DIRECTORY", "./logs/")
        # Add slash at end if missing
        if not self.LOG_DIRECTORY.endswith("/"):
            self.LOG_DIRECTORY += "/"

        # Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    def validate_configuration(self) -> None:
        """
        Validate critical configuration settings.

        Raises:
            ValueError: If essential configuration is missing or invalid
        """
        if not self.API_BASE_URL.startswith(("http://", "https://")):
            raise ValueError("API_BASE_URL must use http or https scheme")
        if self.LOG_LEVEL not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid LOG_LEVEL: {self.LOG_LEVEL}")


# Create global config instance using the factory function
config = get_config()
