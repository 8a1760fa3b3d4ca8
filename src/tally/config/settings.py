"""Centralized configuration for tally.

Loads configuration from a .env file and the environment and provides
typed access to settings.

- A fresh checkout boots with no configuration at all (defaults)
- Invalid values produce clear errors
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from ..core.time import parse_utc_iso8601
from ..rollups.time_windows import GRAINS

__all__ = [
    "DEFAULT_FROM",
    "DEFAULT_GRAIN",
    "DEFAULT_TO",
    "ConfigError",
    "Settings",
    "generate_example_env",
    "get_settings",
    "load_env_file",
    "load_settings",
]

DEFAULT_FROM = "2025-06-01"
DEFAULT_TO = "2025-10-01"
DEFAULT_GRAIN = "day"

LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


class ConfigError(Exception):
    """Raised when configuration is missing or invalid."""

    pass


@dataclass
class Settings:
    """Centralized settings for tally.

    Attributes
    ----------
    db_path : Path
        SQLite database holding invoices and subscriptions
    default_from : str
        Window start used when a request gives none
    default_to : str
        Window end used when a request gives none
    default_grain : str
        Grain used when a request gives none
    log_level : str
        Logging level
    log_dir : Path | None
        Directory for JSONL logs (None: console only)
    host : str
        HTTP bind host
    port : int
        HTTP bind port
    validate_responses : bool
        Check every metric response against its JSON schema
    """

    db_path: Path = Path("tally.db")

    default_from: str = DEFAULT_FROM
    default_to: str = DEFAULT_TO
    default_grain: str = DEFAULT_GRAIN

    # Logging
    log_level: str = "INFO"
    log_dir: Path | None = None

    # HTTP service
    host: str = "127.0.0.1"
    port: int = 3000

    validate_responses: bool = True

    def __post_init__(self) -> None:
        """Validate settings after initialization."""
        if isinstance(self.db_path, str):
            self.db_path = Path(self.db_path)

        if self.log_dir and isinstance(self.log_dir, str):
            self.log_dir = Path(self.log_dir)

        if self.default_grain not in GRAINS:
            raise ConfigError(
                f"TALLY_DEFAULT_GRAIN must be one of {', '.join(GRAINS)}, got {self.default_grain!r}"
            )

        for name, value in (("TALLY_DEFAULT_FROM", self.default_from), ("TALLY_DEFAULT_TO", self.default_to)):
            try:
                parse_utc_iso8601(value)
            except ValueError as exc:
                raise ConfigError(f"{name} must be an ISO-8601 date, got {value!r}") from exc

        self.log_level = self.log_level.upper()
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"TALLY_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {self.log_level!r}")

        if not 0 < self.port < 65536:
            raise ConfigError(f"TALLY_PORT must be between 1 and 65535, got {self.port}")

    @classmethod
    def from_env(cls, env_file: Path | str | None = None) -> Settings:
        """Load settings from environment.

        Loads from .env file if present, then reads ``TALLY_*`` variables.

        Parameters
        ----------
        env_file
            Path to .env file (default: .env in current directory)

        Returns
        -------
        Settings
            Loaded settings

        Raises
        ------
        ConfigError
            If a setting is invalid
        """
        if env_file is None:
            env_file = Path(".env")
        if isinstance(env_file, str):
            env_file = Path(env_file)

        if env_file.exists():
            load_env_file(env_file)

        db_path = os.environ.get("TALLY_DB_PATH", "tally.db")
        if not db_path.strip():
            raise ConfigError("TALLY_DB_PATH must not be empty. Set it in .env (e.g., TALLY_DB_PATH=tally.db)")

        try:
            return cls(
                db_path=Path(db_path),
                default_from=os.environ.get("TALLY_DEFAULT_FROM", DEFAULT_FROM),
                default_to=os.environ.get("TALLY_DEFAULT_TO", DEFAULT_TO),
                default_grain=os.environ.get("TALLY_DEFAULT_GRAIN", DEFAULT_GRAIN),
                log_level=os.environ.get("TALLY_LOG_LEVEL", "INFO"),
                log_dir=Path(os.environ["TALLY_LOG_DIR"]) if os.environ.get("TALLY_LOG_DIR") else None,
                host=os.environ.get("TALLY_HOST", "127.0.0.1"),
                port=int(os.environ.get("TALLY_PORT", "3000")),
                validate_responses=os.environ.get("TALLY_VALIDATE_RESPONSES", "true").lower() == "true",
            )
        except ValueError as exc:
            raise ConfigError(f"Invalid configuration: {exc}") from exc


def load_env_file(env_file: Path) -> None:
    """Load environment variables from .env file.

    Variables already present in the environment are not overridden.

    Parameters
    ----------
    env_file
        Path to .env file
    """
    with open(env_file, encoding="utf-8") as f:
        for line in f:
            line = line.strip()

            # Skip comments and empty lines
            if not line or line.startswith("#"):
                continue

            if "=" in line:
                key, value = line.split("=", 1)
                key = key.strip()
                value = value.strip()

                # Remove quotes
                if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
                    value = value[1:-1]

                os.environ.setdefault(key, value)


# Global settings instance
_settings: Settings | None = None


def load_settings(env_file: Path | str | None = None) -> Settings:
    """Load settings from environment and make them current.

    Raises
    ------
    ConfigError
        If a setting is invalid
    """
    global _settings
    _settings = Settings.from_env(env_file)
    return _settings


def get_settings() -> Settings:
    """Get current settings, loading them from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def generate_example_env(output_path: Path | None = None) -> str:
    """Generate example .env file with all settings.

    Parameters
    ----------
    output_path
        Optional path to write .env file

    Returns
    -------
    str
        Example .env contents
    """
    example = f"""# tally configuration
# Copy this to .env and adjust values

# SQLite database with invoices and subscriptions
TALLY_DB_PATH=tally.db

# Default query window and grain (day, week, month)
TALLY_DEFAULT_FROM={DEFAULT_FROM}
TALLY_DEFAULT_TO={DEFAULT_TO}
TALLY_DEFAULT_GRAIN={DEFAULT_GRAIN}

# Logging
TALLY_LOG_LEVEL=INFO
# TALLY_LOG_DIR=logs

# HTTP service
TALLY_HOST=127.0.0.1
TALLY_PORT=3000
TALLY_VALIDATE_RESPONSES=true
"""

    if output_path:
        output_path.write_text(example, encoding="utf-8")

    return example
