"""Load db-sync configuration from TOML."""

import logging
import tomllib
from pathlib import Path

from pydantic import ValidationError

from db_sync.config.models import (
    DatabaseConfig,
    DatabaseProfile,
    SchedulerSettings,
    SyncSettings,
)

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "db-sync.toml"


def load_db_config(config_path: Path | None = None) -> DatabaseConfig:
    """Load database configuration from TOML file.

    Args:
        config_path: Path to the config file (default: ./db-sync.toml)

    Returns:
        DatabaseConfig with all profiles and settings

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid
    """
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(
            f"Database config not found: {config_path}\n"
            f"Create {CONFIG_FILENAME} with a [profiles.<name>] section per database."
        )

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    try:
        profiles = {
            name: DatabaseProfile(**profile_data)
            for name, profile_data in data.get("profiles", {}).items()
        }
        config = DatabaseConfig(
            profiles=profiles,
            sync=SyncSettings(**data.get("sync", {})),
            scheduler=SchedulerSettings(**data.get("scheduler", {})),
        )
    except (ValidationError, TypeError) as e:
        raise ValueError(f"Invalid configuration in {config_path}: {e}") from e

    logger.debug("Loaded %d profiles from %s", len(config.profiles), config_path)
    return config
