"""Database connection factory.

Connection references are either full PostgreSQL URLs or profile names
from ``db-sync.toml``.  Profiles may carry a ``[YOUR-PASSWORD]``
placeholder in the URL, filled from ``db_password``.

Usage:
    from db_sync.factory import get_adapter, resolve_connection

    adapter = await get_adapter(profile_name="staging")
    url, environment = resolve_connection("prod")
"""

import logging
import os
from urllib.parse import quote

from db_sync.adapters.postgres import AsyncPostgresAdapter
from db_sync.config.loader import load_db_config
from db_sync.config.models import DatabaseConfig, DatabaseProfile
from db_sync.errors import DbSyncError
from db_sync.sync.jobs import Connector

logger = logging.getLogger(__name__)

PASSWORD_PLACEHOLDER = "[YOUR-PASSWORD]"

# Environment assumed for raw URLs
DEFAULT_ENVIRONMENT = "development"


class ProfileNotFoundError(DbSyncError):
    """Raised when no database profile is configured or the name is unknown."""

    pass


# ============================================================================
# Profiles
# ============================================================================


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Args:
        profile: Database profile from config

    Returns:
        Connection URL with password substituted (URL-encoded)

    Example:
        >>> resolve_url(DatabaseProfile(url="postgresql://u:[YOUR-PASSWORD]@h/db",
        ...                             db_password="p@ss"))
        'postgresql://u:p%40ss@h/db'
    """
    url = profile.url
    if profile.db_password and PASSWORD_PLACEHOLDER in url:
        url = url.replace(PASSWORD_PLACEHOLDER, quote(profile.db_password, safe=""))
    return url


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from ``{env_prefix}DB_PROFILE``.

    Raises:
        ProfileNotFoundError: If the variable is not set
    """
    var = f"{env_prefix}DB_PROFILE"
    profile_name = os.environ.get(var)
    if profile_name:
        return profile_name
    raise ProfileNotFoundError(
        f"No database profile configured.\n"
        f"Set {var}=<name> or pass a profile name explicitly."
    )


def get_profile(profile_name: str, config: DatabaseConfig | None = None) -> DatabaseProfile:
    """Look up a profile by name.

    Raises:
        ProfileNotFoundError: If the profile is not in the config
        FileNotFoundError: If no config is given and db-sync.toml is missing
    """
    if config is None:
        config = load_db_config()
    if profile_name not in config.profiles:
        available = ", ".join(config.profiles) or "(none)"
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found. Available: {available}"
        )
    return config.profiles[profile_name]


def is_url(reference: str) -> bool:
    return "://" in reference


def resolve_connection(
    reference: str,
    config: DatabaseConfig | None = None,
) -> tuple[str, str]:
    """Turn a URL or profile name into ``(url, environment)``.

    URLs are returned unchanged with the ``development`` environment; the
    config file is only read for profile names.

    Raises:
        ProfileNotFoundError: If ``reference`` is an unknown profile name
    """
    if is_url(reference):
        return reference, DEFAULT_ENVIRONMENT
    profile = get_profile(reference, config)
    return resolve_url(profile), profile.environment


# ============================================================================
# Adapter Factory
# ============================================================================


async def get_adapter(
    profile_name: str | None = None,
    database_url: str | None = None,
    env_prefix: str = "",
    config: DatabaseConfig | None = None,
) -> AsyncPostgresAdapter:
    """Create an adapter for a URL, a profile, or the active profile.

    Priority: ``database_url``, then ``profile_name``, then
    ``{env_prefix}DB_PROFILE``.

    Raises:
        ProfileNotFoundError: If no profile can be resolved

    Example:
        >>> adapter = await get_adapter(profile_name="staging")
        >>> rows = await adapter.fetch_page("users", after=None, limit=100)
    """
    if database_url is None:
        if profile_name is None:
            profile_name = get_active_profile_name(env_prefix)
        database_url, _ = resolve_connection(profile_name, config)
        logger.debug("Using profile %s", profile_name)
    return AsyncPostgresAdapter(database_url)


def make_connector(config: DatabaseConfig | None = None) -> Connector:
    """Build the connector a ``SyncJobRunner`` uses to open adapters."""

    async def connect(reference: str) -> AsyncPostgresAdapter:
        url, _ = resolve_connection(reference, config)
        return AsyncPostgresAdapter(url)

    return connect
