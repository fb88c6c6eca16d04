"""Secret management for devbridge.

Provides centralized secret fetching with dotenv support.
Secrets are loaded from .env.secrets files and cached for performance.

Priority order:
1. Environment variables (os.environ)
2. .env.secrets file in the working directory (cached)

The /auth shared secret lives here rather than in config.yaml so that
project config files can be committed safely.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import dotenv_values

SECRETS_FILE = ".env.secrets"

AUTH_SECRET_KEY = "DEVBRIDGE_AUTH_SECRET"


@lru_cache(maxsize=4)
def _load_secrets(secrets_path: Path | None = None) -> dict[str, str | None]:
    """Load and cache a .env.secrets file."""
    path = secrets_path or Path(SECRETS_FILE)
    if path.exists():
        return dotenv_values(path)
    return {}


def fetch_secret(
    key: str,
    default: str | None = None,
    secrets_path: Path | None = None,
) -> str | None:
    """Fetch a secret from environment or .env.secrets.

    Args:
        key: Environment variable name (e.g., "DEVBRIDGE_AUTH_SECRET")
        default: Default value if not found
        secrets_path: Optional path to .env.secrets file

    Returns:
        Secret value or default if not found.
    """
    value = os.environ.get(key)
    if value is not None:
        return value

    secrets = _load_secrets(secrets_path)
    if secrets.get(key) is not None:
        return secrets[key]

    return default


def fetch_auth_secret(secrets_path: Path | None = None) -> str | None:
    """Return the configured /auth secret, or None when auth is disabled."""
    value = fetch_secret(AUTH_SECRET_KEY, secrets_path=secrets_path)
    if value is None:
        return None
    return value.strip() or None


def clear_secret_cache() -> None:
    """Clear the secrets cache."""
    _load_secrets.cache_clear()
