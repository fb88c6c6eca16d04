"""Configuration management for devbridge.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/devbridge/ or %PROGRAMDATA%)
- User-level config (~/.config/devbridge/ or %APPDATA%)
- Project-level config ($workspace/.devbridge/)
- Environment variable overrides (highest priority)

Example usage:
    from devbridge.config import load_config

    config = load_config(session_root="/path/to/project")
    print(config.bridge.max_sessions)
    print(config.agent.mode)
"""

from devbridge.config.loader import (
    get_config,
    load_config,
    reset_config,
)
from devbridge.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from devbridge.config.schema import (
    AgentConfig,
    AgentMode,
    BridgeConfig,
    Config,
    LoggingConfig,
    TerminalConfig,
)
from devbridge.config.secrets import (
    clear_secret_cache,
    fetch_auth_secret,
    fetch_secret,
)

__all__ = [
    # Main API
    "Config",
    "load_config",
    "get_config",
    "reset_config",
    # Schema types
    "AgentConfig",
    "AgentMode",
    "BridgeConfig",
    "LoggingConfig",
    "TerminalConfig",
    # Secret management
    "fetch_secret",
    "fetch_auth_secret",
    "clear_secret_cache",
    # Path utilities
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
